import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.models.subscription import SubscriptionStatus
from app.models.user_trial import UserTrial
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


def compute_trial_flags(trial_end_time: Optional[datetime], now: Optional[datetime] = None) -> dict:
    """A trial is active strictly before its end time and expired from it onward"""
    if trial_end_time is None:
        return {'isTrialActive': False, 'isTrialExpired': False}
    now = now or datetime.utcnow()
    return {
        'isTrialActive': now < trial_end_time,
        'isTrialExpired': now >= trial_end_time,
    }


class TrialService:
    def __init__(self):
        self.subscription_service = SubscriptionService()
        self.logger = logging.getLogger(__name__)

    def get_trial_status(self, db: Session, user_id: uuid.UUID, now: Optional[datetime] = None) -> dict:
        self.logger.info(f"get_trial_status: Entry - user: {user_id}")

        subscription = self.subscription_service.get_latest_subscription(db, user_id)
        trial = db.query(UserTrial).filter(UserTrial.user_id == user_id).first()

        trial_end_time = trial.trial_end_time if trial else None
        flags = compute_trial_flags(trial_end_time, now)

        result = {
            'subscription': {'status': subscription.status} if subscription else None,
            'trial': trial.to_dict() if trial else None,
            'isTrialActive': flags['isTrialActive'],
            'isTrialExpired': flags['isTrialExpired'],
            'isTrialUsed': bool(trial.is_trial_used) if trial else False,
            'hasActiveSubscription': bool(subscription) and subscription.status == SubscriptionStatus.ACTIVE.value,
            'trialEndTime': trial_end_time.isoformat() if trial_end_time else None,
        }
        self.logger.info(
            f"get_trial_status: Success - user: {user_id}, active: {flags['isTrialActive']}, expired: {flags['isTrialExpired']}")
        return result
