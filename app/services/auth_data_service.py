import logging
import uuid

from sqlalchemy.orm import Session

from app.services.analytics_service import AnalyticsService
from app.services.preferences_service import PreferencesService
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


class AuthDataService:
    """Batched read of everything the client needs to route a signed-in user"""

    def __init__(self):
        self.subscription_service = SubscriptionService()
        self.preferences_service = PreferencesService()
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def get_auth_data(self, db: Session, user_id: uuid.UUID) -> dict:
        """
        Join the live subscription with onboarding preferences.
        Unlike the preferences read, this creates the default preferences
        row when the user has none.
        """
        self.logger.info(f"get_auth_data: Entry - user: {user_id}")

        try:
            subscription = self.subscription_service.get_current_subscription(db, user_id)
            preferences = self.preferences_service.get_or_create(db, user_id)

            is_subscriber = subscription is not None

            result = {
                'isSubscriber': is_subscriber,
                'subscription': subscription.to_dict() if subscription else None,
                'hasCompletedOnboarding': bool(preferences.has_completed_onboarding),
                'onboardingStep': preferences.onboarding_step or 1,
                'selectedPlanId': preferences.selected_plan_id,
                'onboardingCompletedAt': (
                    preferences.onboarding_completed_at.isoformat()
                    if preferences.onboarding_completed_at else None
                ),
                'shouldRedirectToOnboarding': not is_subscriber,
                'shouldRedirectToDashboard': is_subscriber,
            }

            self.logger.info(
                f"get_auth_data: Success - user: {user_id}, subscriber: {is_subscriber}, "
                f"onboarded: {result['hasCompletedOnboarding']}")
            return result
        except Exception as e:
            self.analytics.log_failure(action='get_auth_data', error=str(e), user_id=user_id)
            self.logger.error(f"get_auth_data: Failure - {e}")
            raise
