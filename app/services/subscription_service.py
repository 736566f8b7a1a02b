import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.models.subscription import ACTIVE_STATUSES, Subscription
from app.services.analytics_service import AnalyticsService

logger = logging.getLogger(__name__)


def is_subscription_valid(subscription: Optional[Subscription], now: Optional[datetime] = None) -> bool:
    """A subscription grants access while its status is live and its period has not ended"""
    if subscription is None:
        return False
    now = now or datetime.utcnow()
    return (
        subscription.status in ACTIVE_STATUSES
        and subscription.current_period_end is not None
        and subscription.current_period_end > now
    )


class SubscriptionService:
    def __init__(self):
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    def get_current_subscription(self, db: Session, user_id: uuid.UUID) -> Optional[Subscription]:
        """Most recent active or trialing subscription for a user"""
        return db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status.in_(ACTIVE_STATUSES)
        ).order_by(Subscription.created_at.desc()).first()

    def get_latest_subscription(self, db: Session, user_id: uuid.UUID) -> Optional[Subscription]:
        """Most recent subscription for a user, whatever its status"""
        return db.query(Subscription).filter(
            Subscription.user_id == user_id
        ).order_by(Subscription.created_at.desc()).first()

    def get_subscription_status(self, db: Session, user_id: uuid.UUID) -> dict:
        """Current subscription plus the computed validity flag"""
        self.logger.info(f"get_subscription_status: Entry - user: {user_id}")

        subscription = self.get_current_subscription(db, user_id)
        is_valid = is_subscription_valid(subscription)

        self.logger.info(f"get_subscription_status: Success - user: {user_id}, valid: {is_valid}")
        return {
            'subscription': subscription.to_dict() if subscription else None,
            'isSubscriber': is_valid,
            'isValid': is_valid,
        }

    def get_by_stripe_id(self, db: Session, stripe_subscription_id: str) -> Optional[Subscription]:
        return db.query(Subscription).filter(
            Subscription.stripe_subscription_id == stripe_subscription_id
        ).first()

    def find_active_for_customer(
        self,
        db: Session,
        stripe_customer_id: str,
        exclude_subscription_id: Optional[str] = None
    ) -> Optional[Subscription]:
        """Live subscription for a billing customer, ignoring the one being processed"""
        query = db.query(Subscription).filter(
            Subscription.stripe_customer_id == stripe_customer_id,
            Subscription.status.in_(ACTIVE_STATUSES)
        )
        if exclude_subscription_id:
            query = query.filter(Subscription.stripe_subscription_id != exclude_subscription_id)
        return query.first()

    def find_user_for_customer(self, db: Session, stripe_customer_id: str) -> Optional[uuid.UUID]:
        """Owner of any earlier subscription for this billing customer"""
        subscription = db.query(Subscription).filter(
            Subscription.stripe_customer_id == stripe_customer_id
        ).order_by(Subscription.created_at.desc()).first()
        return subscription.user_id if subscription else None

    def _apply_billing_fields(self, subscription: Subscription, fields: dict, product: dict):
        subscription.status = fields['status']
        subscription.price_id = fields.get('price_id')
        # Keep the stored product when the lookup came back empty
        subscription.product_name = product.get('product_name') or subscription.product_name
        subscription.product_id = product.get('product_id') or subscription.product_id
        subscription.cancel_at_period_end = bool(fields.get('cancel_at_period_end'))
        if fields.get('current_period_end') is not None:
            subscription.current_period_end = fields['current_period_end']
        subscription.updated_at = datetime.utcnow()

    def upsert_from_billing(
        self,
        db: Session,
        user_id: uuid.UUID,
        stripe_customer_id: str,
        fields: dict,
        product: dict
    ) -> tuple[Subscription, bool]:
        """
        Create or update the row keyed by the Stripe subscription id.

        Returns the row and whether it was newly inserted. Store errors
        (including the one-live-subscription-per-user index) propagate
        after rollback.
        """
        stripe_subscription_id = fields['id']
        self.logger.info(
            f"upsert_from_billing: Entry - user: {user_id}, subscription: {stripe_subscription_id}")

        try:
            subscription = self.get_by_stripe_id(db, stripe_subscription_id)
            created = subscription is None
            if created:
                subscription = Subscription(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    stripe_customer_id=stripe_customer_id,
                    stripe_subscription_id=stripe_subscription_id,
                    created_at=datetime.utcnow(),
                )
                db.add(subscription)

            self._apply_billing_fields(subscription, fields, product)
            db.commit()
            db.refresh(subscription)

            self.analytics.log_success(
                action='subscription_created' if created else 'subscription_updated',
                user_id=user_id,
                parameters={'stripe_subscription_id': stripe_subscription_id, 'status': subscription.status}
            )
            self.logger.info(
                f"upsert_from_billing: Success - subscription: {stripe_subscription_id}, created: {created}")
            return subscription, created
        except Exception as e:
            db.rollback()
            self.analytics.log_failure(
                action='upsert_subscription',
                error=str(e),
                user_id=user_id,
                parameters={'stripe_subscription_id': stripe_subscription_id}
            )
            self.logger.error(f"upsert_from_billing: Failure - {e}")
            raise

    def update_from_billing(self, db: Session, fields: dict, product: dict) -> Optional[Subscription]:
        """Update an existing row from a subscription event; None when no row matches"""
        stripe_subscription_id = fields['id']
        self.logger.info(f"update_from_billing: Entry - subscription: {stripe_subscription_id}")

        try:
            subscription = self.get_by_stripe_id(db, stripe_subscription_id)
            if not subscription:
                self.logger.info(f"update_from_billing: No row - subscription: {stripe_subscription_id}")
                return None

            self._apply_billing_fields(subscription, fields, product)
            db.commit()
            db.refresh(subscription)
            self.logger.info(
                f"update_from_billing: Success - subscription: {stripe_subscription_id}, status: {subscription.status}")
            return subscription
        except Exception as e:
            db.rollback()
            self.logger.error(f"update_from_billing: Failure - {e}")
            raise

    def mark_deleted(self, db: Session, stripe_subscription_id: str, status: str) -> Optional[Subscription]:
        """Terminal state for a deleted subscription; the row is kept"""
        self.logger.info(f"mark_deleted: Entry - subscription: {stripe_subscription_id}")

        try:
            subscription = self.get_by_stripe_id(db, stripe_subscription_id)
            if not subscription:
                self.logger.info(f"mark_deleted: No row - subscription: {stripe_subscription_id}")
                return None

            now = datetime.utcnow()
            subscription.status = status or 'canceled'
            subscription.cancel_at_period_end = False
            subscription.current_period_end = now
            subscription.updated_at = now
            db.commit()
            db.refresh(subscription)

            self.analytics.log_success(
                action='subscription_deleted',
                user_id=subscription.user_id,
                parameters={'stripe_subscription_id': stripe_subscription_id}
            )
            self.logger.info(f"mark_deleted: Success - subscription: {stripe_subscription_id}")
            return subscription
        except Exception as e:
            db.rollback()
            self.logger.error(f"mark_deleted: Failure - {e}")
            raise
