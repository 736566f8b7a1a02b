import logging
import uuid
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.billing import BillingClient, subscription_fields
from app.core.ttl_cache import TTLCache
from app.core.redis_cache import RedisCache
from app.models.processed_billing_event import ProcessedBillingEvent
from app.services.account_service import AccountService
from app.services.analytics_service import AnalyticsService
from app.services.preferences_service import PreferencesService
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = 'checkout.session.completed'
SUBSCRIPTION_CREATED = 'customer.subscription.created'
SUBSCRIPTION_DELETED = 'customer.subscription.deleted'
SUBSCRIPTION_REFRESH_EVENTS = frozenset({
    'customer.subscription.updated',
    'customer.subscription.pending_update_applied',
    'customer.subscription.pending_update_expired',
    'customer.subscription.trial_will_end',
})

BLOCKED_MESSAGE = 'Customer already has an active subscription'
CHECKOUT_LOCK_TIMEOUT_SECONDS = 30
CHECKOUT_LOCK_WAIT_SECONDS = 5


class InvalidEventError(ValueError):
    """Event payload is missing data the handler needs"""


class BillingWebhookService:
    """
    Reconciles subscription rows with Stripe events.

    All writes are upserts keyed by the Stripe subscription id, so
    redelivered events converge on the same row state. The one
    non-idempotent effect, cancelling a duplicate subscription upstream,
    runs at most once per event id.
    """

    def __init__(
        self,
        billing_client: Optional[BillingClient] = None,
        pending_subscriptions: Optional[TTLCache] = None,
        locks: Optional[RedisCache] = None,
    ):
        self._billing = billing_client
        self.pending_subscriptions = pending_subscriptions
        self.locks = locks
        self.account_service = AccountService()
        self.subscription_service = SubscriptionService()
        self.preferences_service = PreferencesService()
        self.analytics = AnalyticsService()
        self.logger = logging.getLogger(__name__)

    @property
    def billing(self) -> BillingClient:
        if self._billing is None:
            self._billing = BillingClient()
        return self._billing

    def handle_event(self, db: Session, event: dict) -> dict:
        """Dispatch one verified event; returns the response body"""
        event_type = event.get('type')
        data_object = (event.get('data') or {}).get('object') or {}
        self.logger.info(f"handle_event: Entry - type: {event_type}, id: {event.get('id')}")

        if event_type == CHECKOUT_COMPLETED:
            return self._handle_checkout_completed(db, event, data_object)
        if event_type == SUBSCRIPTION_CREATED:
            self._handle_subscription_created(db, data_object)
        elif event_type in SUBSCRIPTION_REFRESH_EVENTS:
            self._handle_subscription_refresh(db, data_object)
        elif event_type == SUBSCRIPTION_DELETED:
            self._handle_subscription_deleted(db, data_object)
        else:
            self.logger.info(f"handle_event: Ignored - type: {event_type}")

        return {'received': True}

    # checkout.session.completed

    def _handle_checkout_completed(self, db: Session, event: dict, session: dict) -> dict:
        user_ref = session.get('client_reference_id')
        customer_id = session.get('customer')
        subscription_id = session.get('subscription')

        self.logger.info(
            f"_handle_checkout_completed: Entry - session: {session.get('id')}, "
            f"user: {user_ref}, customer: {customer_id}, subscription: {subscription_id}")

        if not user_ref or not customer_id or not subscription_id:
            self.logger.warning("_handle_checkout_completed: Missing required session data")
            raise InvalidEventError("Invalid session data")

        try:
            user_id = uuid.UUID(str(user_ref))
        except ValueError:
            raise InvalidEventError("Invalid session data")

        if not self.account_service.get_user(db, user_id):
            self.logger.warning(f"_handle_checkout_completed: Unknown user - {user_id}")
            raise InvalidEventError("Invalid session data")

        lock_key = f"billing:checkout:{customer_id}"
        lock_token = None
        if self.locks is not None:
            lock_token = self.locks.acquire_lock(
                lock_key,
                timeout_seconds=CHECKOUT_LOCK_TIMEOUT_SECONDS,
                block_seconds=CHECKOUT_LOCK_WAIT_SECONDS,
            )
            if lock_token is None:
                # The unique index still guards the insert
                self.logger.warning(f"_handle_checkout_completed: Proceeding without lock - {lock_key}")

        try:
            existing = self.subscription_service.find_active_for_customer(
                db, customer_id, exclude_subscription_id=subscription_id)
            if existing:
                return self._block_duplicate(db, event, subscription_id, customer_id, user_id)

            if self.pending_subscriptions is not None:
                self.pending_subscriptions.invalidate(subscription_id)

            try:
                self._create_subscription(db, subscription_id, user_id, customer_id)
            except IntegrityError:
                if self._has_other_live_subscription(db, user_id, customer_id, subscription_id):
                    return self._block_duplicate(db, event, subscription_id, customer_id, user_id)
                raise
        finally:
            if lock_token is not None:
                self.locks.release_lock(lock_key, lock_token)

        return {'received': True}

    def _has_other_live_subscription(
        self, db: Session, user_id: uuid.UUID, customer_id: str, subscription_id: str
    ) -> bool:
        if self.subscription_service.find_active_for_customer(
                db, customer_id, exclude_subscription_id=subscription_id):
            return True
        current = self.subscription_service.get_current_subscription(db, user_id)
        return current is not None and current.stripe_subscription_id != subscription_id

    def _create_subscription(self, db: Session, subscription_id: str, user_id: uuid.UUID, customer_id: str):
        fields = self.billing.get_subscription(subscription_id)
        product = self.billing.get_price_product(fields.get('price_id'))

        subscription, created = self.subscription_service.upsert_from_billing(
            db, user_id, customer_id, fields, product)

        if created:
            # Best effort; never fails the subscription write
            self.preferences_service.mark_onboarding_complete(db, user_id)
        return subscription

    def _block_duplicate(
        self, db: Session, event: dict, subscription_id: str, customer_id: str, user_id: uuid.UUID
    ) -> dict:
        self.logger.warning(
            f"_block_duplicate: Duplicate subscription attempt blocked - customer: {customer_id}, "
            f"subscription: {subscription_id}")

        event_id = event.get('id')
        if self._claim_event(db, event):
            try:
                self.billing.cancel_subscription(subscription_id)
            except Exception:
                # Let a redelivery try the cancel again
                self._release_event(db, event_id)
                raise
        else:
            self.logger.info(f"_block_duplicate: Cancel already issued for event {event_id}")

        self.analytics.log_event(
            event_name='duplicate_subscription_blocked',
            user_id=user_id,
            parameters={'stripe_customer_id': customer_id, 'stripe_subscription_id': subscription_id}
        )
        return {'status': 'blocked', 'message': BLOCKED_MESSAGE}

    def _claim_event(self, db: Session, event: dict) -> bool:
        """Record the event id; False when a previous delivery already did"""
        event_id = event.get('id')
        if not event_id:
            return True
        if db.get(ProcessedBillingEvent, event_id) is not None:
            return False
        try:
            db.add(ProcessedBillingEvent(event_id=event_id, event_type=event.get('type')))
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False

    def _release_event(self, db: Session, event_id: Optional[str]):
        if not event_id:
            return
        db.query(ProcessedBillingEvent).filter(ProcessedBillingEvent.event_id == event_id).delete()
        db.commit()

    # customer.subscription.*

    def _subscription_fields(self, data_object: dict, require_status: bool = True) -> dict:
        fields = subscription_fields(data_object)
        if not fields['id'] or (require_status and not fields['status']):
            self.logger.warning(f"_subscription_fields: Missing subscription data - {fields}")
            raise InvalidEventError("Invalid subscription data")
        return fields

    def _handle_subscription_created(self, db: Session, data_object: dict):
        fields = self._subscription_fields(data_object)
        if self.subscription_service.get_by_stripe_id(db, fields['id']):
            product = self.billing.get_price_product(fields.get('price_id'))
            self.subscription_service.update_from_billing(db, fields, product)
            return

        # Checkout completion creates the row; remember the subscription until then
        if self.pending_subscriptions is not None:
            self.pending_subscriptions.set(fields['id'], {'id': fields['id'], 'customer': fields['customer']})
        self.logger.info(f"_handle_subscription_created: Awaiting checkout completion - {fields['id']}")

    def _handle_subscription_refresh(self, db: Session, data_object: dict):
        fields = self._subscription_fields(data_object)
        product = self.billing.get_price_product(fields.get('price_id'))

        if self.subscription_service.update_from_billing(db, fields, product):
            return

        user_id = self.subscription_service.find_user_for_customer(db, fields['customer']) \
            if fields.get('customer') else None
        if user_id is None:
            self.logger.info(f"_handle_subscription_refresh: No row or known customer - {fields['id']}")
            return

        try:
            self.subscription_service.upsert_from_billing(db, user_id, fields['customer'], fields, product)
        except IntegrityError as e:
            self.logger.warning(
                f"_handle_subscription_refresh: Skipped insert for {fields['id']}, user already has a live subscription - {e}")

    def _handle_subscription_deleted(self, db: Session, data_object: dict):
        fields = self._subscription_fields(data_object, require_status=False)
        self.subscription_service.mark_deleted(db, fields['id'], fields.get('status'))
