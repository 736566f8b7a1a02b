import logging
from datetime import datetime
from typing import Any, Optional

import stripe

from app.core.ttl_cache import TTLCache
from app.core.config import settings

logger = logging.getLogger(__name__)


class BillingConfigurationError(RuntimeError):
    """Stripe keys are missing from the environment"""


def _get(obj: Any, *path) -> Any:
    """Walk dict/StripeObject keys and list indexes, returning None on any gap"""
    current = obj
    for key in path:
        if current is None:
            return None
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError):
            return None
    return current


def timestamp_to_datetime(value: Optional[int]) -> Optional[datetime]:
    """Convert a Stripe epoch-seconds timestamp to a naive UTC datetime"""
    if value is None:
        return None
    return datetime.utcfromtimestamp(int(value))


def subscription_fields(subscription: Any) -> dict:
    """Extract the fields we persist from a Stripe subscription object or payload"""
    # Newer API versions report the period end on the subscription item
    period_end = _get(subscription, 'current_period_end')
    if period_end is None:
        period_end = _get(subscription, 'items', 'data', 0, 'current_period_end')

    customer = _get(subscription, 'customer')
    if customer is not None and not isinstance(customer, str):
        # Expanded customer object
        customer = _get(customer, 'id')

    return {
        'id': _get(subscription, 'id'),
        'status': _get(subscription, 'status'),
        'customer': customer,
        'price_id': _get(subscription, 'items', 'data', 0, 'price', 'id'),
        'cancel_at_period_end': bool(_get(subscription, 'cancel_at_period_end')),
        'current_period_end': timestamp_to_datetime(period_end),
    }


def construct_event(payload: bytes, sig_header: str) -> dict:
    """
    Verify a webhook signature and return the decoded event payload.

    Raises stripe.SignatureVerificationError on a bad signature and
    ValueError on a payload that is not valid JSON.
    """
    if not settings.stripe_webhook_secret:
        raise BillingConfigurationError("Webhook secret missing")

    event = stripe.Webhook.construct_event(payload, sig_header, settings.stripe_webhook_secret).to_dict()
    if 'type' not in event:
        raise ValueError("Malformed event payload")
    return event


class BillingClient:
    """Thin wrapper over the Stripe SDK for the calls the webhook needs"""

    def __init__(self, metadata_cache: Optional[TTLCache] = None):
        if not settings.stripe_secret_key:
            raise BillingConfigurationError("Stripe configuration missing")
        stripe.api_key = settings.stripe_secret_key
        self.metadata_cache = metadata_cache
        self.logger = logging.getLogger(__name__)

    def get_subscription(self, subscription_id: str) -> dict:
        """Retrieve a subscription and normalize it"""
        self.logger.info(f"get_subscription: Entry - {subscription_id}")
        subscription = stripe.Subscription.retrieve(subscription_id)
        fields = subscription_fields(subscription)
        self.logger.info(f"get_subscription: Success - {subscription_id}, status: {fields['status']}")
        return fields

    def get_price_product(self, price_id: Optional[str]) -> dict:
        """Resolve price id to product id/name, cached for a short TTL"""
        empty = {'price_id': price_id, 'product_id': None, 'product_name': None}
        if not price_id:
            return empty

        if self.metadata_cache is not None:
            cached = self.metadata_cache.get(price_id)
            if cached is not None:
                return cached

        price = stripe.Price.retrieve(price_id)
        product_id = _get(price, 'product')
        if product_id is not None and not isinstance(product_id, str):
            product_id = _get(product_id, 'id')

        product = stripe.Product.retrieve(product_id) if product_id else None
        result = {
            'price_id': price_id,
            'product_id': _get(product, 'id'),
            'product_name': _get(product, 'name'),
        }

        if self.metadata_cache is not None:
            self.metadata_cache.set(price_id, result)
        return result

    def cancel_subscription(self, subscription_id: str):
        """Cancel a subscription immediately"""
        self.logger.info(f"cancel_subscription: Entry - {subscription_id}")
        stripe.Subscription.cancel(subscription_id)
        self.logger.info(f"cancel_subscription: Success - {subscription_id}")
