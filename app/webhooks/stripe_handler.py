import logging

import stripe
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.billing import BillingClient, construct_event
from app.core.cache import RedisTTLCache, get_billing_metadata_cache, get_cache
from app.core.config import settings
from app.core.database import get_db
from app.services.analytics_service import AnalyticsService
from app.services.billing_webhook_service import BillingWebhookService, InvalidEventError

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status_code: int, **content) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content)


def get_billing_webhook_service() -> BillingWebhookService:
    """Webhook service wired to the shared Redis caches and lock"""
    return BillingWebhookService(
        billing_client=BillingClient(metadata_cache=get_billing_metadata_cache()),
        pending_subscriptions=RedisTTLCache("stripe_pending_sub", settings.pending_subscription_ttl_seconds),
        locks=get_cache(),
    )


@router.post("/stripe")
async def handle_stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """Receive a Stripe event and reconcile subscription state

    Signature verification runs on the raw body before anything is parsed.
    Handled events:
    - checkout.session.completed: create the subscription, blocking duplicates
    - customer.subscription.created / updated / pending_update_* / trial_will_end
    - customer.subscription.deleted

    Any non-2xx response makes Stripe redeliver the event.
    """
    logger.info("handle_stripe_webhook: Entry")
    analytics = AnalyticsService()

    if not settings.stripe_secret_key:
        logger.error("handle_stripe_webhook: Stripe secret key not configured")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, error="Stripe configuration missing")
    if not settings.stripe_webhook_secret:
        logger.error("handle_stripe_webhook: Webhook secret not configured")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, error="Webhook secret missing")

    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("handle_stripe_webhook: Missing signature header")
        return _error(status.HTTP_400_BAD_REQUEST, error="Missing signature")

    payload = await request.body()
    try:
        event = construct_event(payload, signature)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"handle_stripe_webhook: Invalid signature - {e}")
        return _error(status.HTTP_400_BAD_REQUEST, error="Invalid signature")
    except ValueError as e:
        logger.warning(f"handle_stripe_webhook: Invalid payload - {e}")
        return _error(status.HTTP_400_BAD_REQUEST, error="Invalid payload")

    try:
        webhook_service = get_billing_webhook_service()
        # handle_event is synchronous
        result = await run_in_threadpool(webhook_service.handle_event, db, event)
        logger.info(f"handle_stripe_webhook: Success - type: {event.get('type')}, id: {event.get('id')}")
        return result
    except InvalidEventError as e:
        analytics.log_failure(
            action="stripe_webhook",
            error=str(e),
            parameters={"event_id": event.get("id"), "event_type": event.get("type")},
        )
        return _error(status.HTTP_400_BAD_REQUEST, error=str(e))
    except Exception as e:
        analytics.log_failure(
            action="stripe_webhook",
            error=str(e),
            parameters={"event_id": event.get("id"), "event_type": event.get("type")},
        )
        logger.error(f"handle_stripe_webhook: Failure - {e}", exc_info=True)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error="Webhook handler failed",
            details=str(e),
        )
