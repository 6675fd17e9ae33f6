"""Stripe webhook handler for credit pack payments."""
import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger import metrics
from creditledger.adapters.stripe_adapter import StripeAdapter
from creditledger.api.deps import get_db, get_stripe_adapter
from creditledger.exceptions import InvalidSignature
from creditledger.schemas.checkout import WebhookAck
from creditledger.services.webhook_service import StripeWebhookService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks/stripe", tags=["webhooks"])


@router.post("", response_model=WebhookAck)
async def handle_stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
) -> WebhookAck:
    """
    Handle incoming Stripe webhook events.

    Verifies the signature over the raw body before parsing anything. Paid
    checkout sessions for credit packs grant their credits once; every other
    verified event is acknowledged with 200 so Stripe stops retrying.
    Transient failures respond 5xx so Stripe retries, which is safe because
    the grant is keyed by the checkout session.

    Args:
        request: FastAPI request with webhook payload
        db: Database session
        stripe_adapter: Stripe adapter for webhook verification

    Returns:
        Acknowledgement

    Raises:
        InvalidSignature: If signature verification fails (400)
    """
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = await stripe_adapter.construct_webhook_event(body, signature)
    except InvalidSignature as e:
        metrics.stripe_webhook_events_total.labels(event_type="unknown", outcome="rejected").inc()
        logger.warning("stripe_webhook_verification_failed", error=e.message)
        raise

    logger.info("stripe_webhook_received", event_type=event.get("type"), event_id=event.get("id"))

    ack = await StripeWebhookService(db, stripe_adapter).handle_event(event)
    await db.commit()
    return ack
