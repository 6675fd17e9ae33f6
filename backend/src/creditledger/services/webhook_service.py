"""Service for ingesting Stripe checkout webhooks into credit grants."""
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger import metrics
from creditledger.adapters.stripe_adapter import StripeAdapter
from creditledger.config import settings
from creditledger.models.ledger_entry import LedgerEventType
from creditledger.schemas.checkout import WebhookAck
from creditledger.services.account_service import AccountService
from creditledger.services.ledger_service import LedgerService
from creditledger.utils.references import purchase_reference

logger = structlog.get_logger(__name__)

CREDIT_GRANTING_EVENT_TYPES = frozenset(
    {
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
    }
)


def non_negative_int(value: Any) -> int:
    """Parse a metadata value as a whole number, treating anything unusable as 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0
    else:
        return 0

    if number != number or number in (float("inf"), float("-inf")):
        return 0
    return max(0, int(number))


def credits_for_line_item(item: dict[str, Any], price_credits: dict[str, int]) -> int:
    """
    Credits granted by one purchased line item.

    Per-unit credits come from the price's ``credits`` metadata, then the
    product's, then the configured price table; the result is multiplied by
    the quantity (default 1).
    """
    per_unit = non_negative_int(item.get("price_metadata", {}).get("credits"))
    if not per_unit:
        per_unit = non_negative_int(item.get("product_metadata", {}).get("credits"))
    if not per_unit and item.get("price_id"):
        per_unit = price_credits.get(item["price_id"], 0)

    quantity = item.get("quantity")
    quantity = 1 if quantity is None else non_negative_int(quantity)
    return per_unit * quantity


class StripeWebhookService:
    """Turns verified checkout events into exactly one credit grant per session."""

    def __init__(self, db: AsyncSession, stripe_adapter: StripeAdapter):
        """Initialize webhook service with database session and gateway adapter."""
        self.db = db
        self.stripe = stripe_adapter
        self.ledger = LedgerService(db)
        self.accounts = AccountService(db)

    async def handle_event(self, event: dict[str, Any]) -> WebhookAck:
        """
        Apply a verified Stripe event.

        Only paid checkout sessions that purchase credits write to the ledger;
        every other event is acknowledged as a no-op so Stripe stops retrying.
        Redelivery of the same session resolves to the entry already written.

        Args:
            event: Verified Stripe event

        Returns:
            Acknowledgement describing what happened

        Raises:
            ExternalGatewayError: If line items cannot be fetched (Stripe retries)
            PersistenceError: If the ledger write lost a race (Stripe retries)
        """
        event_type = event.get("type")
        log = logger.bind(event_id=event.get("id"), event_type=event_type)

        if event_type not in CREDIT_GRANTING_EVENT_TYPES:
            return self._ignored(event_type, "unhandled_event_type", log)

        session = self.stripe.summarize_session((event.get("data") or {}).get("object") or {})
        session_id = session["id"]
        log = log.bind(session_id=session_id)

        if not session_id:
            return self._ignored(event_type, "no_session_id", log)

        if session["payment_status"] != "paid":
            return self._ignored(event_type, "not_paid", log)

        payment_intent_id = session["payment_intent"]
        if not payment_intent_id:
            return self._ignored(event_type, "no_payment_intent", log)

        line_items = await self.stripe.list_line_items(session_id)
        price_credits = settings.price_credits()
        credits = sum(credits_for_line_item(item, price_credits) for item in line_items)

        if credits <= 0:
            return self._ignored(event_type, "no_credit_items", log)

        metadata = session["metadata"]
        account = await self.accounts.resolve_purchase_account(
            account_id=metadata.get("account_id"),
            identity_id=session["client_reference_id"],
            email=session["customer_email"],
            stripe_customer_id=session["customer"],
        )
        if account is None:
            log.warning("stripe_webhook_no_account", payment_intent_id=payment_intent_id)
            return self._ignored(event_type, "no_account", log)

        result = await self.ledger.append_entry(
            account_id=account.id,
            event_type=LedgerEventType.CREDIT_PACK_PURCHASE,
            delta=credits,
            reference=purchase_reference(session_id),
            note=f"payment_intent:{payment_intent_id}",
        )

        outcome = "applied" if result.applied else "duplicate"
        metrics.stripe_webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()
        log.info(
            "stripe_webhook_credits_granted" if result.applied else "stripe_webhook_already_applied",
            account_id=str(account.id),
            payment_intent_id=payment_intent_id,
            credits=credits,
            balance_after=result.balance_after,
        )

        return WebhookAck(event_type=event_type, credits_added=credits, applied=result.applied)

    @staticmethod
    def _ignored(event_type: str | None, reason: str, log: Any) -> WebhookAck:
        metrics.stripe_webhook_events_total.labels(event_type=event_type or "unknown", outcome="ignored").inc()
        log.info("stripe_webhook_ignored", reason=reason)
        return WebhookAck(event_type=event_type, ignored=reason)
