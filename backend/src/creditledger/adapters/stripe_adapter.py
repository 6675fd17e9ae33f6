"""Stripe payment gateway adapter."""
import json
from typing import Any

import stripe
import structlog

from creditledger.config import settings
from creditledger.exceptions import ExternalGatewayError, InvalidSignature, SessionNotFound

logger = structlog.get_logger(__name__)


def _to_plain(obj: Any) -> Any:
    """Convert a Stripe object tree into plain dicts and lists."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return obj


def _id_of(value: Any) -> str | None:
    """Id of a field that Stripe returns either as an id string or an expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return None


class StripeAdapter:
    """Adapter for Stripe payment gateway integration.

    Returns plain dicts so the services never depend on SDK object types, and
    maps SDK failures onto ``ExternalGatewayError``.
    """

    def __init__(self):
        """Initialize Stripe adapter with API key."""
        stripe.api_key = settings.stripe_secret_key

    async def construct_webhook_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """
        Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body, exactly as received
            signature: Value of the ``Stripe-Signature`` header

        Returns:
            Event as a plain dict

        Raises:
            InvalidSignature: If the header is missing, stale, or does not match
        """
        if not signature:
            raise InvalidSignature("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                settings.stripe_webhook_secret,
                settings.stripe_webhook_tolerance_seconds,
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(f"Invalid signature: {e}") from e
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidSignature(f"Invalid payload: {e}") from e

        if not isinstance(event, dict) or "type" not in event:
            raise InvalidSignature("Invalid payload: not a Stripe event")
        return event

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        """
        Retrieve a checkout session.

        Returns:
            Session details: id, payment_status, payment_intent, customer,
            customer_email, client_reference_id, metadata

        Raises:
            SessionNotFound: If Stripe has no such session
            ExternalGatewayError: On any other Stripe failure
        """
        try:
            session = _to_plain(stripe.checkout.Session.retrieve(session_id))
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise SessionNotFound(f"Checkout session {session_id} not found") from e
            raise ExternalGatewayError(str(e)) from e
        except stripe.StripeError as e:
            logger.error("stripe_session_retrieve_failed", session_id=session_id, error=str(e))
            raise ExternalGatewayError(str(e)) from e

        return self._session_summary(session)

    async def list_line_items(self, session_id: str) -> list[dict[str, Any]]:
        """
        List a checkout session's purchased line items with price and product metadata.

        Returns:
            Items with price_id, quantity, price_metadata, product_metadata

        Raises:
            ExternalGatewayError: If Stripe cannot be reached
        """
        try:
            items = stripe.checkout.Session.list_line_items(
                session_id,
                limit=100,
                expand=["data.price.product"],
            )
            raw_items = [_to_plain(item) for item in items.auto_paging_iter()]
        except stripe.StripeError as e:
            logger.error("stripe_line_items_failed", session_id=session_id, error=str(e))
            raise ExternalGatewayError(str(e)) from e

        line_items = []
        for item in raw_items:
            price = item.get("price") or {}
            product = price.get("product")
            line_items.append(
                {
                    "price_id": price.get("id"),
                    "quantity": item.get("quantity"),
                    "price_metadata": dict(price.get("metadata") or {}),
                    "product_metadata": dict(product.get("metadata") or {}) if isinstance(product, dict) else {},
                }
            )
        return line_items

    async def create_refund(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Refund a payment intent in full.

        The idempotency key makes Stripe return the original refund for a
        repeated request instead of refunding twice.

        Returns:
            Refund details: id, status, amount

        Raises:
            ExternalGatewayError: If the refund could not be created
        """
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                reason="requested_by_customer",
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(
                "stripe_refund_failed",
                payment_intent_id=payment_intent_id,
                idempotency_key=idempotency_key,
                error=str(e),
            )
            raise ExternalGatewayError(str(e)) from e

        return {"id": refund.id, "status": refund.status, "amount": refund.amount}

    async def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        client_reference_id: str | None = None,
        customer_id: str | None = None,
        customer_email: str | None = None,
    ) -> dict[str, Any]:
        """
        Create a one-off payment checkout session for a single price.

        Returns:
            Session details: id, url

        Raises:
            ExternalGatewayError: If the session could not be created
        """
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
        }
        if client_reference_id:
            params["client_reference_id"] = client_reference_id
        if customer_id:
            params["customer"] = customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("stripe_checkout_create_failed", price_id=price_id, error=str(e))
            raise ExternalGatewayError(str(e)) from e

        return {"id": session.id, "url": session.url}

    @staticmethod
    def _session_summary(session: dict[str, Any]) -> dict[str, Any]:
        details = session.get("customer_details") or {}
        return {
            "id": session.get("id"),
            "payment_status": session.get("payment_status"),
            "payment_intent": _id_of(session.get("payment_intent")),
            "customer": _id_of(session.get("customer")),
            "customer_email": details.get("email") or session.get("customer_email"),
            "client_reference_id": session.get("client_reference_id"),
            "metadata": dict(session.get("metadata") or {}),
        }

    def summarize_session(self, session: dict[str, Any]) -> dict[str, Any]:
        """Normalize a checkout session delivered inside a webhook event."""
        return self._session_summary(session)
