"""Service for starting credit pack purchases."""
from typing import Optional

import structlog

from creditledger.adapters.stripe_adapter import StripeAdapter
from creditledger.config import settings
from creditledger.exceptions import InvalidPack
from creditledger.models.account import Account
from creditledger.schemas.checkout import CheckoutSessionResponse

logger = structlog.get_logger(__name__)


class CheckoutService:
    """Creates Stripe checkout sessions whose metadata the webhook and refunds rely on."""

    def __init__(self, stripe_adapter: StripeAdapter):
        self.stripe = stripe_adapter

    async def create_checkout(
        self,
        account: Account,
        pack: str,
        scan_id: Optional[str] = None,
    ) -> CheckoutSessionResponse:
        """
        Create a checkout session for a credit pack.

        Args:
            account: The buyer's account
            pack: Credit pack key
            scan_id: Scan to return to after payment, if any

        Returns:
            Session id and hosted checkout URL

        Raises:
            InvalidPack: If the pack is unknown or has no price
            ExternalGatewayError: If Stripe rejects the request
        """
        credits = settings.credit_packs.get(pack)
        price_id = settings.credit_pack_prices.get(pack)
        if not credits or not price_id:
            raise InvalidPack(f"Unknown credit pack: {pack}", allowed=sorted(settings.credit_packs))

        base_url = settings.app_url.rstrip("/")
        success_url = f"{base_url}/credits/success?session_id={{CHECKOUT_SESSION_ID}}"
        if scan_id:
            success_url += f"&scan_id={scan_id}"
        cancel_url = f"{base_url}/credits" + (f"?scan_id={scan_id}" if scan_id else "")

        metadata = {
            "purchase_type": "credit_pack",
            "pack": pack,
            "credits": str(credits),
            "account_id": str(account.id),
        }
        if scan_id:
            metadata["scan_id"] = scan_id

        session = await self.stripe.create_checkout_session(
            price_id=price_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            client_reference_id=account.identity_id,
            customer_id=account.stripe_customer_id,
            customer_email=account.email,
        )

        logger.info(
            "checkout_session_created",
            account_id=str(account.id),
            session_id=session["id"],
            pack=pack,
            credits=credits,
        )

        return CheckoutSessionResponse(session_id=session["id"], url=session["url"], pack=pack, credits=credits)
