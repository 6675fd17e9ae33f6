"""Test data factories using Faker for generating realistic test data."""
import hashlib
import hmac
import json
import time
from typing import Any, Optional

from faker import Faker
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.auth.jwt import JWTAuth
from creditledger.config import settings
from creditledger.models.account import Account
from creditledger.models.ledger_entry import LedgerEventType
from creditledger.services.ledger_service import LedgerService

fake = Faker()

ADMIN_EMAIL = "admin@example.com"


class AccountFactory:
    """Factory for creating test account data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create account test data.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: Account data (identity_id, email)
        """
        data = {
            "identity_id": fake.uuid4(),
            "email": fake.unique.email().lower(),
        }
        if overrides:
            data.update(overrides)
        return data


class CheckoutEventFactory:
    """Factory for Stripe checkout webhook payloads."""

    @staticmethod
    def create(
        session_id: str | None = None,
        event_type: str = "checkout.session.completed",
        overrides: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Create a checkout event.

        Args:
            session_id: Checkout session id (generated when omitted)
            event_type: Stripe event type
            overrides: Optional checkout session field overrides

        Returns:
            dict: Stripe event
        """
        session = {
            "id": session_id or f"cs_test_{fake.pystr(min_chars=12, max_chars=12)}",
            "object": "checkout.session",
            "payment_status": "paid",
            "payment_intent": f"pi_{fake.pystr(min_chars=12, max_chars=12)}",
            "customer": f"cus_{fake.pystr(min_chars=10, max_chars=10)}",
            "customer_details": {"email": None},
            "client_reference_id": None,
            "metadata": {},
        }
        if overrides:
            session.update(overrides)
        return {
            "id": f"evt_{fake.pystr(min_chars=14, max_chars=14)}",
            "type": event_type,
            "data": {"object": session},
        }


def price_line_item(credits: int | str, quantity: int | None = 1, price_id: str = "price_test") -> dict[str, Any]:
    """Line item whose price carries ``credits`` metadata."""
    return {
        "price_id": price_id,
        "quantity": quantity,
        "price_metadata": {"credits": str(credits)},
        "product_metadata": {},
    }


def encode_event(event: dict[str, Any]) -> bytes:
    return json.dumps(event).encode()


def sign_webhook(payload: bytes, secret: Optional[str] = None, timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header with Stripe's v1 scheme."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new((secret or settings.stripe_webhook_secret).encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def bearer(subject: str, email: str, role: Optional[str] = None) -> dict[str, str]:
    """Authorization header carrying a valid access token."""
    token = JWTAuth().create_access_token(subject=subject, email=email, role=role)
    return {"Authorization": f"Bearer {token}"}


async def create_account(
    session: AsyncSession,
    email: Optional[str] = None,
    identity_id: Optional[str] = None,
    credits: int = 0,
) -> Account:
    """
    Create an account, granting starting credits through the ledger.

    Args:
        session: Database session
        email: Account email (generated when omitted)
        identity_id: Identity provider subject
        credits: Starting balance, written as an admin adjustment

    Returns:
        Account: Committed account
    """
    data = AccountFactory.create({"identity_id": identity_id})
    if email:
        data["email"] = email.strip().lower()

    account = Account(email=data["email"], identity_id=data["identity_id"], credit_balance=0, ledger_sequence=0)
    session.add(account)
    await session.commit()

    if credits:
        await LedgerService(session).append_entry(
            account_id=account.id,
            event_type=LedgerEventType.ADMIN_ADJUSTMENT,
            delta=credits,
            reference=f"admin:seed:{account.id}",
            note="test seed",
        )
        await session.commit()

    return account
