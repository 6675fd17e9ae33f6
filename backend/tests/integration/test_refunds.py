"""Integration tests for credit pack and unlock refunds."""
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from creditledger.models.account import Account
from creditledger.models.ledger_entry import LedgerEntry, LedgerEventType
from creditledger.services.ledger_service import LedgerService
from tests.utils.factories import (
    CheckoutEventFactory,
    bearer,
    create_account,
    encode_event,
    price_line_item,
    sign_webhook,
)
from tests.utils.fakes import FakeStripeAdapter


async def _balance(session_factory: async_sessionmaker, account_id) -> int:
    async with session_factory() as session:
        result = await session.execute(select(Account.credit_balance).where(Account.id == account_id))
        return result.scalar_one()


async def _buy_pack(
    async_client: AsyncClient,
    stripe_fake: FakeStripeAdapter,
    account: Account,
    session_id: str = "cs_1",
    pack: str = "three",
) -> None:
    metadata = {"purchase_type": "credit_pack", "pack": pack, "credits": "3", "account_id": str(account.id)}
    stripe_fake.add_session(session_id, metadata=metadata, payment_intent="pi_pack", line_items=[price_line_item(3)])
    payload = encode_event(
        CheckoutEventFactory.create(session_id, overrides={"metadata": metadata, "payment_intent": "pi_pack"})
    )
    response = await async_client.post(
        "/webhooks/stripe", content=payload, headers={"Stripe-Signature": sign_webhook(payload)}
    )
    assert response.json()["applied"] is True


@pytest.mark.asyncio
async def test_checkout_refund_restores_credits_once(
    async_client: AsyncClient,
    session_factory: async_sessionmaker,
    stripe_fake: FakeStripeAdapter,
    admin_headers: dict,
) -> None:
    """Refunding cs_1 twice: credits restored once, second call is already_refunded."""
    async with session_factory() as session:
        account = await create_account(session, email="refund@example.com")
    await _buy_pack(async_client, stripe_fake, account)

    first = await async_client.post(
        "/v1/admin/refunds/checkout-session",
        json={"sessionId": "cs_1", "reason": "customer request"},
        headers=admin_headers,
    )
    balance_after_first = await _balance(session_factory, account.id)
    second = await async_client.post(
        "/v1/admin/refunds/checkout-session", json={"sessionId": "cs_1"}, headers=admin_headers
    )

    assert first.status_code == 200
    body = first.json()
    assert body["refund_id"] == "re_0001"
    assert body["payment_intent"] == "pi_pack"
    assert body["pack"] == "three"
    assert body["credits_restored"] == 3
    assert body["credits_before"] == 3
    assert body["credits_after"] == 6

    assert second.status_code == 409
    assert second.json()["details"][0]["code"] == "already_refunded"
    assert await _balance(session_factory, account.id) == balance_after_first

    assert len(stripe_fake.refund_calls) == 1
    assert stripe_fake.refund_calls[0]["idempotency_key"] == "creditledger_refund_cs_1"

    async with session_factory() as session:
        marker = await LedgerService(session).get_entry_by_reference("stripe_session_refund:cs_1")
        assert marker.event_type == LedgerEventType.ADMIN_REFUND_MARKER
        assert marker.credits_delta == 0
        assert marker.note == "Stripe refund id: re_0001"
        chain = await LedgerService(session).verify_chain(account.id)
        assert chain.valid is True


@pytest.mark.asyncio
async def test_checkout_refund_retry_after_ledger_failure_reuses_gateway_refund(
    async_client: AsyncClient,
    session_factory: async_sessionmaker,
    stripe_fake: FakeStripeAdapter,
    admin_headers: dict,
    monkeypatch,
) -> None:
    """A failed ledger write is retried by the caller without a second payout."""
    async with session_factory() as session:
        account = await create_account(session, email="flaky@example.com")
    await _buy_pack(async_client, stripe_fake, account, session_id="cs_flaky")

    from creditledger.config import settings

    monkeypatch.setattr(settings, "ledger_write_attempts", 1)
    original = LedgerService.append_entry

    async def failing_marker(self, account_id, event_type, delta, reference, note=None):
        if event_type == LedgerEventType.ADMIN_REFUND_MARKER:
            from creditledger.exceptions import PersistenceError

            await self.db.rollback()
            raise PersistenceError()
        return await original(self, account_id, event_type, delta, reference, note)

    monkeypatch.setattr(LedgerService, "append_entry", failing_marker)
    failed = await async_client.post(
        "/v1/admin/refunds/checkout-session", json={"sessionId": "cs_flaky"}, headers=admin_headers
    )
    assert failed.status_code == 503
    assert failed.headers["Retry-After"]
    assert await _balance(session_factory, account.id) == 3

    monkeypatch.setattr(LedgerService, "append_entry", original)
    retried = await async_client.post(
        "/v1/admin/refunds/checkout-session", json={"sessionId": "cs_flaky"}, headers=admin_headers
    )

    assert retried.status_code == 200
    assert retried.json()["refund_id"] == "re_0001"
    assert len(stripe_fake.refunds) == 1
    assert await _balance(session_factory, account.id) == 6


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "session_id, metadata, payment_intent, status_code, code",
    [
        ("pi_123", None, "pi_x", 400, "invalid_session_id"),
        ("cs_missing", None, "pi_x", 404, "session_not_found"),
        ("cs_other", {"purchase_type": "subscription"}, "pi_x", 400, "not_a_credit_pack_purchase"),
        ("cs_nointent", {"purchase_type": "credit_pack", "pack": "five"}, None, 400, "no_payment_intent_to_refund"),
    ],
)
async def test_checkout_refund_rejections(
    async_client: AsyncClient,
    session_factory: async_sessionmaker,
    stripe_fake: FakeStripeAdapter,
    admin_headers: dict,
    session_id: str,
    metadata,
    payment_intent,
    status_code: int,
    code: str,
) -> None:
    async with session_factory() as session:
        account = await create_account(session, email="reject@example.com")
    if metadata is not None:
        stripe_fake.add_session(
            session_id, metadata={**metadata, "account_id": str(account.id)}, payment_intent=payment_intent
        )

    response = await async_client.post(
        "/v1/admin/refunds/checkout-session", json={"sessionId": session_id}, headers=admin_headers
    )

    assert response.status_code == status_code
    assert response.json()["details"][0]["code"] == code
    assert stripe_fake.refund_calls == []


@pytest.mark.asyncio
async def test_gateway_refund_failure_leaves_ledger_untouched(
    async_client: AsyncClient,
    session_factory: async_sessionmaker,
    stripe_fake: FakeStripeAdapter,
    admin_headers: dict,
) -> None:
    async with session_factory() as session:
        account = await create_account(session, email="declined@example.com")
    await _buy_pack(async_client, stripe_fake, account, session_id="cs_declined")
    stripe_fake.fail_refunds = True

    response = await async_client.post(
        "/v1/admin/refunds/checkout-session", json={"sessionId": "cs_declined"}, headers=admin_headers
    )

    assert response.status_code == 502
    assert await _balance(session_factory, account.id) == 3
    async with session_factory() as session:
        assert await LedgerService(session).get_entry_by_reference("stripe_session_refund:cs_declined") is None


@pytest.mark.asyncio
async def test_last_unlock_refund_returns_one_credit_once(
    async_client: AsyncClient,
    session_factory: async_sessionmaker,
    admin_headers: dict,
) -> None:
    async with session_factory() as session:
        account = await create_account(session, email="unlock@example.com", identity_id="user-unlock", credits=2)
    user_headers = bearer("user-unlock", "unlock@example.com")
    await async_client.post("/v1/credits/consume", json={"scanId": "u1"}, headers=user_headers)
    await async_client.post("/v1/credits/consume", json={"scanId": "u2"}, headers=user_headers)

    first = await async_client.post(
        "/v1/admin/refunds/last-unlock", json={"email": "unlock@example.com"}, headers=admin_headers
    )
    second = await async_client.post(
        "/v1/admin/refunds/last-unlock", json={"email": "unlock@example.com"}, headers=admin_headers
    )

    assert first.status_code == 200
    assert first.json()["refunded_reference"] == "scan:u2"
    assert first.json()["credits_before"] == 0
    assert first.json()["credits_after"] == 1
    assert second.status_code == 409
    assert await _balance(session_factory, account.id) == 1

    async with session_factory() as session:
        result = await session.execute(
            select(LedgerEntry).where(LedgerEntry.event_type == LedgerEventType.ADMIN_REFUND)
        )
        refunds = list(result.scalars().all())
    assert [entry.reference for entry in refunds] == ["refund:scan:u2"]


@pytest.mark.asyncio
async def test_last_unlock_refund_ignores_free_unlocks(
    async_client: AsyncClient,
    session_factory: async_sessionmaker,
    admin_headers: dict,
) -> None:
    async with session_factory() as session:
        await create_account(session, email="gift@example.com", identity_id="user-gift")
    await async_client.post(
        "/v1/admin/scans/force-unlock", json={"email": "gift@example.com", "scanId": "g1"}, headers=admin_headers
    )

    response = await async_client.post(
        "/v1/admin/refunds/last-unlock", json={"email": "gift@example.com"}, headers=admin_headers
    )

    assert response.status_code == 400
    assert response.json()["details"][0]["code"] == "no_unlocks_to_refund"


@pytest.mark.asyncio
async def test_last_unlock_refund_for_unknown_user(async_client: AsyncClient, admin_headers: dict) -> None:
    response = await async_client.post(
        "/v1/admin/refunds/last-unlock", json={"email": "ghost@example.com"}, headers=admin_headers
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_refunds_require_admin(async_client: AsyncClient) -> None:
    headers = bearer("user-sneaky", "sneaky@example.com")

    checkout = await async_client.post("/v1/admin/refunds/checkout-session", json={"sessionId": "cs_1"}, headers=headers)
    unlock = await async_client.post("/v1/admin/refunds/last-unlock", json={"email": "a@example.com"}, headers=headers)

    assert checkout.status_code == 403
    assert unlock.status_code == 403
