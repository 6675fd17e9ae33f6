"""Integration tests for the ledger store and its idempotency guard."""
import asyncio
import os

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from creditledger.exceptions import (
    AlreadyApplied,
    ConfigurationError,
    InsufficientCredits,
    InvalidDelta,
    PersistenceError,
    UserNotFound,
)
from creditledger.models.account import Account
from creditledger.models.ledger_entry import LedgerEntry, LedgerEventType
from creditledger.services import ledger_service
from creditledger.services.ledger_service import LedgerService, commit_with_retry
from tests.utils.factories import create_account

requires_postgres = pytest.mark.skipif(
    not os.environ.get("TEST_DATABASE_URL", "").startswith("postgresql"),
    reason="Concurrent writers need a database with row locks (set TEST_DATABASE_URL to PostgreSQL)",
)


async def _entry_count(session: AsyncSession, account_id) -> int:
    result = await session.execute(
        select(func.count()).select_from(LedgerEntry).where(LedgerEntry.account_id == account_id)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_append_grant_moves_balance_and_numbers_entry(db_session: AsyncSession) -> None:
    """A grant writes one entry whose balance_after becomes the cached balance."""
    account = await create_account(db_session)
    ledger = LedgerService(db_session)

    result = await ledger.append_entry(
        account.id, LedgerEventType.CREDIT_PACK_PURCHASE, 3, "stripe_session_purchase:cs_a"
    )
    await db_session.commit()

    assert result.applied is True
    assert result.entry.credits_delta == 3
    assert result.entry.balance_after == 3
    assert result.entry.sequence == 1
    assert result.balance_before == 0

    await db_session.refresh(account)
    assert account.credit_balance == 3
    assert account.ledger_sequence == 1


@pytest.mark.asyncio
async def test_append_same_reference_returns_existing_entry(db_session: AsyncSession) -> None:
    """Replaying a reference writes nothing and returns the first entry."""
    account = await create_account(db_session)
    ledger = LedgerService(db_session)

    first = await ledger.append_entry(account.id, LedgerEventType.CREDIT_PACK_PURCHASE, 3, "stripe_session_purchase:cs_b")
    await db_session.commit()
    second = await ledger.append_entry(account.id, LedgerEventType.CREDIT_PACK_PURCHASE, 3, "stripe_session_purchase:cs_b")
    await db_session.commit()

    assert second.applied is False
    assert second.entry.id == first.entry.id
    assert await _entry_count(db_session, account.id) == 1

    await db_session.refresh(account)
    assert account.credit_balance == 3


@pytest.mark.asyncio
async def test_debit_below_zero_is_rejected_without_writing(db_session: AsyncSession) -> None:
    """A debit larger than the balance is a hard stop with no partial effect."""
    account = await create_account(db_session, credits=1)
    account_id = account.id
    ledger = LedgerService(db_session)

    with pytest.raises(InsufficientCredits) as exc_info:
        await ledger.append_entry(account_id, LedgerEventType.ADMIN_ADJUSTMENT, -2, "admin:too_much:1")
    await db_session.rollback()

    assert exc_info.value.context == {"balance": 1, "required": 2}
    assert await _entry_count(db_session, account_id) == 1
    reloaded = await db_session.get(Account, account_id)
    assert reloaded.credit_balance == 1


@pytest.mark.asyncio
async def test_reference_owned_by_another_account(db_session: AsyncSession) -> None:
    """A reference names one event for one account."""
    owner = await create_account(db_session)
    other = await create_account(db_session)
    ledger = LedgerService(db_session)

    await ledger.append_entry(owner.id, LedgerEventType.CREDIT_PACK_PURCHASE, 1, "stripe_session_purchase:cs_c")
    await db_session.commit()

    with pytest.raises(AlreadyApplied):
        await ledger.append_entry(other.id, LedgerEventType.CREDIT_PACK_PURCHASE, 1, "stripe_session_purchase:cs_c")


@pytest.mark.asyncio
async def test_zero_delta_only_for_marker_entries(db_session: AsyncSession) -> None:
    account = await create_account(db_session, credits=1)
    ledger = LedgerService(db_session)

    with pytest.raises(InvalidDelta):
        await ledger.append_entry(account.id, LedgerEventType.ADMIN_ADJUSTMENT, 0, "admin:zero:1")
    with pytest.raises(InvalidDelta):
        await ledger.append_entry(account.id, LedgerEventType.ADMIN_REFUND_MARKER, 1, "stripe_session_refund:cs_d")

    marker = await ledger.append_entry(account.id, LedgerEventType.ADMIN_REFUND_MARKER, 0, "stripe_session_refund:cs_d")
    await db_session.commit()

    assert marker.applied is True
    assert marker.entry.balance_after == 1
    assert marker.entry.sequence == 2


@pytest.mark.asyncio
async def test_append_for_unknown_account(db_session: AsyncSession) -> None:
    from uuid import uuid4

    with pytest.raises(UserNotFound):
        await LedgerService(db_session).append_entry(uuid4(), LedgerEventType.ADMIN_ADJUSTMENT, 1, "admin:x:1")


@pytest.mark.asyncio
async def test_chain_replays_to_cached_balance(db_session: AsyncSession) -> None:
    """Every entry's balance_after follows from the previous one."""
    account = await create_account(db_session)
    ledger = LedgerService(db_session)

    movements = [
        (LedgerEventType.CREDIT_PACK_PURCHASE, 5, "stripe_session_purchase:cs_e"),
        (LedgerEventType.IN_PERSON_SCAN_COMPLETED, -1, "scan:e1"),
        (LedgerEventType.IN_PERSON_SCAN_COMPLETED, -1, "scan:e2"),
        (LedgerEventType.ADMIN_REFUND, 1, "refund:scan:e2"),
        (LedgerEventType.ADMIN_FORCE_UNLOCK, 0, "scan:e3"),
        (LedgerEventType.ADMIN_ADJUSTMENT, -2, "admin:cleanup:1"),
    ]
    for event_type, delta, reference in movements:
        await ledger.append_entry(account.id, event_type, delta, reference)
        await db_session.commit()

    chain = await ledger.verify_chain(account.id)

    assert chain.valid is True
    assert chain.entries_checked == len(movements)
    assert chain.ledger_balance == 2
    assert chain.cached_balance == 2
    assert chain.first_broken_sequence is None


@pytest.mark.asyncio
async def test_chain_reports_first_broken_entry(db_session: AsyncSession) -> None:
    account = await create_account(db_session)
    ledger = LedgerService(db_session)
    for reference in ("admin:a:1", "admin:a:2", "admin:a:3"):
        await ledger.append_entry(account.id, LedgerEventType.ADMIN_ADJUSTMENT, 1, reference)
        await db_session.commit()

    await db_session.execute(
        update(LedgerEntry).where(LedgerEntry.reference == "admin:a:2").values(balance_after=7)
    )
    await db_session.commit()

    chain = await ledger.verify_chain(account.id)

    assert chain.valid is False
    assert chain.first_broken_sequence == 2


@pytest.mark.asyncio
async def test_insert_conflict_resolves_to_existing_entry(db_session: AsyncSession, monkeypatch) -> None:
    """
    A writer that misses the reference on its read still cannot double-apply.

    The read is forced to miss, as it would when a concurrent writer commits
    between the read and the insert; the insert itself must detect the conflict.
    """
    account = await create_account(db_session)
    ledger = LedgerService(db_session)
    first = await ledger.append_entry(account.id, LedgerEventType.CREDIT_PACK_PURCHASE, 3, "stripe_session_purchase:cs_f")
    await db_session.commit()

    original = LedgerService.get_entry_by_reference
    calls = {"count": 0}

    async def stale_first_read(self, reference):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return await original(self, reference)

    monkeypatch.setattr(LedgerService, "get_entry_by_reference", stale_first_read)

    result = await ledger.append_entry(account.id, LedgerEventType.CREDIT_PACK_PURCHASE, 3, "stripe_session_purchase:cs_f")
    await db_session.commit()

    assert calls["count"] == 2
    assert result.applied is False
    assert result.entry.id == first.entry.id
    assert await _entry_count(db_session, account.id) == 1
    await db_session.refresh(account)
    assert account.credit_balance == 3


@pytest.mark.asyncio
async def test_sequence_conflict_surfaces_as_persistence_error(db_session: AsyncSession) -> None:
    """A writer that computed from a stale sequence loses and changes nothing."""
    account = await create_account(db_session, credits=2)
    account_id = account.id
    db_session.add(
        LedgerEntry(
            account_id=account_id,
            event_type=LedgerEventType.ADMIN_ADJUSTMENT,
            credits_delta=1,
            balance_after=3,
            sequence=account.ledger_sequence + 1,
            reference="admin:concurrent:1",
        )
    )
    await db_session.commit()

    with pytest.raises(PersistenceError):
        await LedgerService(db_session).append_entry(
            account_id, LedgerEventType.IN_PERSON_SCAN_COMPLETED, -1, "scan:g1"
        )

    result = await db_session.execute(select(Account.credit_balance).where(Account.id == account_id))
    assert result.scalar_one() == 2
    assert await _entry_count(db_session, account_id) == 2
    assert await LedgerService(db_session).get_entry_by_reference("scan:g1") is None


@pytest.mark.asyncio
async def test_commit_with_retry_retries_after_persistence_error(db_session: AsyncSession) -> None:
    account = await create_account(db_session)
    ledger = LedgerService(db_session)
    attempts = {"count": 0}

    async def flaky_write():
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise PersistenceError()
        return await ledger.append_entry(account.id, LedgerEventType.ADMIN_ADJUSTMENT, 2, "admin:retry:1")

    result = await commit_with_retry(db_session, flaky_write, attempts=3)

    assert attempts["count"] == 2
    assert result.applied is True
    assert result.balance_after == 2


@pytest.mark.asyncio
async def test_commit_with_retry_gives_up(db_session: AsyncSession) -> None:
    async def always_fails():
        raise PersistenceError()

    with pytest.raises(PersistenceError):
        await commit_with_retry(db_session, always_fails, attempts=2)


@pytest.mark.asyncio
async def test_commit_with_retry_runs_at_least_once(db_session: AsyncSession) -> None:
    calls = {"count": 0}

    async def always_fails():
        calls["count"] += 1
        raise PersistenceError()

    with pytest.raises(PersistenceError):
        await commit_with_retry(db_session, always_fails, attempts=0)
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_unsupported_dialect_is_a_configuration_error(db_session: AsyncSession, monkeypatch) -> None:
    account = await create_account(db_session)
    account_id = account.id
    monkeypatch.setattr(ledger_service, "_INSERT_BY_DIALECT", {})

    with pytest.raises(ConfigurationError) as exc_info:
        await LedgerService(db_session).append_entry(
            account_id, LedgerEventType.ADMIN_ADJUSTMENT, 1, "admin:dialect:1"
        )
    await db_session.rollback()

    assert exc_info.value.status_code == 500
    assert exc_info.value.context == {"dialect": db_session.get_bind().dialect.name}
    assert await _entry_count(db_session, account_id) == 0


@requires_postgres
@pytest.mark.asyncio
async def test_concurrent_appends_with_same_reference_apply_once(session_factory: async_sessionmaker) -> None:
    """Parallel deliveries of one event produce exactly one entry."""
    async with session_factory() as session:
        account = await create_account(session)
        account_id = account.id

    async def deliver():
        async with session_factory() as session:
            result = await LedgerService(session).append_entry(
                account_id, LedgerEventType.CREDIT_PACK_PURCHASE, 3, "stripe_session_purchase:cs_parallel"
            )
            await session.commit()
            return result.applied

    outcomes = await asyncio.gather(*(deliver() for _ in range(8)))

    assert outcomes.count(True) == 1
    async with session_factory() as session:
        assert await _entry_count(session, account_id) == 1
        chain = await LedgerService(session).verify_chain(account_id)
        assert chain.valid is True
        assert chain.cached_balance == 3


@requires_postgres
@pytest.mark.asyncio
async def test_concurrent_debits_never_overdraw(session_factory: async_sessionmaker) -> None:
    """Two spends racing for the last credit: one wins, one is refused."""
    async with session_factory() as session:
        account = await create_account(session, credits=1)
        account_id = account.id

    async def spend(scan_id: str):
        async with session_factory() as session:
            try:
                await LedgerService(session).append_entry(
                    account_id, LedgerEventType.IN_PERSON_SCAN_COMPLETED, -1, f"scan:{scan_id}"
                )
                await session.commit()
                return "spent"
            except InsufficientCredits:
                await session.rollback()
                return "refused"

    outcomes = await asyncio.gather(spend("p1"), spend("p2"))

    assert sorted(outcomes) == ["refused", "spent"]
    async with session_factory() as session:
        chain = await LedgerService(session).verify_chain(account_id)
        assert chain.valid is True
        assert chain.cached_balance == 0
