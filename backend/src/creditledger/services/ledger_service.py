"""Ledger store: the single write path for credit movements.

Every controller computes *what* entry to write and *which reference* makes it
unique, then calls :meth:`LedgerService.append_entry`. Nothing else may change
``Account.credit_balance``.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID, uuid4

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger import metrics
from creditledger.exceptions import (
    AlreadyApplied,
    ConfigurationError,
    InsufficientCredits,
    InvalidDelta,
    InvalidRequest,
    PersistenceError,
    UserNotFound,
)
from creditledger.models.account import Account
from creditledger.models.ledger_entry import LedgerEntry, LedgerEventType, ZERO_DELTA_EVENT_TYPES
from creditledger.schemas.ledger import ChainVerification

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class AppendResult:
    """Outcome of an append: the entry for the reference and whether this call wrote it."""

    entry: LedgerEntry
    applied: bool

    @property
    def balance_before(self) -> int:
        return self.entry.balance_after - self.entry.credits_delta

    @property
    def balance_after(self) -> int:
        return self.entry.balance_after


class LedgerService:
    """Append-only credit ledger with reference-based idempotency."""

    def __init__(self, db: AsyncSession):
        """Initialize ledger service with database session."""
        self.db = db

    async def append_entry(
        self,
        account_id: UUID,
        event_type: LedgerEventType,
        delta: int,
        reference: str,
        note: Optional[str] = None,
    ) -> AppendResult:
        """
        Append a credit movement, or return the entry already written for ``reference``.

        Under the account row lock this reads the balance, computes the next
        balance, rejects a negative result, and inserts the entry with
        ``INSERT ... ON CONFLICT (reference) DO NOTHING RETURNING``. The insert
        is the idempotency guard: when it yields no row, another call owns the
        reference and its entry is returned with ``applied=False``. The account
        balance is only moved when this call's insert succeeded.

        The caller commits; entries and the balance change share its transaction.

        Args:
            account_id: Account to move credits for
            event_type: Kind of movement
            delta: Signed number of credits (zero only for marker entries)
            reference: Idempotency key naming the real-world event
            note: Free-text audit note

        Returns:
            AppendResult with the entry and whether it was written by this call

        Raises:
            UserNotFound: If the account does not exist
            InvalidDelta: If delta is zero for a credit-moving event
            InsufficientCredits: If the balance would go below zero
            AlreadyApplied: If the reference belongs to another account
            PersistenceError: If a concurrent writer won the sequence race
        """
        if not reference:
            raise InvalidRequest("Ledger reference is required")
        if delta == 0 and event_type not in ZERO_DELTA_EVENT_TYPES:
            raise InvalidDelta(f"{event_type.value} entries must move credits")
        if delta != 0 and event_type in ZERO_DELTA_EVENT_TYPES:
            raise InvalidDelta(f"{event_type.value} entries must not move credits")

        try:
            account = await self._lock_account(account_id)
            if account is None:
                raise UserNotFound(f"Account {account_id} not found")

            existing = await self.get_entry_by_reference(reference)
            if existing is not None:
                return self._duplicate(existing, account_id, event_type)

            next_balance = account.credit_balance + delta
            if next_balance < 0:
                metrics.ledger_insufficient_credits_total.labels(event_type=event_type.value).inc()
                logger.info(
                    "ledger_insufficient_credits",
                    account_id=str(account_id),
                    event_type=event_type.value,
                    balance=account.credit_balance,
                    delta=delta,
                    reference=reference,
                )
                raise InsufficientCredits(
                    f"Balance {account.credit_balance} cannot cover {abs(delta)} credit(s)",
                    balance=account.credit_balance,
                    required=abs(delta),
                )

            sequence = account.ledger_sequence + 1
            entry = await self._insert_if_absent(
                account_id=account_id,
                event_type=event_type,
                delta=delta,
                balance_after=next_balance,
                sequence=sequence,
                reference=reference,
                note=note,
            )

            if entry is None:
                # Lost the insert to a concurrent call with the same reference
                existing = await self.get_entry_by_reference(reference)
                if existing is None:
                    raise PersistenceError(f"Reference {reference} conflicted but no entry is visible")
                return self._duplicate(existing, account_id, event_type)

            account.credit_balance = next_balance
            account.ledger_sequence = sequence
            await self.db.flush()
        except (IntegrityError, OperationalError) as e:
            await self.db.rollback()
            metrics.ledger_write_conflicts_total.inc()
            logger.warning(
                "ledger_write_conflict",
                account_id=str(account_id),
                event_type=event_type.value,
                reference=reference,
                error=str(e.orig) if e.orig is not None else str(e),
            )
            raise PersistenceError() from e

        metrics.ledger_entries_total.labels(event_type=event_type.value).inc()
        if delta:
            metrics.credits_moved_total.labels(direction="grant" if delta > 0 else "spend").inc(abs(delta))

        logger.info(
            "ledger_entry_appended",
            account_id=str(account_id),
            entry_id=str(entry.id),
            event_type=event_type.value,
            delta=delta,
            balance_after=next_balance,
            sequence=sequence,
            reference=reference,
        )

        return AppendResult(entry=entry, applied=True)

    async def _lock_account(self, account_id: UUID) -> Account | None:
        """Load the account row FOR UPDATE, refreshing any stale copy in the session."""
        result = await self.db.execute(
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _insert_if_absent(
        self,
        account_id: UUID,
        event_type: LedgerEventType,
        delta: int,
        balance_after: int,
        sequence: int,
        reference: str,
        note: Optional[str],
    ) -> LedgerEntry | None:
        """Insert an entry unless ``reference`` exists; returns None on conflict."""
        dialect = self.db.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise ConfigurationError(f"Atomic ledger insert is not supported on {dialect}", dialect=dialect)

        stmt = (
            insert(LedgerEntry)
            .values(
                id=uuid4(),
                account_id=account_id,
                event_type=event_type,
                credits_delta=delta,
                balance_after=balance_after,
                sequence=sequence,
                reference=reference,
                note=note,
                created_at=datetime.utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["reference"])
            .returning(LedgerEntry)
        )
        result = await self.db.execute(stmt)
        return result.scalars().one_or_none()

    def _duplicate(self, existing: LedgerEntry, account_id: UUID, event_type: LedgerEventType) -> AppendResult:
        if existing.account_id != account_id:
            logger.warning(
                "ledger_reference_owned_by_other_account",
                reference=existing.reference,
                account_id=str(account_id),
                owner_account_id=str(existing.account_id),
            )
            raise AlreadyApplied(f"Reference {existing.reference} is already used by another account")

        metrics.ledger_duplicates_total.labels(event_type=event_type.value).inc()
        logger.info(
            "ledger_entry_duplicate",
            account_id=str(account_id),
            entry_id=str(existing.id),
            event_type=existing.event_type.value,
            reference=existing.reference,
        )
        return AppendResult(entry=existing, applied=False)

    async def get_entry_by_reference(self, reference: str) -> LedgerEntry | None:
        """
        Get the entry written for a reference.

        Args:
            reference: Idempotency key

        Returns:
            LedgerEntry or None if the reference has not been used
        """
        result = await self.db.execute(select(LedgerEntry).where(LedgerEntry.reference == reference))
        return result.scalar_one_or_none()

    async def get_latest_entry(self, account_id: UUID, event_type: LedgerEventType) -> LedgerEntry | None:
        """Most recent entry of a given type for an account."""
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id, LedgerEntry.event_type == event_type)
            .order_by(LedgerEntry.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_entries(
        self,
        account_id: UUID,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[LedgerEntry], int]:
        """
        List an account's entries, newest first.

        Args:
            account_id: Account UUID
            page: Page number (1-indexed)
            page_size: Items per page

        Returns:
            Tuple of (entries, total count)
        """
        total_result = await self.db.execute(
            select(func.count()).select_from(LedgerEntry).where(LedgerEntry.account_id == account_id)
        )
        total = total_result.scalar_one()

        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.account_id == account_id)
            .order_by(LedgerEntry.sequence.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def verify_chain(self, account_id: UUID) -> ChainVerification:
        """
        Replay an account's entries and check the running balance.

        Each entry must satisfy ``balance_after == previous balance_after + credits_delta``
        (the first entry starts from 0), sequences must be contiguous, and the
        account's cached balance must equal the last ``balance_after``.

        Raises:
            UserNotFound: If the account does not exist
        """
        account_result = await self.db.execute(select(Account).where(Account.id == account_id))
        account = account_result.scalar_one_or_none()
        if account is None:
            raise UserNotFound(f"Account {account_id} not found")

        result = await self.db.execute(
            select(LedgerEntry).where(LedgerEntry.account_id == account_id).order_by(LedgerEntry.sequence)
        )
        entries = list(result.scalars().all())

        running = 0
        first_broken: int | None = None
        for expected_sequence, entry in enumerate(entries, start=1):
            running += entry.credits_delta
            if first_broken is None and (entry.sequence != expected_sequence or entry.balance_after != running):
                first_broken = entry.sequence
            running = entry.balance_after

        ledger_balance = entries[-1].balance_after if entries else 0
        valid = first_broken is None and ledger_balance == account.credit_balance

        return ChainVerification(
            account_id=account_id,
            entries_checked=len(entries),
            valid=valid,
            cached_balance=account.credit_balance,
            ledger_balance=ledger_balance,
            first_broken_sequence=first_broken,
        )


async def commit_with_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    attempts: int,
) -> T:
    """
    Run an idempotent ledger operation and commit it, retrying transient failures.

    Used after an external side effect has already happened (a gateway refund),
    where the ledger write must be retried rather than the side effect repeated.
    ``operation`` must only append entries with fixed references, so a retry
    after a partial commit resolves to the entries already written.
    """
    last_error: PersistenceError | None = None
    for attempt in range(1, max(attempts, 1) + 1):
        try:
            result = await operation()
            await db.commit()
            return result
        except PersistenceError as e:
            last_error = e
            logger.warning("ledger_write_retry", attempt=attempt, attempts=attempts)
        except (IntegrityError, OperationalError) as e:
            await db.rollback()
            last_error = PersistenceError()
            last_error.__cause__ = e
            logger.warning("ledger_commit_retry", attempt=attempt, attempts=attempts, error=str(e))

    raise last_error or PersistenceError()
