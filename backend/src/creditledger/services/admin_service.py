"""Administrator operations on user credit balances."""
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger import metrics
from creditledger.config import settings
from creditledger.exceptions import AlreadyApplied, DeltaTooLarge, InvalidDelta
from creditledger.models.ledger_entry import LedgerEventType
from creditledger.schemas.account import Account as AccountSchema
from creditledger.schemas.admin import AdminAdjustResponse, ForceUnlockResponse, UserLookupResponse
from creditledger.schemas.ledger import LedgerEntry as LedgerEntrySchema
from creditledger.services.account_service import AccountService
from creditledger.services.ledger_service import LedgerService
from creditledger.utils.references import admin_reference, scan_reference

logger = structlog.get_logger(__name__)

LOOKUP_LEDGER_LIMIT = 50


def truncate_reason(reason: Optional[str], max_length: int) -> Optional[str]:
    """Trim a free-text reason and cap its stored length; blank becomes None."""
    if reason is None:
        return None
    reason = reason.strip()
    return reason[:max_length] or None


class AdminService:
    """Service layer for administrator credit operations.

    Callers are already authorized; every method here trusts ``admin_email``.
    """

    def __init__(self, db: AsyncSession):
        """Initialize admin service with database session."""
        self.db = db
        self.ledger = LedgerService(db)
        self.accounts = AccountService(db)

    async def adjust_credits(
        self,
        email: str,
        delta: int,
        reason: Optional[str],
        admin_email: str,
    ) -> AdminAdjustResponse:
        """
        Add or remove credits for a user by email.

        Each call is a distinct event with its own reference, so two identical
        submissions produce two entries. A removal larger than the balance is
        rejected rather than clamped.

        Args:
            email: Target user's email
            delta: Signed number of credits
            reason: Audit reason
            admin_email: Email of the acting administrator

        Returns:
            Balances before and after with the written entry

        Raises:
            InvalidDelta: If delta is zero
            DeltaTooLarge: If |delta| exceeds the configured ceiling
            UserNotFound: If no account has this email
            InsufficientCredits: If the removal exceeds the balance
        """
        if delta == 0:
            raise InvalidDelta()
        if abs(delta) > settings.admin_max_delta:
            raise DeltaTooLarge(
                f"Credit delta {delta} exceeds the ceiling of {settings.admin_max_delta}",
                ceiling=settings.admin_max_delta,
            )

        reason = truncate_reason(reason, settings.admin_reason_max_length)
        account = await self.accounts.require_account_by_email(email)

        result = await self.ledger.append_entry(
            account_id=account.id,
            event_type=LedgerEventType.ADMIN_ADJUSTMENT,
            delta=delta,
            reference=admin_reference(reason),
            note=f"by:{admin_email}" + (f" reason:{reason}" if reason else ""),
        )

        metrics.admin_adjustments_total.labels(direction="add" if delta > 0 else "remove").inc()
        logger.info(
            "admin_credit_adjustment",
            admin_email=admin_email,
            account_id=str(account.id),
            delta=delta,
            previous_credits=result.balance_before,
            new_credits=result.balance_after,
            reason=reason,
        )

        return AdminAdjustResponse(
            user_id=account.id,
            email=account.email,
            previous_credits=result.balance_before,
            new_credits=result.balance_after,
            entry=LedgerEntrySchema.model_validate(result.entry),
        )

    async def lookup_user(self, email: str) -> UserLookupResponse:
        """
        Get an account with its most recent ledger entries and a chain check.

        Raises:
            UserNotFound: If no account has this email
        """
        account = await self.accounts.require_account_by_email(email)
        entries, _ = await self.ledger.list_entries(account.id, page=1, page_size=LOOKUP_LEDGER_LIMIT)
        chain = await self.ledger.verify_chain(account.id)

        if not chain.valid:
            logger.error(
                "ledger_chain_invalid",
                account_id=str(account.id),
                first_broken_sequence=chain.first_broken_sequence,
                cached_balance=chain.cached_balance,
                ledger_balance=chain.ledger_balance,
            )

        return UserLookupResponse(
            account=AccountSchema.model_validate(account),
            ledger=[LedgerEntrySchema.model_validate(entry) for entry in entries],
            chain=chain,
        )

    async def force_unlock(
        self,
        email: str,
        scan_id: str,
        reason: Optional[str],
        admin_email: str,
    ) -> ForceUnlockResponse:
        """
        Unlock a scan for a user without spending a credit.

        Writes a zero-delta entry under the scan's reference, so a later spend
        for the same scan resolves to this entry and costs nothing.

        Raises:
            UserNotFound: If no account has this email
            AlreadyApplied: If another account already unlocked this scan
        """
        reason = truncate_reason(reason, settings.admin_reason_max_length)
        account = await self.accounts.require_account_by_email(email)
        reference = scan_reference(scan_id)

        existing = await self.ledger.get_entry_by_reference(reference)
        if existing is not None and existing.account_id != account.id:
            raise AlreadyApplied(f"Scan {scan_id} is unlocked for another account")

        result = await self.ledger.append_entry(
            account_id=account.id,
            event_type=LedgerEventType.ADMIN_FORCE_UNLOCK,
            delta=0,
            reference=reference,
            note=f"by:{admin_email}" + (f" reason:{reason}" if reason else ""),
        )

        logger.info(
            "admin_scan_force_unlocked" if result.applied else "admin_scan_already_unlocked",
            admin_email=admin_email,
            account_id=str(account.id),
            scan_id=scan_id,
            unlocked_by=result.entry.event_type.value,
        )

        return ForceUnlockResponse(
            already_unlocked=not result.applied,
            scan_id=scan_id,
            user_id=account.id,
            entry=LedgerEntrySchema.model_validate(result.entry),
        )
