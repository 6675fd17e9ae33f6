"""Service for spending credits on scan unlocks."""
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.models.account import Account
from creditledger.models.ledger_entry import LedgerEventType
from creditledger.schemas.consumption import ConsumeCreditResponse, UnlockStatus
from creditledger.schemas.ledger import LedgerEntry as LedgerEntrySchema
from creditledger.services.ledger_service import LedgerService
from creditledger.utils.references import scan_reference

logger = structlog.get_logger(__name__)

SCAN_UNLOCK_COST = 1


class ConsumptionService:
    """Gate between a user's credits and their scan reports."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = LedgerService(db)

    async def consume(self, account: Account, scan_id: str) -> ConsumeCreditResponse:
        """
        Spend one credit to unlock a scan.

        Unlocking the same scan again returns the original entry without
        spending, even when the balance has since reached zero.

        Args:
            account: The signed-in user's account
            scan_id: Scan to unlock

        Returns:
            Spend result with the remaining balance

        Raises:
            InsufficientCredits: If the balance is zero
        """
        result = await self.ledger.append_entry(
            account_id=account.id,
            event_type=LedgerEventType.IN_PERSON_SCAN_COMPLETED,
            delta=-SCAN_UNLOCK_COST,
            reference=scan_reference(scan_id),
            note="in_person_scan_unlock",
        )

        # A replay reports the current balance, not the one at the time of the spend
        credits_remaining = result.balance_after if result.applied else account.credit_balance

        logger.info(
            "scan_credit_consumed" if result.applied else "scan_already_unlocked",
            account_id=str(account.id),
            scan_id=scan_id,
            credits_remaining=credits_remaining,
        )

        return ConsumeCreditResponse(
            applied=result.applied,
            credits_remaining=credits_remaining,
            entry=LedgerEntrySchema.model_validate(result.entry),
        )

    async def unlock_status(self, account: Account, scan_id: str) -> UnlockStatus:
        """Whether the account has unlocked a scan, by paying or by admin grant."""
        reference = scan_reference(scan_id)
        entry = await self.ledger.get_entry_by_reference(reference)
        return UnlockStatus(
            scan_id=scan_id,
            reference=reference,
            unlocked=entry is not None and entry.account_id == account.id,
        )
