"""Credit balance, history and consumption endpoints."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.api.deps import get_current_account, get_db
from creditledger.models.account import Account
from creditledger.schemas.consumption import ConsumeCreditRequest, ConsumeCreditResponse
from creditledger.schemas.ledger import CreditBalance, LedgerEntry, LedgerEntryList
from creditledger.services.consumption_service import ConsumptionService
from creditledger.services.ledger_service import LedgerService

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("", response_model=CreditBalance)
async def get_credits(account: Account = Depends(get_current_account)) -> CreditBalance:
    """Get the caller's current credit balance."""
    return CreditBalance(account_id=account.id, credits=account.credit_balance)


@router.get("/history", response_model=LedgerEntryList)
async def get_credit_history(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(get_current_account),
) -> LedgerEntryList:
    """
    List the caller's ledger entries, newest first.
    """
    entries, total = await LedgerService(db).list_entries(account.id, page=page, page_size=page_size)
    return LedgerEntryList(
        items=[LedgerEntry.model_validate(entry) for entry in entries],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/consume", response_model=ConsumeCreditResponse)
async def consume_credit(
    body: ConsumeCreditRequest,
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(get_current_account),
) -> ConsumeCreditResponse:
    """
    Spend one credit to unlock a scan report.

    Unlocking a scan that is already unlocked is free and returns the
    original entry. Responds 402 when the balance is zero, so the client can
    send the user to buy a credit pack.
    """
    result = await ConsumptionService(db).consume(account, body.scan_id)
    await db.commit()
    return result
