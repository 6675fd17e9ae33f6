"""Scan unlock gate."""
from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.api.deps import get_current_account, get_db
from creditledger.models.account import Account
from creditledger.schemas.consumption import UnlockStatus
from creditledger.services.consumption_service import ConsumptionService

router = APIRouter(prefix="/scans", tags=["scans"])


@router.get("/{scan_id}/unlock", response_model=UnlockStatus)
async def get_unlock_status(
    scan_id: str = Path(..., min_length=1, max_length=200),
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(get_current_account),
) -> UnlockStatus:
    """Whether the caller has unlocked a scan's report."""
    return await ConsumptionService(db).unlock_status(account, scan_id.strip())
