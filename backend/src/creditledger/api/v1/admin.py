"""Administrator endpoints: adjustments, lookups, force unlocks and refunds."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from creditledger.adapters.stripe_adapter import StripeAdapter
from creditledger.api.deps import get_current_user, get_db, get_stripe_adapter
from creditledger.auth.rbac import require_admin
from creditledger.schemas.admin import (
    AdminAdjustRequest,
    AdminAdjustResponse,
    ForceUnlockRequest,
    ForceUnlockResponse,
    UserLookupRequest,
    UserLookupResponse,
)
from creditledger.schemas.refund import (
    CheckoutRefundRequest,
    CheckoutRefundResponse,
    UnlockRefundRequest,
    UnlockRefundResponse,
)
from creditledger.services.admin_service import AdminService
from creditledger.services.refund_service import RefundService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/credits/adjust", response_model=AdminAdjustResponse)
@require_admin
async def adjust_credits(
    body: AdminAdjustRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> AdminAdjustResponse:
    """
    Add or remove credits for a user.

    Every submission is recorded as its own ledger entry. Removals that would
    take the balance below zero are rejected with 402.
    """
    result = await AdminService(db).adjust_credits(
        email=body.email,
        delta=body.delta,
        reason=body.reason,
        admin_email=current_user.get("email"),
    )
    await db.commit()
    return result


@router.post("/users/lookup", response_model=UserLookupResponse)
@require_admin
async def lookup_user(
    body: UserLookupRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> UserLookupResponse:
    """Get a user's account, recent ledger entries and a balance chain check."""
    return await AdminService(db).lookup_user(body.email)


@router.post("/scans/force-unlock", response_model=ForceUnlockResponse)
@require_admin
async def force_unlock_scan(
    body: ForceUnlockRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
) -> ForceUnlockResponse:
    """Unlock a scan for a user without spending a credit."""
    result = await AdminService(db).force_unlock(
        email=body.email,
        scan_id=body.scan_id,
        reason=body.reason,
        admin_email=current_user.get("email"),
    )
    await db.commit()
    return result


@router.post("/refunds/checkout-session", response_model=CheckoutRefundResponse)
@require_admin
async def refund_checkout_session(
    body: CheckoutRefundRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
) -> CheckoutRefundResponse:
    """
    Refund a credit pack purchase at Stripe and restore its credits.

    A second refund of the same session responds 409 ``already_refunded``.
    """
    return await RefundService(db, stripe_adapter).refund_checkout_session(
        session_id=body.session_id,
        reason=body.reason,
        admin_email=current_user.get("email"),
    )


@router.post("/refunds/last-unlock", response_model=UnlockRefundResponse)
@require_admin
async def refund_last_unlock(
    body: UnlockRefundRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
) -> UnlockRefundResponse:
    """
    Return the credit spent on a user's most recent paid unlock.

    A second refund of the same unlock responds 409 ``already_refunded``.
    """
    result = await RefundService(db, stripe_adapter).refund_last_unlock(
        email=body.email,
        reason=body.reason,
        admin_email=current_user.get("email"),
    )
    await db.commit()
    return result
