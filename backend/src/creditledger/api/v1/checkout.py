"""Credit pack checkout endpoints."""
from fastapi import APIRouter, Depends, status

from creditledger.adapters.stripe_adapter import StripeAdapter
from creditledger.api.deps import get_current_account, get_stripe_adapter
from creditledger.models.account import Account
from creditledger.schemas.checkout import CheckoutSessionCreate, CheckoutSessionResponse
from creditledger.services.checkout_service import CheckoutService

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/sessions", response_model=CheckoutSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_checkout_session(
    body: CheckoutSessionCreate,
    account: Account = Depends(get_current_account),
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
) -> CheckoutSessionResponse:
    """
    Start a Stripe checkout for a credit pack.

    Credits are granted by the webhook once the payment succeeds, never by
    this endpoint.
    """
    return await CheckoutService(stripe_adapter).create_checkout(account, body.pack, body.scan_id)
