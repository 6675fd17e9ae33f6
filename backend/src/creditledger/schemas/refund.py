"""Pydantic schemas for refund endpoints."""
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from creditledger.schemas.admin import TargetUser


class CheckoutRefundRequest(BaseModel):
    """Schema for refunding a credit pack checkout session."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", description="Stripe checkout session id (cs_...)")
    reason: str | None = Field(default=None)


class CheckoutRefundResponse(BaseModel):
    """Schema for a completed credit pack refund."""

    ok: bool = True
    refunded: bool = True
    refund_id: str
    payment_intent: str
    session_id: str
    pack: str | None
    credits_restored: int
    credits_before: int
    credits_after: int


class UnlockRefundRequest(TargetUser):
    """Schema for refunding a user's most recent paid unlock."""

    reason: str | None = Field(default=None)


class UnlockRefundResponse(BaseModel):
    """Schema for a completed unlock refund."""

    success: bool = True
    user_id: UUID
    refunded_reference: str
    credits_before: int
    credits_after: int
