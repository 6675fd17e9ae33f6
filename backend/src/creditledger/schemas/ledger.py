"""Pydantic schemas for ledger entries and balances."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from creditledger.models.ledger_entry import LedgerEventType


class LedgerEntry(BaseModel):
    """Schema for returning a ledger entry."""

    id: UUID
    account_id: UUID
    event_type: LedgerEventType
    credits_delta: int
    balance_after: int
    sequence: int
    reference: str
    note: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LedgerEntryList(BaseModel):
    """Schema for paginated ledger history."""

    items: list[LedgerEntry]
    total: int
    page: int
    page_size: int


class CreditBalance(BaseModel):
    """Schema for an account's current credit balance."""

    account_id: UUID
    credits: int = Field(..., ge=0, description="Cached balance, equal to the latest entry's balance_after")


class ChainVerification(BaseModel):
    """Result of replaying an account's ledger."""

    account_id: UUID
    entries_checked: int
    valid: bool
    cached_balance: int
    ledger_balance: int
    first_broken_sequence: int | None = Field(
        default=None, description="Sequence of the first entry whose balance_after does not follow"
    )
