"""Pydantic schemas for Account model."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Account(BaseModel):
    """Schema for returning account data."""

    id: UUID
    identity_id: str | None
    email: str
    credit_balance: int
    ledger_sequence: int
    stripe_customer_id: str | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
