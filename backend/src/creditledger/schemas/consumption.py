"""Pydantic schemas for spending credits on scans."""
from pydantic import BaseModel, ConfigDict, Field, field_validator

from creditledger.schemas.ledger import LedgerEntry


class ConsumeCreditRequest(BaseModel):
    """Schema for unlocking a scan by spending one credit."""

    model_config = ConfigDict(populate_by_name=True)

    scan_id: str = Field(..., alias="scanId", min_length=1, max_length=200)

    @field_validator("scan_id")
    @classmethod
    def _strip_scan_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("scanId must not be blank")
        return value


class ConsumeCreditResponse(BaseModel):
    """Schema for a spend result; ``applied`` is False when the scan was already unlocked."""

    success: bool = True
    applied: bool
    credits_remaining: int
    entry: LedgerEntry


class UnlockStatus(BaseModel):
    """Schema for the report pipeline's unlock gate."""

    scan_id: str
    reference: str
    unlocked: bool
