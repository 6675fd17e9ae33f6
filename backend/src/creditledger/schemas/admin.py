"""Pydantic schemas for administrator endpoints."""
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic_core import PydanticCustomError

from creditledger.schemas.account import Account
from creditledger.schemas.ledger import ChainVerification, LedgerEntry


def normalize_email(value: str) -> str:
    """Trim and lowercase an email address for lookups and comparisons."""
    return str(value or "").strip().lower()


class TargetUser(BaseModel):
    """Body fields identifying the account an admin acts on."""

    email: EmailStr = Field(..., description="Email of the target user")

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return normalize_email(value)


class AdminAdjustRequest(TargetUser):
    """Schema for a manual credit adjustment.

    Examples:
        ```json
        {"email": "driver@example.com", "delta": 5, "reason": "testing"}
        ```
    """

    delta: int = Field(..., description="Signed number of credits to add or remove")
    reason: str | None = Field(default=None, description="Audit reason, truncated to the configured length")

    @field_validator("delta", mode="before")
    @classmethod
    def _reject_boolean_delta(cls, value):
        # JSON true/false would otherwise coerce to 1/0
        if isinstance(value, bool):
            raise PydanticCustomError("int_type", "Input should be a valid integer")
        return value


class AdminAdjustResponse(BaseModel):
    """Schema for the result of a manual credit adjustment."""

    ok: bool = True
    user_id: UUID
    email: str
    previous_credits: int
    new_credits: int
    entry: LedgerEntry


class UserLookupRequest(TargetUser):
    """Schema for looking up a user by email."""


class UserLookupResponse(BaseModel):
    """Schema for an account with its recent ledger."""

    account: Account
    ledger: list[LedgerEntry]
    chain: ChainVerification


class ForceUnlockRequest(TargetUser):
    """Schema for unlocking a scan without spending a credit."""

    model_config = ConfigDict(populate_by_name=True)

    scan_id: str = Field(..., alias="scanId", min_length=1, max_length=200)
    reason: str | None = Field(default=None)

    @field_validator("scan_id")
    @classmethod
    def _strip_scan_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("scanId must not be blank")
        return value


class ForceUnlockResponse(BaseModel):
    """Schema for a force-unlock result."""

    success: bool = True
    already_unlocked: bool
    scan_id: str
    user_id: UUID
    entry: LedgerEntry
