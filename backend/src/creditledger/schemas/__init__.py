"""Pydantic schemas for request/response validation."""
from creditledger.schemas.account import Account
from creditledger.schemas.admin import (
    AdminAdjustRequest,
    AdminAdjustResponse,
    ForceUnlockRequest,
    ForceUnlockResponse,
    UserLookupRequest,
    UserLookupResponse,
)
from creditledger.schemas.checkout import CheckoutSessionCreate, CheckoutSessionResponse, WebhookAck
from creditledger.schemas.consumption import ConsumeCreditRequest, ConsumeCreditResponse, UnlockStatus
from creditledger.schemas.error import ErrorCode, ErrorDetail, ErrorResponse
from creditledger.schemas.ledger import ChainVerification, CreditBalance, LedgerEntry, LedgerEntryList
from creditledger.schemas.refund import (
    CheckoutRefundRequest,
    CheckoutRefundResponse,
    UnlockRefundRequest,
    UnlockRefundResponse,
)

__all__ = [
    "Account",
    "AdminAdjustRequest",
    "AdminAdjustResponse",
    "ForceUnlockRequest",
    "ForceUnlockResponse",
    "UserLookupRequest",
    "UserLookupResponse",
    "CheckoutSessionCreate",
    "CheckoutSessionResponse",
    "WebhookAck",
    "ConsumeCreditRequest",
    "ConsumeCreditResponse",
    "UnlockStatus",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "ChainVerification",
    "CreditBalance",
    "LedgerEntry",
    "LedgerEntryList",
    "CheckoutRefundRequest",
    "CheckoutRefundResponse",
    "UnlockRefundRequest",
    "UnlockRefundResponse",
]
