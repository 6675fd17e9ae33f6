"""Exception taxonomy for the credit ledger.

Each error carries a machine-readable ``code`` and the HTTP status the API
renders it with. Services raise these; ``main`` turns them into structured
error responses.
"""
from typing import Any, Optional

from fastapi import status


class CreditLedgerError(Exception):
    """Base class for all credit ledger errors."""

    code = "credit_ledger_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Credit ledger error"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


# Authentication / authorization


class NotAuthenticated(CreditLedgerError):
    code = "not_authenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class NotAuthorized(CreditLedgerError):
    code = "not_authorized"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Administrator access required"


# Malformed input


class InvalidSignature(CreditLedgerError):
    code = "invalid_signature"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Webhook signature verification failed"


class InvalidRequest(CreditLedgerError):
    code = "invalid_request"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class InvalidDelta(InvalidRequest):
    code = "invalid_delta"
    default_message = "Credit delta must be a non-zero integer"


class DeltaTooLarge(InvalidRequest):
    code = "delta_too_large"
    default_message = "Credit delta exceeds the adjustment ceiling"


class InvalidSessionId(InvalidRequest):
    code = "invalid_session_id"
    default_message = "A Stripe checkout session id (cs_...) is required"


class NotACreditPack(InvalidRequest):
    code = "not_a_credit_pack_purchase"
    default_message = "Checkout session is not a credit pack purchase"


class InvalidPack(InvalidRequest):
    code = "invalid_pack"
    default_message = "Unknown credit pack"


class NoPaymentIntent(InvalidRequest):
    code = "no_payment_intent_to_refund"
    default_message = "Checkout session has no payment intent to refund"


class NoUnlocksToRefund(InvalidRequest):
    code = "no_unlocks_to_refund"
    default_message = "Account has no paid unlocks to refund"


# Lookups


class UserNotFound(CreditLedgerError):
    code = "user_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "User not found"


class SessionNotFound(CreditLedgerError):
    code = "session_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Checkout session not found"


# Ledger outcomes


class InsufficientCredits(CreditLedgerError):
    code = "insufficient_credits"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "Not enough credits. Purchase a credit pack to continue."


class AlreadyApplied(CreditLedgerError):
    code = "already_applied"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This operation has already been applied"


class AlreadyRefunded(AlreadyApplied):
    code = "already_refunded"
    default_message = "Already refunded"


# Infrastructure


class ExternalGatewayError(CreditLedgerError):
    code = "external_gateway_error"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment gateway request failed"


class PersistenceError(CreditLedgerError):
    code = "persistence_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Ledger write failed; the operation is safe to retry"


class ConfigurationError(CreditLedgerError):
    code = "configuration_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Service is misconfigured"
