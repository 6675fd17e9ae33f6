"""SQLAlchemy ORM models for the credit ledger."""
# Import all models here to ensure they are registered with Alembic

from creditledger.models.base import Base
from creditledger.models.account import Account
from creditledger.models.ledger_entry import LedgerEntry, LedgerEventType, ZERO_DELTA_EVENT_TYPES

__all__ = [
    "Base",
    "Account",
    "LedgerEntry",
    "LedgerEventType",
    "ZERO_DELTA_EVENT_TYPES",
]
