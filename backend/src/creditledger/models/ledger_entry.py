"""Ledger entry model: one immutable, signed credit movement."""
import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from creditledger.models.base import Base


class LedgerEventType(str, enum.Enum):
    """Kinds of credit movement recorded in the ledger."""

    CREDIT_PACK_PURCHASE = "credit_pack_purchase"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    ADMIN_REFUND_CREDIT_PACK = "admin_refund_credit_pack"
    ADMIN_REFUND_MARKER = "admin_refund_marker"
    IN_PERSON_SCAN_COMPLETED = "in_person_scan_completed"
    ADMIN_REFUND = "admin_refund"
    ADMIN_FORCE_UNLOCK = "admin_force_unlock"


# Entries that only occupy a reference and move no credits
ZERO_DELTA_EVENT_TYPES = frozenset(
    {LedgerEventType.ADMIN_REFUND_MARKER, LedgerEventType.ADMIN_FORCE_UNLOCK}
)


class LedgerEntry(Base):
    """
    Append-only credit movement for an account.

    ``reference`` names the real-world event the entry stands for and is unique
    across the table; it is the idempotency key. ``sequence`` numbers the
    account's entries 1, 2, 3, ... and ``balance_after`` snapshots the running
    balance, so ``balance_after[n] == balance_after[n - 1] + credits_delta[n]``.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("reference", name="uq_ledger_entries_reference"),
        UniqueConstraint("account_id", "sequence", name="uq_ledger_entries_account_sequence"),
        CheckConstraint("balance_after >= 0", name="ck_ledger_entries_balance_after_non_negative"),
    )

    account_id = Column(Uuid(as_uuid=True), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(
        SQLEnum(
            LedgerEventType,
            name="ledgereventtype",
            native_enum=False,
            length=64,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        index=True,
    )
    credits_delta = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    sequence = Column(Integer, nullable=False)
    reference = Column(String(512), nullable=False)
    note = Column(String, nullable=True)

    # Relationships
    account = relationship("Account", back_populates="ledger_entries")

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<LedgerEntry(id={self.id}, account_id={self.account_id}, event_type={self.event_type.value}, "
            f"delta={self.credits_delta}, balance_after={self.balance_after}, reference={self.reference})>"
        )
