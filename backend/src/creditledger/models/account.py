"""Account model holding the cached credit balance."""
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from creditledger.models.base import Base


class Account(Base):
    """
    A signed-in user's credit account.

    ``credit_balance`` and ``ledger_sequence`` are a projection of the ledger.
    They are written only by ``LedgerService.append_entry`` in the same
    transaction as the entry that changes them; never assign them anywhere else.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_accounts_credit_balance_non_negative"),
    )

    identity_id = Column(String(128), nullable=True, unique=True, index=True)  # Identity provider subject
    email = Column(String, nullable=False, unique=True, index=True)  # Normalized lowercase
    credit_balance = Column(Integer, nullable=False, default=0)
    ledger_sequence = Column(Integer, nullable=False, default=0)  # Sequence of the latest entry
    stripe_customer_id = Column(String, nullable=True, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    ledger_entries = relationship(
        "LedgerEntry",
        back_populates="account",
        order_by="LedgerEntry.sequence",
        lazy="raise",
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<Account(id={self.id}, email={self.email}, credit_balance={self.credit_balance})>"
