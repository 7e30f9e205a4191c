"""
Balance transaction model.

Append-only ledger entry. balance_after == balance_before + amount holds for
every row, and replaying a user's entries in id order from zero reproduces
the stored balance.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, TYPE_CHECKING
from sqlalchemy import String, Integer, Text, TIMESTAMP, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MAX_STATUS_LENGTH, MAX_REFERENCE_LENGTH, MONEY_PRECISION, MONEY_SCALE
from core.database import Base

if TYPE_CHECKING:
    from models.user_balance import UserBalance


class BalanceTransaction(Base):
    """One signed change to a user's balance."""

    __tablename__ = "balance_transactions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    balance_id: Mapped[int] = mapped_column(ForeignKey("user_balances.id", ondelete="CASCADE"), index=True)
    """Balance row this entry belongs to."""

    user_id: Mapped[int] = mapped_column(Integer, index=True)

    transaction_type: Mapped[str] = mapped_column(String(MAX_STATUS_LENGTH))
    """See BalanceTransactionType."""

    amount: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE))
    """Signed amount: negative for debits, positive for credits."""

    balance_before: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE))
    balance_after: Mapped[Decimal] = mapped_column(Numeric(MONEY_PRECISION, MONEY_SCALE))

    reference_id: Mapped[Optional[str]] = mapped_column(String(MAX_REFERENCE_LENGTH), nullable=True, index=True)
    """External reference, e.g. 'booking:42'."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    processed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, index=True)

    balance: Mapped["UserBalance"] = relationship("UserBalance", back_populates="transactions")

    __table_args__ = (
        CheckConstraint('balance_after >= 0', name='ck_balance_transaction_non_negative'),
    )

    def __repr__(self) -> str:
        return (
            f"<BalanceTransaction(id={self.id}, user_id={self.user_id}, "
            f"type='{self.transaction_type}', amount={self.amount})>"
        )
