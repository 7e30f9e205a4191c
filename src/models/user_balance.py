"""
User balance model.

One row per user. current_balance always equals the balance_after of the
user's most recent balance transaction.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import Integer, TIMESTAMP, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import MONEY_PRECISION, MONEY_SCALE
from core.database import Base

if TYPE_CHECKING:
    from models.balance_transaction import BalanceTransaction


class UserBalance(Base):
    """Per-user monetary balance."""

    __tablename__ = "user_balances"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    user_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    """Owner of the balance. Users live outside the core."""

    hospital_id: Mapped[Optional[int]] = mapped_column(Integer, unique=True, index=True, nullable=True)
    """Set on the hospital authority account that receives the hospital's share of booking payments."""

    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(MONEY_PRECISION, MONEY_SCALE), default=Decimal("0"), nullable=False
    )

    last_transaction_at: Mapped[Optional[datetime]] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    transactions: Mapped[List["BalanceTransaction"]] = relationship(
        "BalanceTransaction",
        back_populates="balance",
        order_by="BalanceTransaction.id",
    )

    __table_args__ = (
        CheckConstraint('current_balance >= 0', name='ck_user_balance_non_negative'),
    )

    def __repr__(self) -> str:
        return f"<UserBalance(user_id={self.user_id}, current_balance={self.current_balance})>"
