"""
Pydantic models for balance ledger results.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class BalanceChange(BaseModel):
    """Outcome of a debit or credit."""
    user_id: int
    previous_balance: Decimal
    new_balance: Decimal
    amount: Decimal  # Signed amount applied to the balance
    transaction_id: int


class LedgerVerification(BaseModel):
    """Result of replaying a user's ledger from zero."""
    user_id: int
    entry_count: int
    replayed_balance: Decimal
    stored_balance: Decimal
    is_consistent: bool
    first_inconsistent_entry_id: Optional[int] = None


class PaymentResult(BaseModel):
    """
    Outcome of capturing or refunding a booking payment.

    amount == hospital_amount + service_charge. payer is the booking user's
    change; hospital and platform are None when their share is zero.
    """
    booking_id: int
    amount: Decimal
    hospital_amount: Decimal
    service_charge: Decimal
    payer: BalanceChange
    hospital: Optional[BalanceChange] = None
    platform: Optional[BalanceChange] = None
