"""
Balance ledger service.

Per-user monetary balance with an append-only transaction log. Every change
writes one BalanceTransaction with balance_after == balance_before + amount
in the same transaction as the balance update, so replaying a user's entries
from zero reproduces the stored balance.

The debit guard `current_balance >= amount` is part of the UPDATE itself;
has_sufficient_balance() is a read-only hint and never a substitute for it.
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import List, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import INITIAL_USER_BALANCE
from core.exceptions import InsufficientBalanceError, NotFoundError, ValidationError
from models import BalanceTransaction, UserBalance
from shared_types.balance import BalanceChange, LedgerVerification
from shared_types.enums import BalanceTransactionType
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")

DEBIT_TYPES = frozenset({
    BalanceTransactionType.BOOKING_PAYMENT,
    BalanceTransactionType.REFUND_PROCESSED,
    BalanceTransactionType.WITHDRAWAL,
    BalanceTransactionType.ADJUSTMENT,
})
CREDIT_TYPES = frozenset({
    BalanceTransactionType.PAYMENT_RECEIVED,
    BalanceTransactionType.SERVICE_CHARGE,
    BalanceTransactionType.REFUND_PROCESSED,
    BalanceTransactionType.ADJUSTMENT,
})


def to_money(value: Union[Decimal, int, float, str]) -> Decimal:
    """Convert to a Decimal rounded to cents."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value}")
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def _positive_amount(value: Union[Decimal, int, float, str]) -> Decimal:
    amount = to_money(value)
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    return amount


class BalanceLedgerService:
    """Service for user balances and the balance transaction ledger."""

    @staticmethod
    def get_account(db: Session, user_id: int, for_update: bool = False) -> UserBalance:
        query = db.query(UserBalance).filter(UserBalance.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        # Guarded UPDATEs bypass the identity map
        account = query.populate_existing().first()
        if not account:
            raise NotFoundError(f"Balance account not found for user {user_id}")
        return account

    @staticmethod
    def get_hospital_account(db: Session, hospital_id: int) -> UserBalance:
        """The account credited with a hospital's share of booking payments."""
        account = db.query(UserBalance).filter(
            UserBalance.hospital_id == hospital_id
        ).populate_existing().first()
        if not account:
            raise NotFoundError(f"Revenue account not found for hospital {hospital_id}")
        return account

    @staticmethod
    def get_balance(db: Session, user_id: int) -> Decimal:
        return to_money(BalanceLedgerService.get_account(db, user_id).current_balance)

    @staticmethod
    def has_sufficient_balance(db: Session, user_id: int, amount: Union[Decimal, int, float, str]) -> bool:
        """Read-only check; debit() re-checks atomically."""
        try:
            return BalanceLedgerService.get_balance(db, user_id) >= to_money(amount)
        except NotFoundError:
            return False

    @staticmethod
    def open_account(
        db: Session,
        user_id: int,
        initial_balance: Optional[Union[Decimal, int, float, str]] = None,
        processed_by: Optional[int] = None,
        hospital_id: Optional[int] = None
    ) -> UserBalance:
        """
        Create a balance account and commit.

        A non-zero opening balance is written as an 'adjustment' entry from 0,
        so the ledger replays from zero. Pass hospital_id to open the hospital
        authority account that receives that hospital's payment share.

        Raises:
            ValidationError: If the account exists or the balance is negative
        """
        opening = to_money(INITIAL_USER_BALANCE if initial_balance is None else initial_balance)
        if opening < 0:
            raise ValidationError("Initial balance must be non-negative")

        existing = db.query(UserBalance).filter(UserBalance.user_id == user_id).first()
        if existing:
            raise ValidationError(f"Balance account already exists for user {user_id}")
        if hospital_id is not None and db.query(UserBalance).filter(UserBalance.hospital_id == hospital_id).first():
            raise ValidationError(f"Revenue account already exists for hospital {hospital_id}")

        try:
            now = utc_now()
            account = UserBalance(user_id=user_id, hospital_id=hospital_id, current_balance=Decimal("0"))
            db.add(account)
            db.flush()

            if opening > 0:
                db.add(BalanceTransaction(
                    balance_id=account.id,
                    user_id=user_id,
                    transaction_type=BalanceTransactionType.ADJUSTMENT.value,
                    amount=opening,
                    balance_before=Decimal("0"),
                    balance_after=opening,
                    description="Opening balance",
                    processed_by=processed_by,
                    timestamp=now,
                ))
                account.current_balance = opening
                account.last_transaction_at = now
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning(f"Balance account creation conflict for user {user_id}: {e}")
            raise ValidationError(f"Balance account already exists for user {user_id}")
        except Exception:
            db.rollback()
            raise

        logger.info(f"Opened balance account for user {user_id} with {opening}")
        return account

    @staticmethod
    def debit(
        db: Session,
        user_id: int,
        amount: Union[Decimal, int, float, str],
        description: Optional[str] = None,
        transaction_type: BalanceTransactionType = BalanceTransactionType.BOOKING_PAYMENT,
        reference_id: Optional[str] = None,
        processed_by: Optional[int] = None,
        commit: bool = True
    ) -> BalanceChange:
        """
        Subtract amount from the user's balance and log the entry.

        Args:
            commit: Commit on success. Pass False to join the caller's
                transaction (the caller then commits or rolls back).

        Raises:
            ValidationError: If amount is not positive or the type is not a debit
            NotFoundError: If the user has no account
            InsufficientBalanceError: If amount exceeds the current balance
        """
        debit_amount = _positive_amount(amount)
        transaction_type = BalanceTransactionType(transaction_type)
        if transaction_type not in DEBIT_TYPES:
            raise ValidationError(f"{transaction_type.value} is not a debit transaction type")

        try:
            account = BalanceLedgerService.get_account(db, user_id)
            now = utc_now()
            result = db.execute(
                update(UserBalance)
                .where(UserBalance.id == account.id, UserBalance.current_balance >= debit_amount)
                .values(
                    current_balance=UserBalance.current_balance - debit_amount,
                    last_transaction_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:  # type: ignore[attr-defined]
                balance = BalanceLedgerService.get_balance(db, user_id)
                logger.warning(f"Debit of {debit_amount} rejected for user {user_id}: balance {balance}")
                raise InsufficientBalanceError(user_id, debit_amount, balance)

            account = BalanceLedgerService.get_account(db, user_id, for_update=True)
            new_balance = to_money(account.current_balance)
            previous_balance = new_balance + debit_amount

            entry = BalanceTransaction(
                balance_id=account.id,
                user_id=user_id,
                transaction_type=transaction_type.value,
                amount=-debit_amount,
                balance_before=previous_balance,
                balance_after=new_balance,
                reference_id=reference_id,
                description=description,
                processed_by=processed_by,
                timestamp=now,
            )
            db.add(entry)
            db.flush()
            if commit:
                db.commit()
        except Exception:
            if commit:
                db.rollback()
            raise

        logger.info(f"Debited {debit_amount} from user {user_id} ({transaction_type.value}): {previous_balance} -> {new_balance}")
        return BalanceChange(
            user_id=user_id,
            previous_balance=previous_balance,
            new_balance=new_balance,
            amount=-debit_amount,
            transaction_id=entry.id,
        )

    @staticmethod
    def credit(
        db: Session,
        user_id: int,
        amount: Union[Decimal, int, float, str],
        description: Optional[str] = None,
        transaction_type: BalanceTransactionType = BalanceTransactionType.REFUND_PROCESSED,
        reference_id: Optional[str] = None,
        processed_by: Optional[int] = None,
        commit: bool = True
    ) -> BalanceChange:
        """
        Add amount to the user's balance and log the entry.

        Raises:
            ValidationError: If amount is not positive or the type is not a credit
            NotFoundError: If the user has no account
        """
        credit_amount = _positive_amount(amount)
        transaction_type = BalanceTransactionType(transaction_type)
        if transaction_type not in CREDIT_TYPES:
            raise ValidationError(f"{transaction_type.value} is not a credit transaction type")

        try:
            account = BalanceLedgerService.get_account(db, user_id, for_update=True)
            previous_balance = to_money(account.current_balance)
            new_balance = previous_balance + credit_amount
            now = utc_now()

            account.current_balance = new_balance
            account.last_transaction_at = now
            entry = BalanceTransaction(
                balance_id=account.id,
                user_id=user_id,
                transaction_type=transaction_type.value,
                amount=credit_amount,
                balance_before=previous_balance,
                balance_after=new_balance,
                reference_id=reference_id,
                description=description,
                processed_by=processed_by,
                timestamp=now,
            )
            db.add(entry)
            db.flush()
            if commit:
                db.commit()
        except Exception:
            if commit:
                db.rollback()
            raise

        logger.info(f"Credited {credit_amount} to user {user_id} ({transaction_type.value}): {previous_balance} -> {new_balance}")
        return BalanceChange(
            user_id=user_id,
            previous_balance=previous_balance,
            new_balance=new_balance,
            amount=credit_amount,
            transaction_id=entry.id,
        )

    @staticmethod
    def get_transaction_history(
        db: Session,
        user_id: int,
        limit: Optional[int] = 50
    ) -> List[BalanceTransaction]:
        """Most recent ledger entries first."""
        query = db.query(BalanceTransaction).filter(
            BalanceTransaction.user_id == user_id
        ).order_by(BalanceTransaction.id.desc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    @staticmethod
    def verify_ledger(db: Session, user_id: int) -> LedgerVerification:
        """
        Replay the user's entries from zero and compare with the stored balance.

        An entry is inconsistent if its balance_before does not continue the
        running balance or its balance_after != balance_before + amount.
        """
        account = BalanceLedgerService.get_account(db, user_id)
        entries = db.query(BalanceTransaction).filter(
            BalanceTransaction.balance_id == account.id
        ).order_by(BalanceTransaction.id).all()

        running = Decimal("0.00")
        first_bad: Optional[int] = None
        for entry in entries:
            before = to_money(entry.balance_before)
            after = to_money(entry.balance_after)
            amount = to_money(entry.amount)
            if first_bad is None and (before != running or after != before + amount):
                first_bad = entry.id
            running = running + amount

        stored = to_money(account.current_balance)
        return LedgerVerification(
            user_id=user_id,
            entry_count=len(entries),
            replayed_balance=running,
            stored_balance=stored,
            is_consistent=first_bad is None and running == stored,
            first_inconsistent_entry_id=first_bad,
        )

    @staticmethod
    def get_entries_by_reference(
        db: Session,
        reference_id: str,
        transaction_types: Optional[List[BalanceTransactionType]] = None
    ) -> List[BalanceTransaction]:
        """Entries across all accounts carrying reference_id, oldest first."""
        query = db.query(BalanceTransaction).filter(BalanceTransaction.reference_id == reference_id)
        if transaction_types:
            query = query.filter(
                BalanceTransaction.transaction_type.in_([t.value for t in transaction_types])
            )
        return query.order_by(BalanceTransaction.id).all()
