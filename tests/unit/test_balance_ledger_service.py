"""
Unit tests for the balance ledger service.
"""

from decimal import Decimal

import pytest

from core.exceptions import InsufficientBalanceError, NotFoundError, ValidationError
from models import BalanceTransaction
from services.balance_ledger_service import BalanceLedgerService, to_money
from shared_types.enums import BalanceTransactionType
from tests.conftest import AUTHORITY_ID, HOSPITAL_ID, PATIENT_USER_ID, STAFF_ID


@pytest.fixture
def account(db_session):
    return BalanceLedgerService.open_account(
        db_session, PATIENT_USER_ID, initial_balance=Decimal("10000.00"), processed_by=STAFF_ID
    )


class TestToMoney:
    """Test cases for to_money()."""

    @pytest.mark.parametrize("value,expected", [
        (10, Decimal("10.00")),
        ("12.345", Decimal("12.35")),
        (Decimal("0.004"), Decimal("0.00")),
        (1500.5, Decimal("1500.50")),
    ])
    def test_rounds_to_cents(self, value, expected):
        assert to_money(value) == expected

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity"])
    def test_invalid_amounts(self, value):
        with pytest.raises(ValidationError):
            to_money(value)


class TestOpenAccount:
    """Test cases for BalanceLedgerService.open_account()."""

    def test_opening_balance_is_logged_as_adjustment(self, db_session, account):
        history = BalanceLedgerService.get_transaction_history(db_session, PATIENT_USER_ID)

        assert BalanceLedgerService.get_balance(db_session, PATIENT_USER_ID) == Decimal("10000.00")
        assert len(history) == 1
        assert history[0].transaction_type == "adjustment"
        assert to_money(history[0].balance_before) == Decimal("0.00")
        assert to_money(history[0].balance_after) == Decimal("10000.00")

    def test_zero_opening_balance_writes_no_entry(self, db_session):
        BalanceLedgerService.open_account(db_session, 77, initial_balance=0)

        assert BalanceLedgerService.get_balance(db_session, 77) == Decimal("0.00")
        assert BalanceLedgerService.get_transaction_history(db_session, 77) == []

    def test_duplicate_account_rejected(self, db_session, account):
        with pytest.raises(ValidationError, match="already exists"):
            BalanceLedgerService.open_account(db_session, PATIENT_USER_ID)

    def test_negative_opening_balance_rejected(self, db_session):
        with pytest.raises(ValidationError):
            BalanceLedgerService.open_account(db_session, 78, initial_balance=-1)

    def test_hospital_revenue_account(self, db_session):
        BalanceLedgerService.open_account(db_session, AUTHORITY_ID, initial_balance=0, hospital_id=HOSPITAL_ID)

        account = BalanceLedgerService.get_hospital_account(db_session, HOSPITAL_ID)
        assert account.user_id == AUTHORITY_ID

        with pytest.raises(ValidationError, match="Revenue account already exists"):
            BalanceLedgerService.open_account(db_session, AUTHORITY_ID + 1, hospital_id=HOSPITAL_ID)
        with pytest.raises(NotFoundError, match="Revenue account not found"):
            BalanceLedgerService.get_hospital_account(db_session, HOSPITAL_ID + 1)

    def test_missing_account(self, db_session):
        with pytest.raises(NotFoundError):
            BalanceLedgerService.get_balance(db_session, 12345)
        assert not BalanceLedgerService.has_sufficient_balance(db_session, 12345, 1)


class TestDebit:
    """Test cases for BalanceLedgerService.debit()."""

    def test_debit_updates_balance_and_logs_entry(self, db_session, account):
        change = BalanceLedgerService.debit(
            db_session, PATIENT_USER_ID, Decimal("2500.00"),
            description="ICU deposit", reference_id="booking:1", processed_by=STAFF_ID,
        )

        assert change.previous_balance == Decimal("10000.00")
        assert change.new_balance == Decimal("7500.00")
        assert change.amount == Decimal("-2500.00")

        entry = db_session.get(BalanceTransaction, change.transaction_id)
        assert entry.transaction_type == "booking_payment"
        assert to_money(entry.amount) == Decimal("-2500.00")
        assert to_money(entry.balance_after) == Decimal("7500.00")
        assert entry.reference_id == "booking:1"

    def test_overdraft_rejected_without_side_effects(self, db_session, account):
        """Balance 10000, debit 12000: rejected, balance and ledger untouched."""
        with pytest.raises(InsufficientBalanceError) as exc_info:
            BalanceLedgerService.debit(db_session, PATIENT_USER_ID, Decimal("12000"))

        assert exc_info.value.requested == Decimal("12000.00")
        assert exc_info.value.balance == Decimal("10000.00")
        assert BalanceLedgerService.get_balance(db_session, PATIENT_USER_ID) == Decimal("10000.00")
        assert len(BalanceLedgerService.get_transaction_history(db_session, PATIENT_USER_ID)) == 1

    def test_debit_of_exact_balance_reaches_zero(self, db_session, account):
        BalanceLedgerService.debit(db_session, PATIENT_USER_ID, Decimal("10000.00"))

        assert BalanceLedgerService.get_balance(db_session, PATIENT_USER_ID) == Decimal("0.00")
        assert not BalanceLedgerService.has_sufficient_balance(db_session, PATIENT_USER_ID, "0.01")

    @pytest.mark.parametrize("amount", [0, -5, "-0.01"])
    def test_non_positive_amount_rejected(self, db_session, account, amount):
        with pytest.raises(ValidationError, match="positive"):
            BalanceLedgerService.debit(db_session, PATIENT_USER_ID, amount)

    def test_credit_type_cannot_be_debited(self, db_session, account):
        with pytest.raises(ValidationError, match="not a debit"):
            BalanceLedgerService.debit(
                db_session, PATIENT_USER_ID, 10, transaction_type=BalanceTransactionType.PAYMENT_RECEIVED
            )

    def test_debit_without_commit_joins_caller_transaction(self, db_session, account):
        BalanceLedgerService.debit(db_session, PATIENT_USER_ID, 100, commit=False)
        db_session.rollback()

        assert BalanceLedgerService.get_balance(db_session, PATIENT_USER_ID) == Decimal("10000.00")
        assert len(BalanceLedgerService.get_transaction_history(db_session, PATIENT_USER_ID)) == 1


class TestCredit:
    """Test cases for BalanceLedgerService.credit()."""

    def test_credit_updates_balance(self, db_session, account):
        change = BalanceLedgerService.credit(
            db_session, PATIENT_USER_ID, "250.75", transaction_type=BalanceTransactionType.PAYMENT_RECEIVED
        )

        assert change.new_balance == Decimal("10250.75")
        assert change.amount == Decimal("250.75")
        assert BalanceLedgerService.get_balance(db_session, PATIENT_USER_ID) == Decimal("10250.75")

    def test_debit_type_cannot_be_credited(self, db_session, account):
        with pytest.raises(ValidationError, match="not a credit"):
            BalanceLedgerService.credit(
                db_session, PATIENT_USER_ID, 10, transaction_type=BalanceTransactionType.WITHDRAWAL
            )

    def test_credit_to_missing_account(self, db_session):
        with pytest.raises(NotFoundError):
            BalanceLedgerService.credit(db_session, 999, 10)


class TestLedgerVerification:
    """Test cases for BalanceLedgerService.verify_ledger()."""

    def test_replay_matches_stored_balance(self, db_session, account):
        BalanceLedgerService.debit(db_session, PATIENT_USER_ID, "1200.10")
        BalanceLedgerService.credit(db_session, PATIENT_USER_ID, "200.05")
        BalanceLedgerService.debit(
            db_session, PATIENT_USER_ID, "99.95", transaction_type=BalanceTransactionType.WITHDRAWAL
        )

        result = BalanceLedgerService.verify_ledger(db_session, PATIENT_USER_ID)

        assert result.is_consistent
        assert result.entry_count == 4
        assert result.replayed_balance == Decimal("8900.00")
        assert result.stored_balance == Decimal("8900.00")
        assert result.first_inconsistent_entry_id is None

    def test_tampered_entry_is_reported(self, db_session, account):
        change = BalanceLedgerService.debit(db_session, PATIENT_USER_ID, "500")
        entry = db_session.get(BalanceTransaction, change.transaction_id)
        entry.balance_after = Decimal("9600.00")
        db_session.commit()

        result = BalanceLedgerService.verify_ledger(db_session, PATIENT_USER_ID)

        assert not result.is_consistent
        assert result.first_inconsistent_entry_id == change.transaction_id

    def test_history_is_newest_first_and_limited(self, db_session, account):
        for amount in ("1", "2", "3"):
            BalanceLedgerService.debit(db_session, PATIENT_USER_ID, amount)

        history = BalanceLedgerService.get_transaction_history(db_session, PATIENT_USER_ID, limit=2)

        assert [to_money(entry.amount) for entry in history] == [Decimal("-3.00"), Decimal("-2.00")]

    def test_entries_by_reference_span_accounts(self, db_session, account):
        BalanceLedgerService.open_account(db_session, AUTHORITY_ID, initial_balance=0)
        BalanceLedgerService.debit(db_session, PATIENT_USER_ID, "100", reference_id="booking:9")
        BalanceLedgerService.credit(
            db_session, AUTHORITY_ID, "95", reference_id="booking:9",
            transaction_type=BalanceTransactionType.PAYMENT_RECEIVED,
        )
        BalanceLedgerService.debit(db_session, PATIENT_USER_ID, "5", reference_id="booking:10")

        entries = BalanceLedgerService.get_entries_by_reference(db_session, "booking:9")
        received = BalanceLedgerService.get_entries_by_reference(
            db_session, "booking:9", [BalanceTransactionType.PAYMENT_RECEIVED]
        )

        assert [(entry.user_id, to_money(entry.amount)) for entry in entries] == [
            (PATIENT_USER_ID, Decimal("-100.00")),
            (AUTHORITY_ID, Decimal("95.00")),
        ]
        assert [entry.user_id for entry in received] == [AUTHORITY_ID]
