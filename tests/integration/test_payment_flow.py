"""
Integration tests for booking payment capture, revenue distribution and refunds.
"""

from decimal import Decimal

import pytest

from core import config
from core.exceptions import InsufficientBalanceError, InvalidStateTransitionError, NotFoundError, ValidationError
from services.balance_ledger_service import BalanceLedgerService
from services.booking_approval_service import BookingApprovalService
from services.booking_service import BookingService
from services.payment_service import PAYABLE_STATUSES, PaymentService, booking_reference, split_payment
from shared_types.enums import BalanceTransactionType, PaymentStatus
from tests.conftest import AUTHORITY_ID, HOSPITAL_ID, PATIENT_USER_ID, STAFF_ID

PLATFORM_ID = config.PLATFORM_ACCOUNT_USER_ID


@pytest.fixture
def accounts(db_session):
    """Patient with 10000, plus empty hospital revenue and platform accounts."""
    BalanceLedgerService.open_account(db_session, AUTHORITY_ID, initial_balance=0, hospital_id=HOSPITAL_ID)
    BalanceLedgerService.open_account(db_session, PLATFORM_ID, initial_balance=0)
    return BalanceLedgerService.open_account(
        db_session, PATIENT_USER_ID, initial_balance=Decimal("10000.00"), processed_by=STAFF_ID
    )


def _balances(db_session):
    return (
        BalanceLedgerService.get_balance(db_session, PATIENT_USER_ID),
        BalanceLedgerService.get_balance(db_session, AUTHORITY_ID),
        BalanceLedgerService.get_balance(db_session, PLATFORM_ID),
    )


def _all_ledgers_consistent(db_session):
    return all(
        BalanceLedgerService.verify_ledger(db_session, user_id).is_consistent
        for user_id in (PATIENT_USER_ID, AUTHORITY_ID, PLATFORM_ID)
    )


def _payment_status(db_session, booking_id):
    booking = BookingService.get_booking(db_session, booking_id)
    db_session.refresh(booking)
    return booking.payment_status


class TestSplitPayment:
    """Test cases for split_payment()."""

    @pytest.mark.parametrize("amount,rate,expected", [
        ("1500.00", "0.05", (Decimal("1425.00"), Decimal("75.00"))),
        ("999.99", "0.05", (Decimal("949.99"), Decimal("50.00"))),
        ("100", "0", (Decimal("100.00"), Decimal("0.00"))),
        ("100", "0.5", (Decimal("50.00"), Decimal("50.00"))),
    ])
    def test_shares_add_up_to_amount(self, amount, rate, expected):
        hospital_amount, service_charge = split_payment(amount, rate)

        assert (hospital_amount, service_charge) == expected
        assert hospital_amount + service_charge == Decimal(amount).quantize(Decimal("0.01"))

    @pytest.mark.parametrize("rate", ["-0.01", "0.51"])
    def test_rate_out_of_range(self, rate):
        with pytest.raises(ValidationError, match="service charge rate"):
            split_payment("100", rate)

    def test_default_rate_comes_from_config(self, monkeypatch):
        monkeypatch.setattr(config, "SERVICE_CHARGE_RATE", Decimal("0.10"))

        assert split_payment("1500") == (Decimal("1350.00"), Decimal("150.00"))


class TestCapture:
    """Test cases for PaymentService.capture_booking_payment()."""

    def test_capture_debits_user_and_distributes_revenue(self, db_session, pool_factory, booking_factory, accounts):
        pool_factory("icu", total=5)
        booking = booking_factory(payment_amount=Decimal("1500.00"))

        result = PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert result.amount == Decimal("1500.00")
        assert result.hospital_amount == Decimal("1425.00")
        assert result.service_charge == Decimal("75.00")
        assert result.payer.new_balance == Decimal("8500.00")
        assert result.hospital.new_balance == Decimal("1425.00")
        assert result.platform.new_balance == Decimal("75.00")
        assert _balances(db_session) == (Decimal("8500.00"), Decimal("1425.00"), Decimal("75.00"))

        paid = BookingService.get_booking(db_session, booking.id)
        db_session.refresh(paid)
        assert paid.payment_status == "paid"
        assert paid.transaction_id == str(result.payer.transaction_id)

        entries = BalanceLedgerService.get_entries_by_reference(db_session, booking_reference(booking.id))
        assert [(entry.user_id, entry.transaction_type) for entry in entries] == [
            (PATIENT_USER_ID, "booking_payment"),
            (AUTHORITY_ID, "payment_received"),
            (PLATFORM_ID, "service_charge"),
        ]
        assert _all_ledgers_consistent(db_session)

    def test_zero_rate_credits_hospital_only(self, db_session, pool_factory, booking_factory, accounts, monkeypatch):
        monkeypatch.setattr(config, "SERVICE_CHARGE_RATE", Decimal("0"))
        pool_factory("icu", total=5)
        booking = booking_factory()

        result = PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert result.platform is None
        assert _balances(db_session) == (Decimal("8500.00"), Decimal("1500.00"), Decimal("0.00"))

    def test_capture_twice_rejected(self, db_session, pool_factory, booking_factory, accounts):
        pool_factory("icu", total=5)
        booking = booking_factory()
        PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        with pytest.raises(InvalidStateTransitionError):
            PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert _balances(db_session) == (Decimal("8500.00"), Decimal("1425.00"), Decimal("75.00"))

    def test_capture_after_completion(self, db_session, pool_factory, booking_factory, accounts):
        pool_factory("icu", total=5)
        booking = booking_factory()
        BookingApprovalService.approve_booking(db_session, booking.id, approved_by=AUTHORITY_ID)
        BookingApprovalService.complete_booking(db_session, booking.id, completed_by=AUTHORITY_ID)

        PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert _payment_status(db_session, booking.id) == "paid"

    @pytest.mark.parametrize("terminal", ["cancelled", "declined"])
    def test_capture_rejected_for_cancelled_or_declined(
        self, db_session, pool_factory, booking_factory, accounts, terminal
    ):
        pool_factory("icu", total=5)
        booking = booking_factory()
        if terminal == "cancelled":
            BookingApprovalService.cancel_booking(db_session, booking.id, cancelled_by=PATIENT_USER_ID)
        else:
            BookingApprovalService.decline_booking(db_session, booking.id, declined_by=AUTHORITY_ID, reason="Full")

        with pytest.raises(InvalidStateTransitionError, match=f"with status: {terminal}") as exc_info:
            PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert exc_info.value.current_status == terminal
        assert _payment_status(db_session, booking.id) == "pending"
        assert _balances(db_session) == (Decimal("10000.00"), Decimal("0.00"), Decimal("0.00"))
        assert BalanceLedgerService.get_entries_by_reference(db_session, booking_reference(booking.id)) == []

    def test_payment_status_guard_checks_booking_status(self, db_session, pool_factory, booking_factory, accounts):
        """A caller that loaded the booking before it was cancelled still cannot mark it paid."""
        pool_factory("icu", total=5)
        booking = booking_factory()
        stale = BookingService.get_booking(db_session, booking.id)
        BookingApprovalService.cancel_booking(db_session, booking.id, cancelled_by=PATIENT_USER_ID)

        with pytest.raises(InvalidStateTransitionError, match="with status: cancelled"):
            PaymentService._set_payment_status(
                db_session, stale, PaymentStatus.PENDING, PaymentStatus.PAID, "capture",
                allowed_statuses=PAYABLE_STATUSES,
            )
        db_session.rollback()

        assert _payment_status(db_session, booking.id) == "pending"

    def test_insufficient_balance_leaves_everything_untouched(
        self, db_session, pool_factory, booking_factory, accounts
    ):
        pool_factory("icu", total=5)
        booking = booking_factory(payment_amount=Decimal("12000.00"))

        with pytest.raises(InsufficientBalanceError):
            PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert _balances(db_session) == (Decimal("10000.00"), Decimal("0.00"), Decimal("0.00"))
        assert len(BalanceLedgerService.get_transaction_history(db_session, PATIENT_USER_ID)) == 1
        assert _payment_status(db_session, booking.id) == "pending"

    def test_zero_amount_cannot_be_captured(self, db_session, pool_factory, booking_factory, accounts):
        pool_factory("icu", total=5)
        booking = booking_factory(payment_amount=Decimal("0"))

        with pytest.raises(ValidationError, match="no payment amount"):
            PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

    def test_user_without_account(self, db_session, pool_factory, booking_factory):
        BalanceLedgerService.open_account(db_session, AUTHORITY_ID, initial_balance=0, hospital_id=HOSPITAL_ID)
        BalanceLedgerService.open_account(db_session, PLATFORM_ID, initial_balance=0)
        pool_factory("icu", total=5)
        booking = booking_factory()

        with pytest.raises(NotFoundError):
            PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

    def test_hospital_without_revenue_account(self, db_session, pool_factory, booking_factory):
        BalanceLedgerService.open_account(db_session, PLATFORM_ID, initial_balance=0)
        BalanceLedgerService.open_account(db_session, PATIENT_USER_ID, initial_balance=Decimal("10000.00"))
        pool_factory("icu", total=5)
        booking = booking_factory()

        with pytest.raises(NotFoundError, match="Revenue account not found"):
            PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert BalanceLedgerService.get_balance(db_session, PATIENT_USER_ID) == Decimal("10000.00")
        assert _payment_status(db_session, booking.id) == "pending"


class TestRefund:
    """Test cases for PaymentService.refund_booking_payment()."""

    def test_refund_after_cancellation_reverses_distribution(
        self, db_session, pool_factory, booking_factory, accounts
    ):
        pool_factory("icu", total=5)
        booking = booking_factory()
        PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)
        BookingApprovalService.approve_booking(db_session, booking.id, approved_by=AUTHORITY_ID)
        BookingApprovalService.cancel_booking(db_session, booking.id, cancelled_by=PATIENT_USER_ID)

        result = PaymentService.refund_booking_payment(
            db_session, booking.id, processed_by=STAFF_ID, reason="Cancelled by patient"
        )

        assert result.payer.new_balance == Decimal("10000.00")
        assert result.hospital_amount == Decimal("1425.00")
        assert result.service_charge == Decimal("75.00")
        assert _balances(db_session) == (Decimal("10000.00"), Decimal("0.00"), Decimal("0.00"))
        assert _payment_status(db_session, booking.id) == "refunded"
        assert _all_ledgers_consistent(db_session)

        refunds = BalanceLedgerService.get_entries_by_reference(
            db_session, booking_reference(booking.id), [BalanceTransactionType.REFUND_PROCESSED]
        )
        assert sorted((entry.user_id, entry.amount) for entry in refunds) == sorted([
            (AUTHORITY_ID, Decimal("-1425.00")),
            (PLATFORM_ID, Decimal("-75.00")),
            (PATIENT_USER_ID, Decimal("1500.00")),
        ])

        with pytest.raises(InvalidStateTransitionError):
            PaymentService.refund_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

    def test_refund_after_decline(self, db_session, pool_factory, booking_factory, accounts):
        pool_factory("icu", total=5)
        booking = booking_factory()
        PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)
        BookingApprovalService.decline_booking(db_session, booking.id, declined_by=AUTHORITY_ID, reason="Full")

        PaymentService.refund_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert _balances(db_session) == (Decimal("10000.00"), Decimal("0.00"), Decimal("0.00"))

    def test_refund_fails_whole_when_hospital_share_was_withdrawn(
        self, db_session, pool_factory, booking_factory, accounts
    ):
        pool_factory("icu", total=5)
        booking = booking_factory()
        PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)
        BookingApprovalService.cancel_booking(db_session, booking.id, cancelled_by=PATIENT_USER_ID)
        BalanceLedgerService.debit(
            db_session, AUTHORITY_ID, "1000", transaction_type=BalanceTransactionType.WITHDRAWAL
        )

        with pytest.raises(InsufficientBalanceError):
            PaymentService.refund_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert _balances(db_session) == (Decimal("8500.00"), Decimal("425.00"), Decimal("75.00"))
        assert _payment_status(db_session, booking.id) == "paid"
        assert _all_ledgers_consistent(db_session)

    @pytest.mark.parametrize("transition", ["none", "approve", "complete"])
    def test_refund_requires_cancelled_or_declined(
        self, db_session, pool_factory, booking_factory, accounts, transition
    ):
        pool_factory("icu", total=5)
        booking = booking_factory()
        PaymentService.capture_booking_payment(db_session, booking.id, processed_by=STAFF_ID)
        if transition in ("approve", "complete"):
            BookingApprovalService.approve_booking(db_session, booking.id, approved_by=AUTHORITY_ID)
        if transition == "complete":
            BookingApprovalService.complete_booking(db_session, booking.id, completed_by=AUTHORITY_ID)

        with pytest.raises(InvalidStateTransitionError, match="Cannot refund"):
            PaymentService.refund_booking_payment(db_session, booking.id, processed_by=STAFF_ID)

        assert _balances(db_session) == (Decimal("8500.00"), Decimal("1425.00"), Decimal("75.00"))

    def test_refund_of_unpaid_booking_rejected(self, db_session, pool_factory, booking_factory, accounts):
        pool_factory("icu", total=5)
        booking = booking_factory()
        BookingApprovalService.cancel_booking(db_session, booking.id, cancelled_by=PATIENT_USER_ID)

        with pytest.raises(InvalidStateTransitionError, match="payment status"):
            PaymentService.refund_booking_payment(db_session, booking.id, processed_by=STAFF_ID)
