from datetime import datetime

import pytest

from oilmart.core.exceptions import ConflictError, InsufficientStockError, ValidationFailed
from oilmart.models.models import (
    AdjustmentType,
    BillPaymentMethod,
    CreditRequestStatus,
    OrderStatus,
    PaymentStatus,
    SalePaymentMethod,
    TransferStatus,
)
from oilmart.services import ledger


class TestSplitPayment:
    def test_cash_sale_is_fully_paid(self):
        split = ledger.split_payment(3, 100.0, SalePaymentMethod.CASH)
        assert (split.total_amount, split.paid_amount, split.credit_amount) == (300.0, 300.0, 0.0)
        assert split.pending_amount == 0.0

    def test_credit_sale_is_fully_on_credit(self):
        split = ledger.split_payment(5, 100.0, SalePaymentMethod.CREDIT)
        assert (split.total_amount, split.paid_amount, split.credit_amount) == (500.0, 0.0, 500.0)
        assert split.pending_amount == 500.0

    def test_credit_ignores_paid_amount(self):
        split = ledger.split_payment(2, 50.0, SalePaymentMethod.CREDIT, paid_amount=40)
        assert split.paid_amount == 0.0
        assert split.credit_amount == 100.0

    def test_partial_cash_moves_shortfall_to_credit(self):
        split = ledger.split_payment(4, 125.0, SalePaymentMethod.GPAY, paid_amount=300)
        assert (split.total_amount, split.paid_amount, split.credit_amount) == (500.0, 300.0, 200.0)
        assert ledger.is_balanced(split.total_amount, split.paid_amount, split.credit_amount)

    def test_overpayment_is_rejected(self):
        with pytest.raises(ValidationFailed):
            ledger.split_payment(1, 100.0, SalePaymentMethod.CASH, paid_amount=100.01)

    def test_negative_payment_is_rejected(self):
        with pytest.raises(ValidationFailed):
            ledger.split_payment(1, 100.0, SalePaymentMethod.CASH, paid_amount=-1)

    @pytest.mark.parametrize("quantity", [0, -2, 2.5, True])
    def test_quantity_must_be_positive_whole_number(self, quantity):
        with pytest.raises(ValidationFailed):
            ledger.split_payment(quantity, 100.0, SalePaymentMethod.CASH)


def test_balance_check_allows_one_paisa_of_drift():
    assert ledger.is_balanced(100.0, 60.0, 40.01)
    assert not ledger.is_balanced(100.0, 60.0, 40.02)


def test_stock_check_reports_available_and_requested():
    ledger.ensure_stock_available("Sunflower Oil 1L", 5, 5)
    with pytest.raises(InsufficientStockError) as exc:
        ledger.ensure_stock_available("Sunflower Oil 1L", 2, 3, product_id=7)
    assert exc.value.status_code == 409
    assert exc.value.extra == {"product_id": 7, "available": 2, "requested": 3}
    assert "Insufficient stock" in exc.value.message


class TestBills:
    def test_subtotal_minus_discount(self):
        lines = [ledger.bill_line_total(2, 50.0), ledger.bill_line_total(1, 30.0)]
        totals = ledger.compute_bill_totals(lines, 10)
        assert (totals.subtotal, totals.discount_amount, totals.total_amount) == (130.0, 10.0, 120.0)

    def test_discount_equal_to_subtotal_gives_zero_total(self):
        assert ledger.compute_bill_totals([80.0], 80).total_amount == 0.0

    def test_discount_above_subtotal_is_rejected(self):
        with pytest.raises(ValidationFailed):
            ledger.compute_bill_totals([80.0], 80.01)

    def test_negative_discount_is_rejected(self):
        with pytest.raises(ValidationFailed):
            ledger.compute_bill_totals([80.0], -5)

    def test_payment_status_follows_method(self):
        assert ledger.bill_payment_status(BillPaymentMethod.CREDIT) == PaymentStatus.PENDING
        assert ledger.bill_payment_status(BillPaymentMethod.UPI) == PaymentStatus.PAID

    def test_bill_numbers(self):
        now = datetime(2024, 5, 1, 10, 30)
        regular = ledger.make_bill_number(41, now=now)
        custom = ledger.make_bill_number(7, custom=True, now=now)
        assert regular == f"BILL-{int(now.timestamp() * 1000)}-41"
        assert custom == f"CUSTOM-{int(now.timestamp() * 1000)}-7"
        assert ledger.is_custom_bill_number(custom)
        assert not ledger.is_custom_bill_number(regular)


class TestPendingPayments:
    def test_due_thirty_days_after_creation(self):
        assert ledger.pending_due_date(datetime(2024, 1, 15)) == datetime(2024, 2, 14)

    def test_partial_then_full_payment(self):
        first = ledger.apply_payment(500.0, 0.0, 500.0, 200)
        assert (first.paid_amount, first.pending_amount, first.status) == (200.0, 300.0, PaymentStatus.PARTIAL)
        second = ledger.apply_payment(500.0, first.paid_amount, first.pending_amount, 300)
        assert (second.paid_amount, second.pending_amount, second.status) == (500.0, 0.0, PaymentStatus.PAID)

    @pytest.mark.parametrize("amount", [0, -10, 300.01])
    def test_invalid_receipts_are_rejected(self, amount):
        with pytest.raises(ValidationFailed):
            ledger.apply_payment(500.0, 200.0, 300.0, amount)


class TestStock:
    def test_increase_decrease_and_correction(self):
        assert ledger.next_stock(10, AdjustmentType.INCREASE, 5) == 15
        assert ledger.next_stock(10, AdjustmentType.DECREASE, 4) == 6
        assert ledger.next_stock(10, AdjustmentType.CORRECTION, 3) == 3

    def test_decimal_quantities(self):
        assert ledger.next_stock(10, AdjustmentType.DECREASE, 0.5) == 9.5
        assert ledger.next_stock(20.1, AdjustmentType.INCREASE, 0.2) == 20.3
        assert ledger.next_stock(0, AdjustmentType.CORRECTION, 12.5) == 12.5

    def test_zero_move_is_rejected_but_zero_count_is_not(self):
        with pytest.raises(ValidationFailed, match="greater than zero"):
            ledger.next_stock(10, AdjustmentType.INCREASE, 0)
        with pytest.raises(ValidationFailed, match="greater than zero"):
            ledger.next_stock(10, AdjustmentType.DECREASE, 0)
        assert ledger.next_stock(10, AdjustmentType.CORRECTION, 0) == 0

    def test_stock_cannot_go_negative(self):
        with pytest.raises(ValidationFailed, match="Stock cannot be negative"):
            ledger.next_stock(2, AdjustmentType.DECREASE, 3)

    def test_transfer_lifecycle(self):
        ledger.ensure_transfer_transition(TransferStatus.PENDING, TransferStatus.APPROVED)
        ledger.ensure_transfer_transition(TransferStatus.APPROVED, TransferStatus.IN_TRANSIT)
        ledger.ensure_transfer_transition(TransferStatus.IN_TRANSIT, TransferStatus.COMPLETED)
        with pytest.raises(ConflictError):
            ledger.ensure_transfer_transition(TransferStatus.PENDING, TransferStatus.COMPLETED)
        with pytest.raises(ConflictError):
            ledger.ensure_transfer_transition(TransferStatus.COMPLETED, TransferStatus.PENDING)


def test_delivered_and_cancelled_orders_are_closed():
    ledger.ensure_order_open(OrderStatus.CONFIRMED)
    for status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
        with pytest.raises(ConflictError):
            ledger.ensure_order_open(status)


def test_order_credit_reason():
    assert ledger.order_credit_reason(3) == "Order payment - 3 items"


class TestCreditRequests:
    def test_only_pending_requests_can_be_decided(self):
        ledger.ensure_request_pending(CreditRequestStatus.PENDING)
        for status in (CreditRequestStatus.APPROVED, CreditRequestStatus.REJECTED, CreditRequestStatus.DRAFT):
            with pytest.raises(ConflictError):
                ledger.ensure_request_pending(status)

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_rejection_needs_a_reason(self, reason):
        with pytest.raises(ValidationFailed):
            ledger.require_rejection_reason(reason)

    def test_rejection_reason_is_trimmed(self):
        assert ledger.require_rejection_reason("  no history  ") == "no history"


class TestCustomerCredit:
    def test_debit_adds_to_balance(self):
        assert ledger.apply_credit_debit(250.0, 500) == 750.0

    def test_debit_must_be_positive(self):
        with pytest.raises(ValidationFailed):
            ledger.apply_credit_debit(250.0, 0)

    def test_payment_reduces_balance(self):
        assert ledger.apply_credit_payment(750.0, 250) == 500.0

    def test_payment_above_balance_is_rejected(self):
        with pytest.raises(ValidationFailed):
            ledger.apply_credit_payment(100.0, 100.01)


class TestMarketCredit:
    def test_outstanding_after_collections(self):
        assert ledger.outstanding(1000, [300, 200]) == 500.0

    def test_outstanding_is_order_independent(self):
        collections = [0.1, 0.2, 0.3, 100.45]
        assert ledger.outstanding(200, collections) == ledger.outstanding(200, list(reversed(collections)))

    def test_collection_cannot_exceed_outstanding(self):
        ledger.ensure_collection_fits(1000, 500, 500)
        with pytest.raises(ValidationFailed):
            ledger.ensure_collection_fits(1000, 500, 500.01)

    def test_amount_cannot_drop_below_collected(self):
        ledger.ensure_amount_covers_collections(500, 500)
        with pytest.raises(ValidationFailed):
            ledger.ensure_amount_covers_collections(499.99, 500)
