"""Business rules for the sales, billing and credit ledgers.

Everything here is pure: callers load rows, ask these functions what the new
values should be, and persist the answer inside one database transaction
(see ``oilmart.services.transactions``). Rule violations raise
``ValidationFailed`` or ``ConflictError`` before anything is written.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from oilmart.core.config import settings
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
from oilmart.utils.formatters import round2


@dataclass(frozen=True)
class PaymentSplit:
    total_amount: float
    paid_amount: float
    credit_amount: float

    @property
    def pending_amount(self) -> float:
        return round2(self.total_amount - self.paid_amount)


@dataclass(frozen=True)
class BillTotals:
    subtotal: float
    discount_amount: float
    total_amount: float


@dataclass(frozen=True)
class PaymentProgress:
    paid_amount: float
    pending_amount: float
    status: PaymentStatus


def is_balanced(total: float, paid: float, credit: float, tolerance: Optional[float] = None) -> bool:
    """paid + credit must equal total within the currency tolerance."""
    tol = settings.amount_tolerance if tolerance is None else tolerance
    return abs((paid + credit) - total) <= tol + 1e-9


# Sales

def split_payment(
    quantity: int,
    unit_price: float,
    method: SalePaymentMethod,
    paid_amount: Optional[float] = None,
) -> PaymentSplit:
    """Work out how much of a sale is paid now and how much goes on credit.

    Credit sales are fully on credit. A cash or GPay sale with an explicit
    paid amount below the total moves the shortfall onto credit.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationFailed(
            "Quantity must be a whole number (integer) greater than 0", extra={"field": "quantity"}
        )
    total = round2(quantity * unit_price)

    if method == SalePaymentMethod.CREDIT:
        return PaymentSplit(total_amount=total, paid_amount=0.0, credit_amount=total)

    if paid_amount is None:
        return PaymentSplit(total_amount=total, paid_amount=total, credit_amount=0.0)

    paid = round2(paid_amount)
    if paid < 0:
        raise ValidationFailed("Amount must be positive", extra={"field": "paid_amount"})
    if paid > total:
        raise ValidationFailed("Amount cannot exceed total", extra={"field": "paid_amount", "total": total})
    return PaymentSplit(total_amount=total, paid_amount=paid, credit_amount=round2(total - paid))


def ensure_stock_available(
    product_name: str, available: float, requested: float, product_id: Optional[int] = None
) -> None:
    if requested > available:
        raise InsufficientStockError(product_name, available, requested, product_id=product_id)


def sale_credit_description(product_name: str) -> str:
    return f"Sale - {product_name}"


# Bills

def bill_line_total(quantity: int, unit_price: float) -> float:
    return round2(quantity * unit_price)


def compute_bill_totals(line_totals: Iterable[float], discount_amount: float = 0.0) -> BillTotals:
    subtotal = round2(math.fsum(line_totals))
    discount = round2(discount_amount)
    if discount < 0:
        raise ValidationFailed("Discount cannot be negative", extra={"field": "discount_amount"})
    if discount > subtotal:
        raise ValidationFailed(
            "Discount cannot exceed the bill subtotal",
            extra={"field": "discount_amount", "subtotal": subtotal},
        )
    return BillTotals(subtotal=subtotal, discount_amount=discount, total_amount=round2(subtotal - discount))


def bill_payment_status(method: BillPaymentMethod) -> PaymentStatus:
    return PaymentStatus.PENDING if method == BillPaymentMethod.CREDIT else PaymentStatus.PAID


def make_bill_number(sequence: int, custom: bool = False, now: Optional[datetime] = None) -> str:
    """`BILL-<epoch ms>-<row id>`; the row id keeps numbers unique within one millisecond."""
    now = now or datetime.now()
    prefix = "CUSTOM" if custom else "BILL"
    return f"{prefix}-{int(now.timestamp() * 1000)}-{sequence}"


def is_custom_bill_number(bill_number: str) -> bool:
    return bill_number.startswith("CUSTOM-")


# Pending payments

def pending_due_date(created_at: datetime, days: Optional[int] = None) -> datetime:
    return created_at + timedelta(days=settings.pending_payment_due_days if days is None else days)


def apply_payment(total_amount: float, paid_amount: float, pending_amount: float, received: float) -> PaymentProgress:
    """Record money received against a pending payment."""
    received = round2(received)
    if received <= 0:
        raise ValidationFailed("Please enter a valid amount", extra={"field": "amount"})
    if received > round2(pending_amount):
        raise ValidationFailed(
            "Amount cannot exceed pending amount",
            extra={"field": "amount", "pending_amount": round2(pending_amount)},
        )
    new_paid = round2(paid_amount + received)
    new_pending = round2(total_amount - new_paid)
    status = PaymentStatus.PAID if new_pending <= 0 else PaymentStatus.PARTIAL
    return PaymentProgress(paid_amount=new_paid, pending_amount=max(0.0, new_pending), status=status)


# Stock

def next_stock(current: float, adjustment_type: AdjustmentType, quantity: float) -> float:
    if quantity < 0:
        raise ValidationFailed("Quantity cannot be negative", extra={"field": "quantity"})
    if quantity == 0 and adjustment_type != AdjustmentType.CORRECTION:
        raise ValidationFailed("Quantity must be greater than zero", extra={"field": "quantity"})
    if adjustment_type == AdjustmentType.INCREASE:
        new_stock = current + quantity
    elif adjustment_type == AdjustmentType.DECREASE:
        new_stock = current - quantity
    else:
        new_stock = quantity
    new_stock = round(new_stock, 3)
    if new_stock < 0:
        raise ValidationFailed(
            "Stock cannot be negative", extra={"current_stock": current, "quantity": quantity}
        )
    return new_stock


TRANSFER_TRANSITIONS = {
    TransferStatus.PENDING: {TransferStatus.APPROVED, TransferStatus.REJECTED},
    TransferStatus.APPROVED: {TransferStatus.IN_TRANSIT, TransferStatus.REJECTED},
    TransferStatus.IN_TRANSIT: {TransferStatus.COMPLETED},
    TransferStatus.COMPLETED: set(),
    TransferStatus.REJECTED: set(),
}


def ensure_transfer_transition(current: TransferStatus, target: TransferStatus) -> None:
    if target not in TRANSFER_TRANSITIONS[current]:
        raise ConflictError(
            f"Transfer cannot move from {current.value} to {target.value}",
            extra={"status": current.value},
        )


# Orders

ORDER_TERMINAL = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def ensure_order_open(status: OrderStatus) -> None:
    if status in ORDER_TERMINAL:
        raise ConflictError("This order has already been processed", extra={"status": status.value})


def order_credit_reason(item_count: int) -> str:
    return f"Order payment - {item_count} items"


# Credit requests

def ensure_request_pending(status: CreditRequestStatus) -> None:
    """Approved and rejected requests are final."""
    if status == CreditRequestStatus.DRAFT:
        raise ConflictError("Credit request has not been submitted yet", extra={"status": status.value})
    if status != CreditRequestStatus.PENDING:
        raise ConflictError(
            f"Credit request is already {status.value}", extra={"status": status.value}
        )


def require_rejection_reason(reason: Optional[str]) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailed("Please provide a rejection reason", extra={"field": "rejection_reason"})
    return reason


# Customer credit

def apply_credit_debit(total_credit: float, amount: float) -> float:
    if round2(amount) <= 0:
        raise ValidationFailed("Credit amount must be greater than 0", extra={"field": "amount"})
    return round2(total_credit + amount)


def apply_credit_payment(total_credit: float, amount: float) -> float:
    amount = round2(amount)
    if amount <= 0:
        raise ValidationFailed("Payment amount must be greater than 0", extra={"field": "amount"})
    if amount > round2(total_credit):
        raise ValidationFailed(
            "Payment cannot exceed the outstanding credit",
            extra={"field": "amount", "total_credit": round2(total_credit)},
        )
    return round2(total_credit - amount)


# Market credit

def outstanding(amount: float, collections: Iterable[float]) -> float:
    return round2(amount - math.fsum(collections))


def ensure_collection_fits(amount: float, collected: float, new_collection: float) -> None:
    """A collection may not take a market credit below zero."""
    remaining = round2(amount - collected)
    if round2(new_collection) > remaining:
        raise ValidationFailed(
            "Collection exceeds the outstanding balance",
            extra={"field": "amount", "outstanding": remaining},
        )


def ensure_amount_covers_collections(amount: float, collected: float) -> None:
    if round2(amount) < round2(collected):
        raise ValidationFailed(
            "Credit amount cannot be lower than what has already been collected",
            extra={"field": "amount", "collected": round2(collected)},
        )
