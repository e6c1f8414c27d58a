"""Persistence for the customer credit ledger, market credits, credit
requests and pending payments.

Like ``transactions``, every function works on a cursor owned by the caller
so it joins whatever unit of work is already open.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from oilmart.core.database import insert_row, row_to_dict, rows_to_dicts, update_row
from oilmart.core.exceptions import ConflictError, NotFoundError, ValidationFailed
from oilmart.core.logging import logger
from oilmart.core.security import CurrentUser
from oilmart.models.models import (
    CreditRequestCreate,
    CreditRequestStatus,
    CreditTransactionType,
    MarketCreditCreate,
    MarketCreditUpdate,
    OrderStatus,
    PaymentStatus,
    UserRole,
)
from oilmart.services import ledger
from oilmart.utils.formatters import round2
from oilmart.utils.validation import normalize_phone


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Pending payments

def create_pending_payment(
    cur,
    user: CurrentUser,
    *,
    customer_name: str,
    customer_phone: str,
    total_amount: float,
    paid_amount: float,
    payment_method: str,
    created_at: Optional[datetime] = None,
    sale_id: Optional[int] = None,
    bill_id: Optional[int] = None,
    custom_bill_id: Optional[int] = None,
    order_id: Optional[int] = None,
    bill_number: Optional[str] = None,
    product_name: Optional[str] = None,
) -> Dict[str, Any]:
    created_at = created_at or _now()
    pending = round2(total_amount - paid_amount)
    return insert_row(cur, "pending_payments", {
        "sale_id": sale_id,
        "bill_id": bill_id,
        "custom_bill_id": custom_bill_id,
        "order_id": order_id,
        "bill_number": bill_number,
        "customer_name": customer_name,
        "customer_phone": customer_phone,
        "product_name": product_name,
        "total_amount": round2(total_amount),
        "paid_amount": round2(paid_amount),
        "pending_amount": pending,
        "payment_method": payment_method,
        "staff_id": user.id,
        "staff_name": user.name,
        "status": PaymentStatus.PARTIAL if paid_amount > 0 else PaymentStatus.PENDING,
        "due_date": ledger.pending_due_date(created_at),
        "created_at": created_at,
        "updated_at": created_at,
    })


def record_pending_payment(cur, payment_id: int, amount: float, user: CurrentUser) -> Dict[str, Any]:
    cur.execute("SELECT * FROM pending_payments WHERE id = %s FOR UPDATE", (payment_id,))
    payment = row_to_dict(cur)
    if not payment:
        raise NotFoundError("Pending payment not found", extra={"payment_id": payment_id})
    if payment["status"] == PaymentStatus.PAID.value:
        raise ConflictError("This payment has already been settled")

    progress = ledger.apply_payment(
        float(payment["total_amount"]),
        float(payment["paid_amount"]),
        float(payment["pending_amount"]),
        amount,
    )
    now = _now()
    changes: Dict[str, Any] = {
        "paid_amount": progress.paid_amount,
        "pending_amount": progress.pending_amount,
        "status": progress.status,
        "updated_at": now,
        "updated_by": user.id,
    }
    if progress.status == PaymentStatus.PAID:
        changes["paid_at"] = now
    updated = update_row(cur, "pending_payments", payment_id, changes)
    logger.info(
        "Pending payment %s received %s | status=%s pending=%s",
        payment_id, amount, progress.status.value, progress.pending_amount,
    )
    return updated


# Customer credit ledger

def _lock_customer_credit(cur, phone: str, name: str) -> Dict[str, Any]:
    cur.execute(
        """
        INSERT INTO customer_credits (customer_phone, customer_name)
        VALUES (%s, %s)
        ON CONFLICT (customer_phone) DO NOTHING
        """,
        (phone, name),
    )
    cur.execute("SELECT * FROM customer_credits WHERE customer_phone = %s FOR UPDATE", (phone,))
    return row_to_dict(cur)


def record_credit_debit(
    cur,
    phone: str,
    name: str,
    amount: float,
    description: str,
    sale_id: Optional[int] = None,
    order_id: Optional[int] = None,
    user_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Add ``amount`` to the customer's running credit and log the debit."""
    phone = normalize_phone(phone)
    credit = _lock_customer_credit(cur, phone, name)
    new_total = ledger.apply_credit_debit(float(credit["total_credit"]), amount)
    cur.execute(
        """
        UPDATE customer_credits
        SET total_credit = %s, customer_name = %s, last_updated = now()
        WHERE customer_phone = %s
        """,
        (new_total, name, phone),
    )
    insert_row(cur, "credit_transactions", {
        "customer_phone": phone,
        "type": CreditTransactionType.DEBIT,
        "amount": round2(amount),
        "description": description,
        "sale_id": sale_id,
        "order_id": order_id,
        "created_by": user_id,
    })
    logger.info("Credit debit | phone=%s amount=%s balance=%s", phone, amount, new_total)
    return fetch_customer_credit(cur, phone)


def record_credit_payment(cur, phone: str, amount: float, description: str, user: CurrentUser) -> Dict[str, Any]:
    phone = normalize_phone(phone)
    cur.execute("SELECT * FROM customer_credits WHERE customer_phone = %s FOR UPDATE", (phone,))
    credit = row_to_dict(cur)
    if not credit:
        raise NotFoundError("No credit account for this customer", extra={"customer_phone": phone})
    new_total = ledger.apply_credit_payment(float(credit["total_credit"]), amount)
    cur.execute(
        "UPDATE customer_credits SET total_credit = %s, last_updated = now() WHERE customer_phone = %s",
        (new_total, phone),
    )
    insert_row(cur, "credit_transactions", {
        "customer_phone": phone,
        "type": CreditTransactionType.CREDIT,
        "amount": round2(amount),
        "description": description,
        "created_by": user.id,
    })
    logger.info("Credit payment | phone=%s amount=%s balance=%s", phone, amount, new_total)
    return fetch_customer_credit(cur, phone)


def fetch_customer_credit(cur, phone: str) -> Dict[str, Any]:
    cur.execute("SELECT * FROM customer_credits WHERE customer_phone = %s", (phone,))
    credit = row_to_dict(cur)
    if not credit:
        raise NotFoundError("No credit account for this customer", extra={"customer_phone": phone})
    cur.execute(
        "SELECT * FROM credit_transactions WHERE customer_phone = %s ORDER BY id",
        (phone,),
    )
    credit["transactions"] = rows_to_dicts(cur)
    return credit


# Market credits

MARKET_CREDIT_SELECT = """
    SELECT mc.*,
           COALESCE(SUM(c.amount), 0) AS total_collected,
           mc.amount - COALESCE(SUM(c.amount), 0) AS outstanding
    FROM market_credits mc
    LEFT JOIN market_credit_collections c ON c.credit_id = mc.id
"""


def fetch_market_credit(cur, credit_id: int, for_update: bool = False) -> Dict[str, Any]:
    if for_update:
        cur.execute("SELECT id FROM market_credits WHERE id = %s FOR UPDATE", (credit_id,))
        if cur.fetchone() is None:
            raise NotFoundError("Market credit not found", extra={"credit_id": credit_id})
    cur.execute(MARKET_CREDIT_SELECT + " WHERE mc.id = %s GROUP BY mc.id", (credit_id,))
    credit = row_to_dict(cur)
    if not credit:
        raise NotFoundError("Market credit not found", extra={"credit_id": credit_id})
    return credit


def list_market_credits(cur, phone: Optional[str] = None) -> List[Dict[str, Any]]:
    if phone:
        cur.execute(
            MARKET_CREDIT_SELECT + " WHERE mc.customer_phone = %s GROUP BY mc.id ORDER BY mc.created_at DESC",
            (phone,),
        )
    else:
        cur.execute(MARKET_CREDIT_SELECT + " GROUP BY mc.id ORDER BY mc.created_at DESC")
    return rows_to_dicts(cur)


def fetch_collections(cur, credit_ids: List[int]) -> List[Dict[str, Any]]:
    if not credit_ids:
        return []
    placeholders = ",".join(["%s"] * len(credit_ids))
    cur.execute(
        f"SELECT * FROM market_credit_collections WHERE credit_id IN ({placeholders}) "
        "ORDER BY collected_at DESC, id DESC",
        list(credit_ids),
    )
    return rows_to_dicts(cur)


def _insert_collection(cur, credit_id: int, amount: float, user: CurrentUser, notes: Optional[str]) -> Dict[str, Any]:
    return insert_row(cur, "market_credit_collections", {
        "credit_id": credit_id,
        "amount": round2(amount),
        "collected_by": user.id,
        "collected_by_name": user.name,
        "notes": notes,
    })


def create_market_credit(cur, payload: MarketCreditCreate, user: CurrentUser) -> Dict[str, Any]:
    phone = normalize_phone(payload.customer_phone)
    initial = payload.collection_amount or 0.0
    ledger.ensure_collection_fits(payload.amount, 0.0, initial)

    credit = insert_row(cur, "market_credits", {
        "customer_name": payload.customer_name,
        "customer_phone": phone,
        "amount": payload.amount,
        "description": payload.description.strip(),
        "created_by": user.id,
        "created_by_name": user.name,
    })
    if initial > 0:
        _insert_collection(cur, credit["id"], initial, user, "Initial collection")
    logger.info("Market credit %s created | phone=%s amount=%s initial=%s", credit["id"], phone, payload.amount, initial)
    return fetch_market_credit(cur, credit["id"])


def update_market_credit(cur, credit_id: int, payload: MarketCreditUpdate) -> Dict[str, Any]:
    current = fetch_market_credit(cur, credit_id, for_update=True)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "customer_name" in changes:
        changes["customer_name"] = changes["customer_name"].strip()
        if not changes["customer_name"]:
            raise ValidationFailed("Customer name is required", extra={"field": "customer_name"})
    if "customer_phone" in changes:
        changes["customer_phone"] = normalize_phone(changes["customer_phone"])
    if "amount" in changes:
        ledger.ensure_amount_covers_collections(changes["amount"], float(current["total_collected"]))
    if not changes:
        return current
    changes["updated_at"] = _now()
    update_row(cur, "market_credits", credit_id, changes)
    return fetch_market_credit(cur, credit_id)


def set_market_credit_paid(cur, credit_id: int, paid: bool) -> Dict[str, Any]:
    fetch_market_credit(cur, credit_id, for_update=True)
    update_row(cur, "market_credits", credit_id, {
        "paid": paid,
        "paid_at": _now() if paid else None,
        "updated_at": _now(),
    })
    return fetch_market_credit(cur, credit_id)


def add_collection(cur, credit_id: int, amount: float, user: CurrentUser, notes: Optional[str] = None) -> Dict[str, Any]:
    credit = fetch_market_credit(cur, credit_id, for_update=True)
    ledger.ensure_collection_fits(float(credit["amount"]), float(credit["total_collected"]), amount)
    collection = _insert_collection(cur, credit_id, amount, user, notes or "Manual collection")
    cur.execute("UPDATE market_credits SET updated_at = now() WHERE id = %s", (credit_id,))
    logger.info("Collection %s on market credit %s | amount=%s", collection["id"], credit_id, amount)
    return collection


def delete_market_credit(cur, credit_id: int) -> None:
    cur.execute("DELETE FROM market_credits WHERE id = %s RETURNING id", (credit_id,))
    if cur.fetchone() is None:
        raise NotFoundError("Market credit not found", extra={"credit_id": credit_id})


# Credit requests

def fetch_credit_request(cur, request_id: int, for_update: bool = False) -> Dict[str, Any]:
    sql = "SELECT * FROM credit_requests WHERE id = %s"
    if for_update:
        sql += " FOR UPDATE"
    cur.execute(sql, (request_id,))
    request = row_to_dict(cur)
    if not request:
        raise NotFoundError("Credit request not found", extra={"request_id": request_id})
    return request


def create_credit_request(cur, payload: CreditRequestCreate, user: CurrentUser) -> Dict[str, Any]:
    """Open a credit request.

    Customers ask for themselves and their contact details come from their
    account. Staff file requests on a customer's behalf and must supply them.
    """
    if user.role == UserRole.CUSTOMER:
        cur.execute("SELECT name, phone, email FROM users WHERE id = %s", (user.id,))
        account = row_to_dict(cur)
        if not account:
            raise NotFoundError("User not found")
        customer_id = user.id
        name, phone, email = account["name"], account["phone"], account["email"]
    else:
        customer_id = None
        name = (payload.customer_name or "").strip()
        phone = (payload.customer_phone or "").strip()
        email = (payload.customer_email or "").strip()
        if not name:
            raise ValidationFailed("Customer name is required", extra={"field": "customer_name"})
        phone = normalize_phone(phone)

    status = CreditRequestStatus.DRAFT if payload.draft else CreditRequestStatus.PENDING
    request = insert_row(cur, "credit_requests", {
        "customer_id": customer_id,
        "customer_name": name,
        "customer_phone": phone or "",
        "customer_email": email or "",
        "requested_amount": payload.requested_amount,
        "reason": payload.reason,
        "supporting_docs": list(payload.supporting_docs),
        "status": status,
        "employee_comments": payload.employee_comments,
    })
    logger.info("Credit request %s created | status=%s amount=%s", request["id"], status.value, payload.requested_amount)
    return request


def submit_credit_request(cur, request_id: int, user: CurrentUser) -> Dict[str, Any]:
    request = fetch_credit_request(cur, request_id, for_update=True)
    if user.role == UserRole.CUSTOMER and request["customer_id"] != user.id:
        raise NotFoundError("Credit request not found", extra={"request_id": request_id})
    if request["status"] != CreditRequestStatus.DRAFT.value:
        raise ConflictError(
            f"Credit request is already {request['status']}", extra={"status": request["status"]}
        )
    return update_row(cur, "credit_requests", request_id, {
        "status": CreditRequestStatus.PENDING,
        "updated_at": _now(),
    })


def approve_credit_request(
    cur, request_id: int, user: CurrentUser, owner_comments: Optional[str] = None
) -> Dict[str, Any]:
    """Approve a pending request.

    An approved order-payment request confirms the order and opens a pending
    payment for the requested amount.
    """
    request = fetch_credit_request(cur, request_id, for_update=True)
    ledger.ensure_request_pending(CreditRequestStatus(request["status"]))

    now = _now()
    changes: Dict[str, Any] = {
        "status": CreditRequestStatus.APPROVED,
        "approved_by": user.id,
        "reviewed_by": user.id,
        "approved_at": now,
        "updated_at": now,
    }
    if owner_comments:
        changes["owner_comments"] = owner_comments
    approved = update_row(cur, "credit_requests", request_id, changes)

    if request["order_id"] is not None:
        cur.execute(
            "UPDATE orders SET status = %s, updated_at = now() WHERE id = %s AND status = %s",
            (OrderStatus.CONFIRMED.value, request["order_id"], OrderStatus.PENDING.value),
        )
        create_pending_payment(
            cur,
            user,
            customer_name=request["customer_name"],
            customer_phone=request["customer_phone"],
            total_amount=float(request["requested_amount"]),
            paid_amount=0.0,
            payment_method="credit",
            created_at=now,
            order_id=request["order_id"],
        )
    logger.info("Credit request %s approved by %s", request_id, user.id)
    return approved


def reject_credit_request(
    cur, request_id: int, reason: Optional[str], user: CurrentUser, owner_comments: Optional[str] = None
) -> Dict[str, Any]:
    reason = ledger.require_rejection_reason(reason)
    request = fetch_credit_request(cur, request_id, for_update=True)
    ledger.ensure_request_pending(CreditRequestStatus(request["status"]))

    now = _now()
    changes: Dict[str, Any] = {
        "status": CreditRequestStatus.REJECTED,
        "rejection_reason": reason,
        "approved_by": user.id,
        "reviewed_by": user.id,
        "approved_at": now,
        "updated_at": now,
    }
    if owner_comments:
        changes["owner_comments"] = owner_comments
    rejected = update_row(cur, "credit_requests", request_id, changes)

    if request["order_id"] is not None:
        cur.execute(
            "UPDATE orders SET status = %s, updated_at = now() WHERE id = %s AND status = %s",
            (OrderStatus.CANCELLED.value, request["order_id"], OrderStatus.PENDING.value),
        )
    logger.info("Credit request %s rejected by %s", request_id, user.id)
    return rejected
