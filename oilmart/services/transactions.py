"""Multi-table write operations for sales, bills, stock and orders.

Each function takes an open cursor from ``pg_cursor(commit=True)`` so the
caller's block is the transaction boundary: a failure at any step (for
example a short stock line on the third bill item) rolls back every write
made before it.
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from oilmart.core.exceptions import ConflictError, InsufficientStockError, NotFoundError
from oilmart.core.database import insert_row, next_row_id, row_to_dict, rows_to_dicts, update_row
from oilmart.core.logging import logger
from oilmart.core.security import CurrentUser
from oilmart.models.models import (
    BillCreate,
    BillPaymentMethod,
    CreditRequestStatus,
    CustomBillCreate,
    OrderCreate,
    OrderPaymentMethod,
    OrderStatus,
    SaleCreate,
    StockAdjustmentCreate,
    TransferRequestCreate,
    TransferStatus,
)
from oilmart.services import ledger
from oilmart.services.credit import create_pending_payment, record_credit_debit
from oilmart.utils.formatters import round2
from oilmart.utils.validation import normalize_phone


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Products and stock

def fetch_product(cur, product_id: int, for_update: bool = False) -> Dict[str, Any]:
    sql = "SELECT * FROM products WHERE id = %s"
    if for_update:
        sql += " FOR UPDATE"
    cur.execute(sql, (product_id,))
    product = row_to_dict(cur)
    if not product:
        raise NotFoundError("Product not found", extra={"product_id": product_id})
    return product


def decrement_stock(cur, product: Dict[str, Any], quantity: float) -> float:
    """Take ``quantity`` out of stock only if that much is on hand.

    The check and the write are one statement, so two concurrent sales can
    never both pass against the same remaining units.
    """
    cur.execute(
        """
        UPDATE products
        SET stock = stock - %s, version = version + 1, updated_at = now()
        WHERE id = %s AND stock >= %s
        RETURNING stock
        """,
        (quantity, product["id"], quantity),
    )
    row = cur.fetchone()
    if row is None:
        cur.execute("SELECT stock FROM products WHERE id = %s", (product["id"],))
        current = cur.fetchone()
        available = float(current[0]) if current else 0.0
        raise InsufficientStockError(product["name"], available, quantity, product_id=product["id"])
    return float(row[0])


def restore_stock(cur, product_id: int, quantity: float) -> None:
    cur.execute(
        "UPDATE products SET stock = stock + %s, version = version + 1, updated_at = now() WHERE id = %s",
        (quantity, product_id),
    )


def adjust_stock(cur, payload: StockAdjustmentCreate, user: CurrentUser) -> Dict[str, Any]:
    product = fetch_product(cur, payload.product_id)
    previous = float(product["stock"])
    new_stock = ledger.next_stock(previous, payload.adjustment_type, payload.quantity)

    # Optimistic check: the row must still be at the version we computed from
    cur.execute(
        """
        UPDATE products SET stock = %s, version = version + 1, updated_at = now()
        WHERE id = %s AND version = %s
        RETURNING id
        """,
        (new_stock, product["id"], product["version"]),
    )
    if cur.fetchone() is None:
        raise ConflictError(
            "Stock changed while the adjustment was being saved. Please retry.",
            extra={"product_id": product["id"]},
        )

    now = _now()
    adjustment = insert_row(cur, "stock_adjustments", {
        "product_id": product["id"],
        "product_name": product["name"],
        "adjustment_type": payload.adjustment_type,
        "quantity": payload.quantity,
        "unit": product["unit"],
        "reason": payload.reason,
        "reason_code": payload.reason_code,
        "previous_stock": previous,
        "new_stock": new_stock,
        "attachment_url": payload.attachment_url,
        "staff_id": user.id,
        "staff_name": user.name,
        "approved_by": user.id,
        # Staff adjustments are approved on entry
        "status": "approved",
        "created_at": now,
        "approved_at": now,
    })
    logger.info(
        "Stock adjusted | product=%s type=%s qty=%s %s -> %s",
        product["id"], payload.adjustment_type.value, payload.quantity, previous, new_stock,
    )
    return adjustment


def create_transfer_request(cur, payload: TransferRequestCreate, user: CurrentUser) -> Dict[str, Any]:
    product = fetch_product(cur, payload.product_id)
    ledger.ensure_stock_available(product["name"], float(product["stock"]), payload.quantity, product["id"])
    return insert_row(cur, "transfer_requests", {
        "from_warehouse": payload.from_warehouse,
        "to_warehouse": payload.to_warehouse,
        "product_id": product["id"],
        "product_name": product["name"],
        "quantity": payload.quantity,
        "unit": product["unit"],
        "reason": payload.reason,
        "requested_by": user.id,
        "requested_by_name": user.name,
        "status": TransferStatus.PENDING,
        "notes": payload.notes,
    })


def update_transfer_status(
    cur, transfer_id: int, target: TransferStatus, user: CurrentUser, notes: Optional[str] = None
) -> Dict[str, Any]:
    cur.execute("SELECT * FROM transfer_requests WHERE id = %s FOR UPDATE", (transfer_id,))
    transfer = row_to_dict(cur)
    if not transfer:
        raise NotFoundError("Transfer request not found")
    ledger.ensure_transfer_transition(TransferStatus(transfer["status"]), target)

    changes: Dict[str, Any] = {"status": target}
    if target in (TransferStatus.APPROVED, TransferStatus.REJECTED):
        changes.update(approved_by=user.id, approved_at=_now())
    elif target == TransferStatus.COMPLETED:
        changes.update(completed_by=user.id, completed_at=_now())
    if notes:
        changes["notes"] = notes
    return update_row(cur, "transfer_requests", transfer_id, changes)


# Sales

def record_sale(cur, payload: SaleCreate, user: CurrentUser) -> Dict[str, Any]:
    """Record one product sold to one customer.

    Writes the sale, takes the quantity out of stock, debits the customer's
    credit ledger for any unpaid part and opens a pending payment for it.
    """
    phone = normalize_phone(payload.customer_phone)
    product = fetch_product(cur, payload.product_id)
    split = ledger.split_payment(
        payload.quantity, float(product["base_price"]), payload.payment_method, payload.paid_amount
    )

    decrement_stock(cur, product, payload.quantity)

    sale = insert_row(cur, "sales", {
        "product_id": product["id"],
        "product_name": product["name"],
        "product_category": product["category"],
        "customer_name": payload.customer_name,
        "customer_phone": phone,
        "quantity": payload.quantity,
        "unit": product["unit"],
        "unit_price": float(product["base_price"]),
        "total_amount": split.total_amount,
        "paid_amount": split.paid_amount,
        "credit_amount": split.credit_amount,
        "payment_method": payload.payment_method,
        "staff_id": user.id,
        "staff_name": user.name,
    })

    if split.credit_amount > 0:
        record_credit_debit(
            cur,
            phone,
            payload.customer_name,
            split.credit_amount,
            ledger.sale_credit_description(product["name"]),
            sale_id=sale["id"],
            user_id=user.id,
        )

    if split.pending_amount > 0:
        create_pending_payment(
            cur,
            user,
            customer_name=payload.customer_name,
            customer_phone=phone,
            total_amount=split.total_amount,
            paid_amount=split.paid_amount,
            payment_method=payload.payment_method.value,
            created_at=sale["created_at"],
            sale_id=sale["id"],
            product_name=product["name"],
        )

    logger.info(
        "Sale %s recorded | product=%s qty=%s total=%s paid=%s credit=%s",
        sale["id"], product["id"], payload.quantity, split.total_amount, split.paid_amount, split.credit_amount,
    )
    return sale


# Bills

def fetch_bill(cur, bill_id: int, custom: bool = False) -> Dict[str, Any]:
    table = "custom_bills" if custom else "bills"
    cur.execute(f"SELECT * FROM {table} WHERE id = %s", (bill_id,))
    bill = row_to_dict(cur)
    if not bill:
        raise NotFoundError("Bill not found", extra={"bill_id": bill_id, "custom": custom})
    attach_bill_items(cur, [bill], custom)
    return bill


def attach_bill_items(cur, bills: List[Dict[str, Any]], custom: bool = False) -> None:
    if not bills:
        return
    ids = [b["id"] for b in bills]
    placeholders = ",".join(["%s"] * len(ids))
    if custom:
        cur.execute(
            f"SELECT * FROM custom_bill_items WHERE custom_bill_id IN ({placeholders}) ORDER BY id", ids
        )
        key = "custom_bill_id"
    else:
        cur.execute(f"SELECT * FROM bill_items WHERE bill_id IN ({placeholders}) ORDER BY id", ids)
        key = "bill_id"
    by_bill: Dict[int, List[Dict[str, Any]]] = {}
    for item in rows_to_dicts(cur):
        by_bill.setdefault(item[key], []).append(item)
    for b in bills:
        b["items"] = by_bill.get(b["id"], [])
        b["is_custom"] = custom


def _bill_pending_payment(cur, bill: Dict[str, Any], user: CurrentUser, custom: bool) -> None:
    link = {"custom_bill_id": bill["id"]} if custom else {"bill_id": bill["id"]}
    create_pending_payment(
        cur,
        user,
        customer_name=bill["customer_name"],
        customer_phone=bill["customer_phone"] or "",
        total_amount=float(bill["total_amount"]),
        paid_amount=0.0,
        payment_method=BillPaymentMethod.CREDIT.value,
        created_at=bill["created_at"],
        bill_number=bill["bill_number"],
        **link,
    )


def create_bill(cur, payload: BillCreate, user: CurrentUser) -> Dict[str, Any]:
    lines: List[Tuple[Dict[str, Any], int, float]] = []
    for item in payload.items:
        product = fetch_product(cur, item.product_id)
        lines.append((product, item.quantity, ledger.bill_line_total(item.quantity, float(product["base_price"]))))

    totals = ledger.compute_bill_totals([line_total for _, _, line_total in lines], payload.discount_amount)
    bill_id = next_row_id(cur, "bills")
    bill = insert_row(cur, "bills", {
        "id": bill_id,
        "bill_number": ledger.make_bill_number(bill_id),
        "customer_name": payload.customer_name,
        "customer_phone": payload.customer_phone,
        "customer_address": payload.customer_address,
        "subtotal": totals.subtotal,
        "discount_amount": totals.discount_amount,
        "total_amount": totals.total_amount,
        "payment_method": payload.payment_method,
        "payment_status": ledger.bill_payment_status(payload.payment_method),
        "staff_id": user.id,
        "staff_name": user.name,
        "notes": payload.notes.strip(),
    })

    for product, quantity, line_total in lines:
        decrement_stock(cur, product, quantity)
        insert_row(cur, "bill_items", {
            "bill_id": bill["id"],
            "product_id": product["id"],
            "product_name": product["name"],
            "category": product["category"],
            "quantity": quantity,
            "unit": product["unit"],
            "unit_price": float(product["base_price"]),
            "total_price": line_total,
        })

    if payload.payment_method == BillPaymentMethod.CREDIT:
        _bill_pending_payment(cur, bill, user, custom=False)

    attach_bill_items(cur, [bill])
    logger.info("Bill %s created | items=%s total=%s", bill["bill_number"], len(lines), totals.total_amount)
    return bill


def create_custom_bill(cur, payload: CustomBillCreate, user: CurrentUser) -> Dict[str, Any]:
    line_totals = [ledger.bill_line_total(i.quantity, i.unit_price) for i in payload.items]
    totals = ledger.compute_bill_totals(line_totals, payload.discount_amount)
    bill_id = next_row_id(cur, "custom_bills")
    bill = insert_row(cur, "custom_bills", {
        "id": bill_id,
        "bill_number": ledger.make_bill_number(bill_id, custom=True),
        "customer_name": payload.customer_name,
        "customer_phone": payload.customer_phone,
        "customer_address": payload.customer_address,
        "subtotal": totals.subtotal,
        "discount_amount": totals.discount_amount,
        "total_amount": totals.total_amount,
        "payment_method": payload.payment_method,
        "payment_status": ledger.bill_payment_status(payload.payment_method),
        "staff_id": user.id,
        "staff_name": user.name,
        "notes": payload.notes.strip(),
    })
    for item, line_total in zip(payload.items, line_totals):
        insert_row(cur, "custom_bill_items", {
            "custom_bill_id": bill["id"],
            "product_name": item.product_name,
            "quantity": item.quantity,
            "unit": item.unit,
            "unit_price": item.unit_price,
            "total_price": line_total,
        })

    if payload.payment_method == BillPaymentMethod.CREDIT:
        _bill_pending_payment(cur, bill, user, custom=True)

    attach_bill_items(cur, [bill], custom=True)
    logger.info("Custom bill %s created | total=%s", bill["bill_number"], totals.total_amount)
    return bill


def void_bill(cur, bill_id: int, reason: str, user: CurrentUser, custom: bool = False) -> Dict[str, Any]:
    """Cancel a bill: put its stock back and drop its unpaid pending payment."""
    table = "custom_bills" if custom else "bills"
    cur.execute(f"SELECT * FROM {table} WHERE id = %s FOR UPDATE", (bill_id,))
    bill = row_to_dict(cur)
    if not bill:
        raise NotFoundError("Bill not found", extra={"bill_id": bill_id, "custom": custom})
    if bill["voided_at"] is not None:
        raise ConflictError("Bill has already been voided", extra={"bill_number": bill["bill_number"]})

    link_column = "custom_bill_id" if custom else "bill_id"
    cur.execute(
        f"SELECT id, paid_amount FROM pending_payments WHERE {link_column} = %s FOR UPDATE", (bill_id,)
    )
    pending = cur.fetchall()
    if any(float(paid) > 0 for _, paid in pending):
        raise ConflictError(
            "Payments have already been received against this bill",
            extra={"bill_number": bill["bill_number"]},
        )
    if pending:
        cur.execute(f"DELETE FROM pending_payments WHERE {link_column} = %s", (bill_id,))

    if not custom:
        cur.execute(
            "SELECT product_id, quantity FROM bill_items WHERE bill_id = %s AND product_id IS NOT NULL",
            (bill_id,),
        )
        for product_id, quantity in cur.fetchall():
            restore_stock(cur, product_id, quantity)

    update_row(cur, table, bill_id, {"voided_at": _now(), "voided_by": user.id, "void_reason": reason})
    logger.info("Bill %s voided by %s", bill["bill_number"], user.id)
    return fetch_bill(cur, bill_id, custom)


# Orders

def fetch_order(cur, order_id: int, for_update: bool = False) -> Dict[str, Any]:
    sql = "SELECT * FROM orders WHERE id = %s"
    if for_update:
        sql += " FOR UPDATE"
    cur.execute(sql, (order_id,))
    order = row_to_dict(cur)
    if not order:
        raise NotFoundError("Order not found", extra={"order_id": order_id})
    attach_order_items(cur, [order])
    return order


def attach_order_items(cur, orders: List[Dict[str, Any]]) -> None:
    if not orders:
        return
    ids = [o["id"] for o in orders]
    placeholders = ",".join(["%s"] * len(ids))
    cur.execute(f"SELECT * FROM order_items WHERE order_id IN ({placeholders}) ORDER BY id", ids)
    by_order: Dict[int, List[Dict[str, Any]]] = {}
    for item in rows_to_dicts(cur):
        by_order.setdefault(item["order_id"], []).append(item)
    for o in orders:
        o["items"] = by_order.get(o["id"], [])


def place_order(cur, payload: OrderCreate, user: CurrentUser) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    cur.execute("SELECT name, phone, address, email FROM users WHERE id = %s", (user.id,))
    customer = row_to_dict(cur)
    if not customer:
        raise NotFoundError("User not found")

    items = []
    for item in payload.items:
        product = fetch_product(cur, item.product_id)
        items.append({
            "product_id": product["id"],
            "name": product["name"],
            "quantity": item.quantity,
            "price": float(product["base_price"]),
            "unit": product["unit"],
        })
    total = round2(math.fsum(i["quantity"] * i["price"] for i in items))

    order = insert_row(cur, "orders", {
        "customer_id": user.id,
        "customer_name": customer["name"],
        "customer_phone": customer["phone"],
        "customer_email": customer["email"],
        "total": total,
        "status": OrderStatus.PENDING,
        "payment_method": payload.payment_method,
        "delivery_slot": payload.delivery_slot,
        "delivery_address": payload.delivery_address or customer["address"] or "",
        "notes": payload.notes,
    })
    for item in items:
        insert_row(cur, "order_items", {"order_id": order["id"], **item})
    order["items"] = items

    credit_request = None
    if payload.payment_method == OrderPaymentMethod.CREDIT:
        credit_request = insert_row(cur, "credit_requests", {
            "customer_id": user.id,
            "customer_name": customer["name"],
            "customer_phone": customer["phone"],
            "customer_email": customer["email"],
            "requested_amount": total,
            "reason": ledger.order_credit_reason(len(items)),
            "status": CreditRequestStatus.PENDING,
            "order_id": order["id"],
        })
    logger.info("Order %s placed | customer=%s total=%s method=%s", order["id"], user.id, total, payload.payment_method.value)
    return order, credit_request


def deliver_order(cur, order_id: int, user: CurrentUser) -> Dict[str, Any]:
    """Mark an order delivered, taking every line out of stock or none of them."""
    order = fetch_order(cur, order_id, for_update=True)
    ledger.ensure_order_open(OrderStatus(order["status"]))
    for item in order["items"]:
        product = fetch_product(cur, item["product_id"])
        decrement_stock(cur, product, item["quantity"])
    update_row(cur, "orders", order_id, {
        "status": OrderStatus.DELIVERED,
        "delivered_at": _now(),
        "delivered_by": user.id,
        "updated_at": _now(),
    })
    logger.info("Order %s delivered by %s", order_id, user.id)
    return fetch_order(cur, order_id)


def update_order_status(cur, order_id: int, status: OrderStatus, user: CurrentUser) -> Dict[str, Any]:
    if status == OrderStatus.DELIVERED:
        return deliver_order(cur, order_id, user)
    order = fetch_order(cur, order_id, for_update=True)
    ledger.ensure_order_open(OrderStatus(order["status"]))
    update_row(cur, "orders", order_id, {"status": status, "updated_at": _now()})
    return fetch_order(cur, order_id)

