from fastapi import APIRouter, Depends, Query
from typing import List, Optional, Any, Dict
from datetime import datetime, timezone

from oilmart.models.models import PaymentReceipt, PaymentStatus, PendingPayment, PendingPaymentSummary
from oilmart.core.database import db_error, pg_cursor, rows_to_dicts
from oilmart.core.logging import logger
from oilmart.core.exceptions import AppError
from oilmart.core.security import CurrentUser, require_staff
from oilmart.services import credit
from oilmart.services.exports import PENDING_PAYMENT_HEADERS, csv_response, pending_payment_rows, render_csv
from oilmart.services.reporting import pending_payment_display_status, pending_payment_summary

router = APIRouter(dependencies=[Depends(require_staff)])

DISPLAY_FILTER = "^(pending|partial|paid|overdue|due_soon|open)$"


def _load_payments(search: Optional[str]) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM pending_payments"
    params: List[Any] = []
    if search:
        sql += " WHERE (customer_name ILIKE %s OR customer_phone LIKE %s OR bill_number ILIKE %s)"
        params.extend([f"%{search}%"] * 3)
    sql += " ORDER BY due_date ASC, id ASC"
    with pg_cursor() as cur:
        cur.execute(sql, params)
        payments = rows_to_dicts(cur)
    now = datetime.now(timezone.utc)
    for p in payments:
        p["display_status"] = pending_payment_display_status(p, now)
    return payments


def _filter(payments: List[Dict[str, Any]], status: Optional[str]) -> List[Dict[str, Any]]:
    if not status:
        return payments
    if status == "open":
        return [p for p in payments if p["status"] != PaymentStatus.PAID.value]
    return [p for p in payments if p["display_status"] == status]


@router.get("/", response_model=List[PendingPayment])
async def list_pending_payments(
    status: Optional[str] = Query("open", pattern=DISPLAY_FILTER),
    search: Optional[str] = None,
):
    """Unsettled balances, soonest due first."""
    logger.info("GET /api/pending-payments | status=%s search=%s", status, search)
    try:
        payments = _load_payments(search)
    except Exception as e:
        logger.error("Failed to fetch pending payments: %s", e)
        raise db_error("Failed to fetch pending payments", e)
    return _filter(payments, status)

@router.get("/summary", response_model=PendingPaymentSummary)
async def get_summary():
    logger.info("GET /api/pending-payments/summary")
    try:
        payments = _load_payments(None)
    except Exception as e:
        logger.error("Failed to compute pending payment summary: %s", e)
        raise db_error("Failed to compute pending payment summary", e)
    return pending_payment_summary(payments, datetime.now(timezone.utc))

@router.get("/export")
async def export_pending_payments(status: Optional[str] = Query("open", pattern=DISPLAY_FILTER)):
    logger.info("GET /api/pending-payments/export | status=%s", status)
    try:
        payments = _filter(_load_payments(None), status)
    except Exception as e:
        logger.error("Failed to export pending payments: %s", e)
        raise db_error("Failed to export pending payments", e)
    return csv_response("pending-payments", render_csv(PENDING_PAYMENT_HEADERS, pending_payment_rows(payments)))

@router.post("/{payment_id}/payments", response_model=PendingPayment)
async def record_payment(payment_id: int, payload: PaymentReceipt, user: CurrentUser = Depends(require_staff)):
    """Record money received against a pending payment."""
    logger.info("POST /api/pending-payments/%s/payments | amount=%s", payment_id, payload.amount)
    try:
        with pg_cursor(commit=True) as cur:
            payment = credit.record_pending_payment(cur, payment_id, payload.amount, user)
    except AppError as e:
        logger.error("Payment on %s rejected: %s", payment_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to record payment on %s: %s", payment_id, e)
        raise db_error("Failed to record payment", e)
    payment["display_status"] = pending_payment_display_status(payment, datetime.now(timezone.utc))
    return payment
