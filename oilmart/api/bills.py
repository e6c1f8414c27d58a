from fastapi import APIRouter, Query, Depends
from fastapi.responses import HTMLResponse
from typing import List, Optional, Any, Dict
from datetime import date, timedelta

from oilmart.models.models import Bill, BillCreate, BillPaymentMethod, BillVoid, CustomBillCreate
from oilmart.core.database import db_error, pg_cursor, rows_to_dicts
from oilmart.core.logging import logger
from oilmart.core.exceptions import AppError, NotFoundError
from oilmart.core.security import CurrentUser, require_owner, require_staff
from oilmart.services import transactions
from oilmart.services.exports import BILLS_HEADERS, bills_rows, csv_response, render_csv
from oilmart.services.printing import render_bill
from oilmart.services.reporting import shop_day_start

router = APIRouter(dependencies=[Depends(require_staff)])


def _list_bills(
    custom: bool,
    start_date: Optional[date],
    end_date: Optional[date],
    payment_method: Optional[BillPaymentMethod],
    search: Optional[str],
    include_voided: bool,
) -> List[Dict[str, Any]]:
    table = "custom_bills" if custom else "bills"
    where = []
    params: List[Any] = []
    if start_date:
        where.append("created_at >= %s")
        params.append(shop_day_start(start_date))
    if end_date:
        where.append("created_at < %s")
        params.append(shop_day_start(end_date + timedelta(days=1)))
    if payment_method:
        where.append("payment_method = %s")
        params.append(payment_method.value)
    if search:
        where.append("(bill_number ILIKE %s OR customer_name ILIKE %s OR customer_phone ILIKE %s)")
        params.extend([f"%{search}%"] * 3)
    if not include_voided:
        where.append("voided_at IS NULL")
    sql = f"SELECT * FROM {table}"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY created_at DESC, id DESC"
    with pg_cursor() as cur:
        cur.execute(sql, params)
        bills = rows_to_dicts(cur)
        transactions.attach_bill_items(cur, bills, custom)
    return bills


def _collect_bills(kind: str, *filters) -> List[Dict[str, Any]]:
    bills: List[Dict[str, Any]] = []
    if kind in ("all", "regular"):
        bills.extend(_list_bills(False, *filters))
    if kind in ("all", "custom"):
        bills.extend(_list_bills(True, *filters))
    bills.sort(key=lambda b: b["created_at"], reverse=True)
    return bills


@router.get("/", response_model=List[Bill])
async def get_bills(
    kind: str = Query("all", pattern="^(all|regular|custom)$"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    payment_method: Optional[BillPaymentMethod] = None,
    search: Optional[str] = None,
    include_voided: bool = True,
):
    logger.info(
        "GET /api/bills | kind=%s start=%s end=%s method=%s search=%s",
        kind, start_date, end_date, payment_method.value if payment_method else None, search,
    )
    try:
        return _collect_bills(kind, start_date, end_date, payment_method, search, include_voided)
    except Exception as e:
        logger.error("Failed to fetch bills: %s", e)
        raise db_error("Failed to fetch bills", e)

@router.get("/export")
async def export_bills(
    kind: str = Query("all", pattern="^(all|regular|custom)$"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    logger.info("GET /api/bills/export | kind=%s start=%s end=%s", kind, start_date, end_date)
    try:
        bills = _collect_bills(kind, start_date, end_date, None, None, True)
    except Exception as e:
        logger.error("Failed to export bills: %s", e)
        raise db_error("Failed to export bills", e)
    return csv_response("bills-export", render_csv(BILLS_HEADERS, bills_rows(bills)))

@router.post("/", response_model=Bill, status_code=201)
async def create_bill(payload: BillCreate, user: CurrentUser = Depends(require_staff)):
    logger.info(
        "POST /api/bills | customer=%s items=%s method=%s discount=%s",
        payload.customer_name, len(payload.items), payload.payment_method.value, payload.discount_amount,
    )
    try:
        with pg_cursor(commit=True) as cur:
            return transactions.create_bill(cur, payload, user)
    except AppError as e:
        logger.error("Bill rejected: %s", e.message)
        raise
    except Exception as e:
        logger.error("Failed to create bill: %s", e)
        raise db_error("Failed to create bill", e)

@router.post("/custom", response_model=Bill, status_code=201)
async def create_custom_bill(payload: CustomBillCreate, user: CurrentUser = Depends(require_staff)):
    logger.info(
        "POST /api/bills/custom | customer=%s items=%s method=%s",
        payload.customer_name, len(payload.items), payload.payment_method.value,
    )
    try:
        with pg_cursor(commit=True) as cur:
            return transactions.create_custom_bill(cur, payload, user)
    except AppError as e:
        logger.error("Custom bill rejected: %s", e.message)
        raise
    except Exception as e:
        logger.error("Failed to create custom bill: %s", e)
        raise db_error("Failed to create custom bill", e)

def _get_bill(bill_id: int, custom: bool) -> Dict[str, Any]:
    try:
        with pg_cursor() as cur:
            return transactions.fetch_bill(cur, bill_id, custom)
    except NotFoundError:
        logger.error("Bill %s (custom=%s) not found", bill_id, custom)
        raise
    except Exception as e:
        logger.error("Failed to fetch bill %s: %s", bill_id, e)
        raise db_error("Failed to fetch bill", e)

def _void(bill_id: int, payload: BillVoid, owner: CurrentUser, custom: bool) -> Dict[str, Any]:
    logger.info("POST void bill %s | custom=%s reason=%s", bill_id, custom, payload.reason)
    try:
        with pg_cursor(commit=True) as cur:
            return transactions.void_bill(cur, bill_id, payload.reason, owner, custom)
    except AppError as e:
        logger.error("Void of bill %s rejected: %s", bill_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to void bill %s: %s", bill_id, e)
        raise db_error("Failed to void bill", e)

@router.get("/custom/{bill_id}", response_model=Bill)
async def get_custom_bill(bill_id: int):
    logger.info("GET /api/bills/custom/%s", bill_id)
    return _get_bill(bill_id, True)

@router.get("/custom/{bill_id}/print", response_class=HTMLResponse)
async def print_custom_bill(bill_id: int):
    logger.info("GET /api/bills/custom/%s/print", bill_id)
    return HTMLResponse(render_bill(_get_bill(bill_id, True)))

@router.post("/custom/{bill_id}/void", response_model=Bill)
async def void_custom_bill(bill_id: int, payload: BillVoid, owner: CurrentUser = Depends(require_owner)):
    return _void(bill_id, payload, owner, True)

@router.get("/{bill_id}", response_model=Bill)
async def get_bill(bill_id: int):
    logger.info("GET /api/bills/%s", bill_id)
    return _get_bill(bill_id, False)

@router.get("/{bill_id}/print", response_class=HTMLResponse)
async def print_bill(bill_id: int):
    logger.info("GET /api/bills/%s/print", bill_id)
    return HTMLResponse(render_bill(_get_bill(bill_id, False)))

@router.post("/{bill_id}/void", response_model=Bill)
async def void_bill(bill_id: int, payload: BillVoid, owner: CurrentUser = Depends(require_owner)):
    """Cancel a bill. Stock is restored and an unpaid credit balance is dropped."""
    return _void(bill_id, payload, owner, False)
