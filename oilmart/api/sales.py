from fastapi import APIRouter, Query, Depends
from fastapi.responses import HTMLResponse
from typing import List, Optional, Any
from datetime import date, timedelta

from oilmart.models.models import Sale, SaleCreate, SalePaymentMethod
from oilmart.core.database import db_error, pg_cursor, row_to_dict, rows_to_dicts
from oilmart.core.logging import logger
from oilmart.core.exceptions import AppError, NotFoundError
from oilmart.core.security import CurrentUser, require_staff
from oilmart.services import transactions
from oilmart.services.exports import SALES_REPORT_HEADERS, csv_response, render_csv, sales_report_rows
from oilmart.services.printing import render_sale_receipt
from oilmart.services.reporting import shop_day_start, summarize_sales

router = APIRouter(dependencies=[Depends(require_staff)])


def _sales_query(
    start_date: Optional[date],
    end_date: Optional[date],
    payment_method: Optional[SalePaymentMethod],
    customer: Optional[str],
    staff_id: Optional[int],
):
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
    if customer:
        where.append("(customer_name ILIKE %s OR customer_phone LIKE %s)")
        params.extend([f"%{customer}%", f"%{customer}%"])
    if staff_id:
        where.append("staff_id = %s")
        params.append(staff_id)
    sql = "SELECT * FROM sales"
    if where:
        sql += " WHERE " + " AND ".join(where)
    return sql, params


@router.get("/", response_model=List[Sale])
async def get_sales(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    payment_method: Optional[SalePaymentMethod] = None,
    customer: Optional[str] = None,
    staff_id: Optional[int] = None,
):
    """Sales history, newest first."""
    logger.info(
        "GET /api/sales | skip=%s limit=%s start=%s end=%s method=%s customer=%s staff=%s",
        skip,
        limit,
        start_date,
        end_date,
        payment_method.value if payment_method else None,
        customer,
        staff_id,
    )
    sql, params = _sales_query(start_date, end_date, payment_method, customer, staff_id)
    sql += " ORDER BY created_at DESC, id DESC LIMIT %s OFFSET %s"
    params.extend([limit, skip])
    try:
        with pg_cursor() as cur:
            cur.execute(sql, params)
            return rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to fetch sales: %s", e)
        raise db_error("Failed to fetch sales", e)

@router.get("/today")
async def get_today_stats(mine: bool = False, user: CurrentUser = Depends(require_staff)):
    """Today's totals, optionally limited to the caller's own sales."""
    today = date.today()
    logger.info("GET /api/sales/today | mine=%s user=%s", mine, user.id)
    sql, params = _sales_query(today, today, None, None, user.id if mine else None)
    try:
        with pg_cursor() as cur:
            cur.execute(sql, params)
            sales = rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to compute today's sales: %s", e)
        raise db_error("Failed to compute today's sales", e)
    return {"date": today, **summarize_sales(sales)}

@router.get("/export")
async def export_sales(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    payment_method: Optional[SalePaymentMethod] = None,
):
    logger.info("GET /api/sales/export | start=%s end=%s", start_date, end_date)
    sql, params = _sales_query(start_date, end_date, payment_method, None, None)
    try:
        with pg_cursor() as cur:
            cur.execute(sql + " ORDER BY created_at DESC, id DESC", params)
            sales = rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to export sales: %s", e)
        raise db_error("Failed to export sales", e)
    logger.info("Exporting %s sales", len(sales))
    return csv_response("sales-report", render_csv(SALES_REPORT_HEADERS, sales_report_rows(sales)))

def _load_sale(sale_id: int):
    try:
        with pg_cursor() as cur:
            cur.execute("SELECT * FROM sales WHERE id = %s", (sale_id,))
            sale = row_to_dict(cur)
    except Exception as e:
        logger.error("Failed to fetch sale %s: %s", sale_id, e)
        raise db_error("Failed to fetch sale", e)
    if not sale:
        logger.error("Sale %s not found", sale_id)
        raise NotFoundError("Sale not found")
    return sale

@router.get("/{sale_id}", response_model=Sale)
async def get_sale(sale_id: int):
    logger.info("GET /api/sales/%s", sale_id)
    return _load_sale(sale_id)

@router.get("/{sale_id}/print", response_class=HTMLResponse)
async def print_sale(sale_id: int):
    logger.info("GET /api/sales/%s/print", sale_id)
    return HTMLResponse(render_sale_receipt(_load_sale(sale_id)))

@router.post("/", response_model=Sale, status_code=201)
async def create_sale(sale: SaleCreate, user: CurrentUser = Depends(require_staff)):
    """Record a sale, take it out of stock and book any unpaid part as credit."""
    logger.info(
        "POST /api/sales | product=%s qty=%s method=%s customer=%s",
        sale.product_id, sale.quantity, sale.payment_method.value, sale.customer_phone,
    )
    try:
        with pg_cursor(commit=True) as cur:
            return transactions.record_sale(cur, sale, user)
    except AppError as e:
        logger.error("Sale rejected: %s", e.message)
        raise
    except Exception as e:
        logger.error("Failed to record sale: %s", e)
        raise db_error("Failed to record sale", e)
