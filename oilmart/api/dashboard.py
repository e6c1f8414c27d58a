from fastapi import APIRouter, Depends
from datetime import datetime

from oilmart.models.models import DateRange, OwnerDashboardStats, StaffDashboardStats
from oilmart.core.database import db_error, pg_cursor, rows_to_dicts
from oilmart.core.logging import logger
from oilmart.core.security import CurrentUser, get_current_user, require_owner, require_staff
from oilmart.services.exports import SALES_REPORT_HEADERS, csv_response, render_csv, sales_report_rows
from oilmart.services.reporting import compute_kpis, date_window, previous_window, sales_analytics, shop_now

router = APIRouter(dependencies=[Depends(get_current_user)])


def _now() -> datetime:
    return shop_now()


def _sales_between(cur, start, end):
    cur.execute(
        "SELECT * FROM sales WHERE created_at >= %s AND created_at <= %s ORDER BY created_at DESC, id DESC",
        (start, end),
    )
    return rows_to_dicts(cur)


def _revenue_between(cur, start, end) -> float:
    cur.execute(
        "SELECT COALESCE(SUM(total_amount), 0) FROM sales WHERE created_at >= %s AND created_at <= %s",
        (start, end),
    )
    return float(cur.fetchone()[0])


@router.get("/owner", response_model=OwnerDashboardStats)
async def get_owner_dashboard(_: CurrentUser = Depends(require_owner)):
    """Shop-wide figures for the owner's landing page"""
    logger.info("GET /api/dashboard/owner - computing owner dashboard")
    start, end = date_window(DateRange.TODAY, _now())
    try:
        with pg_cursor() as cur:
            cur.execute("SELECT COUNT(*), COALESCE(SUM(CASE WHEN stock <= lowstock_alert THEN 1 ELSE 0 END), 0) FROM products")
            total_products, low_stock_products = cur.fetchone()
            today_sales = _revenue_between(cur, start, end)
            cur.execute("SELECT COUNT(*) FROM users WHERE role = 'customer'")
            (total_customers,) = cur.fetchone()
            cur.execute("SELECT COALESCE(SUM(total_credit), 0) FROM customer_credits")
            (pending_credits,) = cur.fetchone()
            cur.execute("SELECT COUNT(*), COALESCE(SUM(pending_amount), 0) FROM pending_payments WHERE status <> 'paid'")
            pending_payments, total_pending_amount = cur.fetchone()

            cur.execute("SELECT COUNT(*) FROM credit_requests WHERE status = 'pending'")
            (pending_credit_requests,) = cur.fetchone()
            cur.execute(
                "SELECT * FROM credit_requests WHERE status = 'pending' ORDER BY created_at DESC, id DESC LIMIT 5"
            )
            recent_credit_requests = rows_to_dicts(cur)

            cur.execute("SELECT * FROM sales ORDER BY created_at DESC, id DESC LIMIT 5")
            recent_sales = rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to compute owner dashboard: %s", e)
        raise db_error("Failed to compute owner dashboard", e)

    logger.info(
        "Owner dashboard computed | today_sales=%s products=%s low_stock=%s pending_requests=%s",
        today_sales, total_products, low_stock_products, pending_credit_requests,
    )
    return OwnerDashboardStats(
        total_products=total_products,
        low_stock_products=low_stock_products,
        today_sales=today_sales,
        total_customers=total_customers,
        pending_credits=pending_credits,
        pending_credit_requests=pending_credit_requests,
        pending_payments=pending_payments,
        total_pending_amount=total_pending_amount,
        recent_sales=recent_sales,
        recent_credit_requests=recent_credit_requests,
    )

@router.get("/staff", response_model=StaffDashboardStats)
async def get_staff_dashboard(user: CurrentUser = Depends(require_staff)):
    """The caller's own sales today plus the stock and payment follow-ups"""
    logger.info("GET /api/dashboard/staff | user=%s", user.id)
    start, end = date_window(DateRange.TODAY, _now())
    try:
        with pg_cursor() as cur:
            cur.execute(
                """
                SELECT COALESCE(SUM(total_amount), 0), COUNT(*)
                FROM sales WHERE staff_id = %s AND created_at >= %s AND created_at <= %s
                """,
                (user.id, start, end),
            )
            today_sales, today_transactions = cur.fetchone()
            cur.execute("SELECT * FROM products WHERE stock <= lowstock_alert ORDER BY stock ASC, name ASC")
            low_stock = rows_to_dicts(cur)
            cur.execute("SELECT COUNT(*), COALESCE(SUM(pending_amount), 0) FROM pending_payments WHERE status <> 'paid'")
            pending_payments, total_pending_amount = cur.fetchone()
    except Exception as e:
        logger.error("Failed to compute staff dashboard: %s", e)
        raise db_error("Failed to compute staff dashboard", e)
    return StaffDashboardStats(
        today_sales=today_sales,
        today_transactions=today_transactions,
        low_stock=low_stock,
        pending_payments=pending_payments,
        total_pending_amount=total_pending_amount,
    )

@router.get("/analytics")
async def get_sales_analytics(date_range: DateRange = DateRange.MONTH, _: CurrentUser = Depends(require_owner)):
    """Revenue series and breakdowns for the selected window"""
    logger.info("GET /api/dashboard/analytics | range=%s", date_range.value)
    now = _now()
    start, end = date_window(date_range, now)
    prev_start, prev_end = previous_window(date_range, now)
    try:
        with pg_cursor() as cur:
            sales = _sales_between(cur, start, end)
            previous_total = _revenue_between(cur, prev_start, prev_end)
    except Exception as e:
        logger.error("Failed to compute sales analytics: %s", e)
        raise db_error("Failed to compute sales analytics", e)
    result = sales_analytics(sales, date_range, now, previous_total)
    logger.info("Sales analytics computed | range=%s sales=%s", date_range.value, len(sales))
    return result

@router.get("/kpis")
async def get_kpis(_: CurrentUser = Depends(require_owner)):
    """Month, year-to-date and week comparisons"""
    logger.info("GET /api/dashboard/kpis")
    try:
        with pg_cursor() as cur:
            return compute_kpis(lambda start, end: _revenue_between(cur, start, end), _now())
    except Exception as e:
        logger.error("Failed to compute KPIs: %s", e)
        raise db_error("Failed to compute KPIs", e)

@router.get("/export")
async def export_sales_report(date_range: DateRange = DateRange.MONTH, _: CurrentUser = Depends(require_owner)):
    logger.info("GET /api/dashboard/export | range=%s", date_range.value)
    start, end = date_window(date_range, _now())
    try:
        with pg_cursor() as cur:
            sales = _sales_between(cur, start, end)
    except Exception as e:
        logger.error("Failed to export sales report: %s", e)
        raise db_error("Failed to export sales report", e)
    return csv_response("sales-report", render_csv(SALES_REPORT_HEADERS, sales_report_rows(sales)))
