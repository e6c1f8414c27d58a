"""Sales analytics, ledger balances and dashboard rollups.

All functions take rows already loaded from the database (dicts as returned
by ``rows_to_dicts``) and return plain dicts ready for JSON. Sums go through
``math.fsum`` and ``round2`` so the result does not depend on row order.
"""
import math
from calendar import monthrange
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from oilmart.core.config import settings
from oilmart.models.models import DateRange, PaymentStatus
from oilmart.services.ledger import outstanding
from oilmart.utils.formatters import calculate_percentage_change, parse_number, round2

Window = Tuple[datetime, datetime]

CATEGORY_KEYWORDS = ("sunflower", "groundnut", "gingelly", "mustard", "coconut")


# Date windows

def shop_timezone() -> ZoneInfo:
    return ZoneInfo(settings.shop_timezone)


def shop_now() -> datetime:
    return datetime.now(shop_timezone())


def shop_day_start(day: date) -> datetime:
    """Midnight of ``day`` in shop time, for filtering TIMESTAMPTZ columns by calendar date."""
    return datetime.combine(day, time.min, tzinfo=shop_timezone())


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(dt: datetime) -> datetime:
    return datetime.combine(dt.date(), time.max, tzinfo=dt.tzinfo)


def start_of_week(dt: datetime) -> datetime:
    # Weeks run Sunday to Saturday
    return start_of_day(dt - timedelta(days=(dt.weekday() + 1) % 7))


def start_of_month(dt: datetime) -> datetime:
    return start_of_day(dt.replace(day=1))


def end_of_month(dt: datetime) -> datetime:
    return end_of_day(dt.replace(day=monthrange(dt.year, dt.month)[1]))


def shift_months(dt: datetime, months: int) -> datetime:
    index = dt.year * 12 + (dt.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    day = min(dt.day, monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def date_window(date_range: DateRange, now: datetime) -> Window:
    if date_range == DateRange.TODAY:
        return start_of_day(now), end_of_day(now)
    if date_range == DateRange.WEEK:
        start = start_of_week(now)
        return start, end_of_day(start + timedelta(days=6))
    if date_range == DateRange.YEAR:
        return start_of_day(now.replace(month=1, day=1)), end_of_day(now.replace(month=12, day=31))
    return start_of_month(now), end_of_month(now)


def previous_window(date_range: DateRange, now: datetime) -> Window:
    if date_range == DateRange.TODAY:
        return date_window(date_range, now - timedelta(days=1))
    if date_range == DateRange.WEEK:
        return date_window(date_range, now - timedelta(days=7))
    if date_range == DateRange.YEAR:
        return date_window(date_range, shift_months(now, -12))
    return date_window(date_range, shift_months(now, -1))


def _local(dt: datetime, tz) -> datetime:
    if tz is not None and dt.tzinfo is not None:
        return dt.astimezone(tz)
    return dt


# Sales analytics

def _amount(sale: Mapping[str, Any], key: str = "total_amount") -> float:
    return parse_number(sale.get(key))


def summarize_sales(sales: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    total = round2(math.fsum(_amount(s) for s in sales))
    count = len(sales)
    return {
        "total_revenue": total,
        "transaction_count": count,
        "average_order_value": round2(total / count) if count else 0.0,
        "total_paid": round2(math.fsum(_amount(s, "paid_amount") for s in sales)),
        "total_credit": round2(math.fsum(_amount(s, "credit_amount") for s in sales)),
    }


def revenue_series(
    sales: Iterable[Mapping[str, Any]], start: datetime, end: datetime, date_range: DateRange
) -> List[Dict[str, Any]]:
    """Revenue per day, or per month for a yearly window. Empty buckets are kept."""
    by_month = date_range == DateRange.YEAR
    totals: Dict[Any, List[float]] = defaultdict(list)
    for sale in sales:
        created = _local(sale["created_at"], start.tzinfo)
        key = (created.year, created.month) if by_month else created.date()
        totals[key].append(_amount(sale))

    series = []
    cursor = start_of_month(start) if by_month else start_of_day(start)
    while cursor <= end:
        if by_month:
            key, label = (cursor.year, cursor.month), cursor.strftime("%b")
        else:
            key, label = cursor.date(), cursor.strftime("%b %d")
        amounts = totals.get(key, [])
        series.append({"date": label, "sales": round2(math.fsum(amounts)), "transactions": len(amounts)})
        cursor = shift_months(cursor, 1) if by_month else cursor + timedelta(days=1)
    return series


def payment_method_breakdown(sales: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    methods: Dict[str, List[float]] = defaultdict(list)
    for sale in sales:
        method = sale.get("payment_method")
        method = getattr(method, "value", method) or "unknown"
        methods[method].append(_amount(sale))
    return [{"name": m.upper(), "value": round2(math.fsum(v))} for m, v in methods.items()]


def infer_category(product_name: str) -> str:
    """Best guess at a category from the product name, for rows stored without one."""
    name = (product_name or "").lower()
    for keyword in CATEGORY_KEYWORDS:
        if keyword in name:
            return keyword.capitalize()
    return "Other"


def sale_category(sale: Mapping[str, Any]) -> str:
    category = sale.get("product_category") or sale.get("category")
    category = getattr(category, "value", category)
    if category:
        return str(category).capitalize()
    return infer_category(sale.get("product_name", ""))


def category_breakdown(sales: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    categories: Dict[str, List[float]] = defaultdict(list)
    for sale in sales:
        categories[sale_category(sale)].append(_amount(sale))
    totals = {c: math.fsum(v) for c, v in categories.items()}
    grand_total = math.fsum(totals.values())
    return [
        {
            "category": category,
            "sales": round2(amount),
            "percentage": round2(amount / grand_total * 100) if grand_total > 0 else 0.0,
        }
        for category, amount in totals.items()
    ]


def top_products(sales: Iterable[Mapping[str, Any]], limit: int = 5) -> List[Dict[str, Any]]:
    quantities: Dict[Any, float] = defaultdict(float)
    revenue: Dict[Any, List[float]] = defaultdict(list)
    names: Dict[Any, str] = {}
    for sale in sales:
        key = sale.get("product_id") or sale.get("product_name")
        names[key] = sale.get("product_name", "")
        quantities[key] += parse_number(sale.get("quantity"))
        revenue[key].append(_amount(sale))
    ranked = sorted(quantities, key=lambda k: (-quantities[k], names[k]))
    return [
        {
            "product_id": key if isinstance(key, int) else None,
            "product_name": names[key],
            "quantity": quantities[key],
            "revenue": round2(math.fsum(revenue[key])),
        }
        for key in ranked[:limit]
    ]


def compute_kpis(total_between: Callable[[datetime, datetime], float], now: datetime) -> Dict[str, Any]:
    """Period-over-period revenue figures.

    ``total_between(start, end)`` returns the revenue of sales created in the
    inclusive window; each comparison window is summed on its own.
    """
    month_start, month_end = date_window(DateRange.MONTH, now)
    prev_month_start, prev_month_end = previous_window(DateRange.MONTH, now)
    current_month = round2(total_between(month_start, month_end))
    previous_month = round2(total_between(prev_month_start, prev_month_end))

    year_start = start_of_day(now.replace(month=1, day=1))
    ytd = round2(total_between(year_start, now))
    last_year_now = shift_months(now, -12)
    last_year = round2(total_between(start_of_day(last_year_now.replace(month=1, day=1)), end_of_day(last_year_now)))

    trend = []
    for months_back in range(11, -1, -1):
        month = shift_months(now, -months_back)
        trend.append({
            "month": month.strftime("%b %Y"),
            "sales": round2(total_between(start_of_month(month), end_of_month(month))),
        })

    week_start, week_end = date_window(DateRange.WEEK, now)
    prev_week_start, prev_week_end = previous_window(DateRange.WEEK, now)
    current_week = round2(total_between(week_start, week_end))
    previous_week = round2(total_between(prev_week_start, prev_week_end))

    chart = []
    for days_back in range(6, -1, -1):
        day = now - timedelta(days=days_back)
        chart.append({"day": day.strftime("%a"), "sales": round2(total_between(start_of_day(day), end_of_day(day)))})

    return {
        "monthly_sales": {
            "current": current_month,
            "previous": previous_month,
            "change": round2(calculate_percentage_change(current_month, previous_month)),
            "ytd": ytd,
            "last_year": last_year,
            "ytd_change": round2(calculate_percentage_change(ytd, last_year)),
            "trend": trend,
        },
        "weekly_sales": {
            "current": current_week,
            "previous": previous_week,
            "change": round2(calculate_percentage_change(current_week, previous_week)),
            "chart": chart,
        },
    }


def sales_analytics(
    sales: Sequence[Mapping[str, Any]],
    date_range: DateRange,
    now: datetime,
    previous_total: Optional[float] = None,
) -> Dict[str, Any]:
    start, end = date_window(date_range, now)
    summary = summarize_sales(sales)
    result = {
        "range": date_range.value,
        "start": start,
        "end": end,
        **summary,
        "series": revenue_series(sales, start, end, date_range),
        "payment_methods": payment_method_breakdown(sales),
        "categories": category_breakdown(sales),
        "top_products": top_products(sales),
    }
    if previous_total is not None:
        result["previous_revenue"] = round2(previous_total)
        result["revenue_change"] = round2(calculate_percentage_change(summary["total_revenue"], previous_total))
    return result


# Market credit balances

def _collection_amounts(collections: Iterable[Mapping[str, Any]]) -> List[float]:
    return [parse_number(c["amount"]) for c in collections]


def customer_balance(
    credits: Iterable[Mapping[str, Any]],
    collections_by_credit: Mapping[int, Sequence[Mapping[str, Any]]],
    customer_phone: str = "",
) -> Dict[str, Any]:
    """Balance across every market credit entry of one customer."""
    credits = list(credits)
    credit_amount = round2(math.fsum(parse_number(c["amount"]) for c in credits))
    collections = [col for c in credits for col in collections_by_credit.get(c["id"], [])]
    collected = round2(math.fsum(_collection_amounts(collections)))
    collections.sort(key=lambda c: (c["collected_at"], c.get("id", 0)), reverse=True)
    return {
        "customer_phone": customer_phone,
        "credit_amount": credit_amount,
        "total_collected": collected,
        "outstanding": round2(credit_amount - collected),
        "collections": collections,
    }


def total_outstanding(
    credits: Iterable[Mapping[str, Any]],
    collections_by_credit: Mapping[int, Sequence[Mapping[str, Any]]],
) -> float:
    """Outstanding across unpaid entries. Entries marked paid count as settled."""
    return round2(math.fsum(
        outstanding(parse_number(c["amount"]), _collection_amounts(collections_by_credit.get(c["id"], [])))
        for c in credits
        if not c.get("paid")
    ))


def find_negative_outstanding(
    credits: Iterable[Mapping[str, Any]],
    collections_by_credit: Mapping[int, Sequence[Mapping[str, Any]]],
) -> List[int]:
    return [
        c["id"]
        for c in credits
        if outstanding(parse_number(c["amount"]), _collection_amounts(collections_by_credit.get(c["id"], []))) < 0
    ]


def group_collections(collections: Iterable[Mapping[str, Any]]) -> Dict[int, List[Mapping[str, Any]]]:
    grouped: Dict[int, List[Mapping[str, Any]]] = defaultdict(list)
    for collection in collections:
        grouped[collection["credit_id"]].append(collection)
    return grouped


def market_credit_summary(
    credits: Sequence[Mapping[str, Any]],
    collections_by_credit: Mapping[int, Sequence[Mapping[str, Any]]],
) -> Dict[str, Any]:
    return {
        "total_outstanding": total_outstanding(credits, collections_by_credit),
        "unique_customers": len({c["customer_phone"] for c in credits}),
        "total_credits": len(credits),
        "negative_balances": find_negative_outstanding(credits, collections_by_credit),
    }


# Inventory

def is_low_stock(product: Mapping[str, Any]) -> bool:
    return parse_number(product["stock"]) <= parse_number(product.get("lowstock_alert"))


def inventory_summary(products: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    return {
        "total_products": len(products),
        "low_stock_products": sum(1 for p in products if is_low_stock(p)),
        "out_of_stock_products": sum(1 for p in products if parse_number(p["stock"]) == 0),
        "total_inventory_value": round2(math.fsum(
            parse_number(p["stock"]) * parse_number(p["base_price"]) for p in products
        )),
    }


# Pending payments

def pending_payment_display_status(payment: Mapping[str, Any], today: datetime) -> str:
    status = payment["status"]
    status = getattr(status, "value", status)
    if status in (PaymentStatus.PAID.value, PaymentStatus.PARTIAL.value):
        return status
    due = _local(payment["due_date"], today.tzinfo)
    if due < today:
        return "overdue"
    if due <= today + timedelta(days=settings.due_soon_days):
        return "due_soon"
    return PaymentStatus.PENDING.value


def pending_payment_summary(payments: Sequence[Mapping[str, Any]], today: datetime) -> Dict[str, Any]:
    open_payments = [p for p in payments if getattr(p["status"], "value", p["status"]) != PaymentStatus.PAID.value]
    displays = [pending_payment_display_status(p, today) for p in open_payments]
    return {
        "total_pending_amount": round2(math.fsum(parse_number(p["pending_amount"]) for p in open_payments)),
        "pending_count": sum(1 for p in open_payments if getattr(p["status"], "value", p["status"]) == "pending"),
        "partial_count": displays.count("partial"),
        "overdue_count": displays.count("overdue"),
        "due_soon_count": displays.count("due_soon"),
    }
