import csv
import io
from datetime import date, datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from fastapi import Response

from oilmart.services.ledger import is_custom_bill_number
from oilmart.utils.formatters import format_currency, parse_number, round2

SALES_REPORT_HEADERS = ["Date", "Customer", "Product", "Quantity", "Amount", "Payment Method", "Staff"]
BILLS_HEADERS = ["Bill Number", "Customer", "Date", "Total Amount", "Payment Method", "Status", "Type"]
MARKET_CREDIT_HEADERS = ["Customer", "Phone", "Amount", "Collected", "Outstanding", "Status", "Date"]
PENDING_PAYMENT_HEADERS = ["Customer", "Phone", "Reference", "Total", "Paid", "Pending", "Due Date", "Status"]


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


def _fmt_date(value: Any, fmt: str = "%Y-%m-%d") -> str:
    if isinstance(value, (datetime, date)):
        return value.strftime(fmt)
    return str(value or "")


def render_csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Comma separated, every cell quoted, embedded quotes doubled."""
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if cell is None else cell for cell in row])
    return output.getvalue()


def export_filename(report_name: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{report_name}-{today.strftime('%Y-%m-%d')}.csv"


def csv_response(report_name: str, content: str, today: Optional[date] = None) -> Response:
    filename = export_filename(report_name, today)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def sales_report_rows(sales: Iterable[Mapping[str, Any]]) -> List[List[Any]]:
    return [
        [
            _fmt_date(s["created_at"], "%Y-%m-%d %H:%M"),
            s["customer_name"],
            s["product_name"],
            f"{s['quantity']} {s['unit']}",
            f"₹{round2(parse_number(s['total_amount'])):.2f}",
            str(_value(s["payment_method"])).upper(),
            s.get("staff_name", ""),
        ]
        for s in sales
    ]


def bills_rows(bills: Iterable[Mapping[str, Any]]) -> List[List[Any]]:
    rows = []
    for b in bills:
        status = "VOIDED" if b.get("voided_at") else str(_value(b["payment_status"])).upper()
        rows.append([
            b["bill_number"],
            b["customer_name"],
            _fmt_date(b["created_at"]),
            format_currency(b["total_amount"]),
            str(_value(b["payment_method"])).upper(),
            status,
            "Custom" if is_custom_bill_number(b["bill_number"]) else "Regular",
        ])
    return rows


def market_credit_rows(credits: Iterable[Mapping[str, Any]]) -> List[List[Any]]:
    return [
        [
            c["customer_name"],
            c["customer_phone"],
            format_currency(c["amount"]),
            format_currency(c.get("total_collected", 0)),
            format_currency(c.get("outstanding", c["amount"])),
            "Paid" if c.get("paid") else "Unpaid",
            _fmt_date(c["created_at"]),
        ]
        for c in credits
    ]


def _payment_reference(p: Mapping[str, Any]) -> str:
    if p.get("bill_number"):
        return p["bill_number"]
    if p.get("order_id"):
        return f"Order #{p['order_id']}"
    return p.get("product_name") or ""


def pending_payment_rows(payments: Iterable[Mapping[str, Any]]) -> List[List[Any]]:
    return [
        [
            p["customer_name"],
            p.get("customer_phone", ""),
            _payment_reference(p),
            format_currency(p["total_amount"]),
            format_currency(p["paid_amount"]),
            format_currency(p["pending_amount"]),
            _fmt_date(p["due_date"]),
            str(p.get("display_status") or _value(p["status"])).upper(),
        ]
        for p in payments
    ]
