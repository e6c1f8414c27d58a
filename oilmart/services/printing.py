"""Printable HTML for bills and sale receipts.

Pages open the browser print dialog as soon as they load. Every value that
came from user input is HTML-escaped.
"""
from datetime import datetime
from html import escape
from typing import Any, Iterable, Mapping

from oilmart.core.config import settings
from oilmart.utils.formatters import parse_number

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
  body {{ font-family: Arial, sans-serif; margin: 2rem; color: #111; }}
  header {{ text-align: center; border-bottom: 2px solid #ccc; padding-bottom: 1rem; margin-bottom: 1rem; }}
  table {{ width: 100%; border-collapse: collapse; margin: 1rem 0; }}
  th, td {{ border: 1px solid #ccc; padding: 0.4rem 0.8rem; }}
  .num {{ text-align: right; }}
  .totals td {{ border: none; }}
  .void {{ color: #b91c1c; font-weight: bold; }}
  footer {{ text-align: center; font-size: 0.85rem; color: #666; border-top: 1px solid #ccc; padding-top: 0.8rem; }}
  @media print {{ .no-print {{ display: none !important; }} }}
</style>
</head>
<body onload="window.print()">
<header>
<h1>{store_name}</h1>
<p>{store_tagline}</p>
<p>Phone: {store_phone}</p>
<p>{store_address}</p>
</header>
{body}
<footer>
<p>Thank you for your business!</p>
<p>This is a computer generated {kind}.</p>
</footer>
<div class="no-print"><button onclick="window.print()">Print Again</button></div>
</body>
</html>
"""


def _e(value: Any) -> str:
    return escape("" if value is None else str(getattr(value, "value", value)))


def _money(value: Any) -> str:
    return f"₹{parse_number(value):.2f}"


def _when(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d/%m/%Y %H:%M")
    return _e(value)


def _page(title: str, body: str, kind: str) -> str:
    return PAGE_TEMPLATE.format(
        title=_e(title),
        store_name=_e(settings.store_name),
        store_tagline=_e(settings.store_tagline),
        store_phone=_e(settings.store_phone),
        store_address=_e(settings.store_address),
        body=body,
        kind=kind,
    )


def _item_rows(items: Iterable[Mapping[str, Any]]) -> str:
    return "\n".join(
        "<tr><td>{name}</td><td>{qty} {unit}</td><td class=\"num\">{price}</td><td class=\"num\">{total}</td></tr>".format(
            name=_e(item["product_name"]),
            qty=_e(item["quantity"]),
            unit=_e(item["unit"]),
            price=_money(item["unit_price"]),
            total=_money(item["total_price"]),
        )
        for item in items
    )


def render_bill(bill: Mapping[str, Any]) -> str:
    lines = [
        "<section>",
        "<h2>Bill Information</h2>",
        f"<p><strong>Bill Number:</strong> {_e(bill['bill_number'])}</p>",
        f"<p><strong>Date:</strong> {_when(bill['created_at'])}</p>",
        f"<p><strong>Staff:</strong> {_e(bill.get('staff_name'))}</p>",
        f"<p><strong>Payment Method:</strong> {_e(bill['payment_method']).upper()}</p>",
        f"<p><strong>Status:</strong> {_e(bill['payment_status']).upper()}</p>",
    ]
    if bill.get("voided_at"):
        lines.append(f"<p class=\"void\">VOIDED: {_e(bill.get('void_reason'))}</p>")
    lines += [
        "</section>",
        "<section>",
        "<h2>Customer Details</h2>",
        f"<p><strong>Name:</strong> {_e(bill['customer_name'])}</p>",
    ]
    if bill.get("customer_phone"):
        lines.append(f"<p><strong>Phone:</strong> {_e(bill['customer_phone'])}</p>")
    if bill.get("customer_address"):
        lines.append(f"<p><strong>Address:</strong> {_e(bill['customer_address'])}</p>")
    lines += [
        "</section>",
        "<table>",
        "<thead><tr><th>Product</th><th>Quantity</th><th class=\"num\">Unit Price</th><th class=\"num\">Total</th></tr></thead>",
        "<tbody>",
        _item_rows(bill.get("items", [])),
        "</tbody>",
        "</table>",
        "<table class=\"totals\">",
        f"<tr><td>Subtotal:</td><td class=\"num\">{_money(bill['subtotal'])}</td></tr>",
        f"<tr><td>Discount:</td><td class=\"num\">{_money(bill['discount_amount'])}</td></tr>",
        f"<tr><td><strong>Total:</strong></td><td class=\"num\"><strong>{_money(bill['total_amount'])}</strong></td></tr>",
        "</table>",
    ]
    if bill.get("notes"):
        lines.append(f"<section><h2>Notes</h2><p>{_e(bill['notes'])}</p></section>")
    return _page(f"Bill {bill['bill_number']}", "\n".join(lines), "bill")


def render_sale_receipt(sale: Mapping[str, Any]) -> str:
    item = {
        "product_name": sale["product_name"],
        "quantity": sale["quantity"],
        "unit": sale["unit"],
        "unit_price": sale["unit_price"],
        "total_price": sale["total_amount"],
    }
    lines = [
        "<section>",
        "<h2>Sale Receipt</h2>",
        f"<p><strong>Receipt No:</strong> {_e(sale['id'])}</p>",
        f"<p><strong>Date:</strong> {_when(sale['created_at'])}</p>",
        f"<p><strong>Staff:</strong> {_e(sale.get('staff_name'))}</p>",
        f"<p><strong>Customer:</strong> {_e(sale['customer_name'])}</p>",
        f"<p><strong>Phone:</strong> {_e(sale['customer_phone'])}</p>",
        "</section>",
        "<table>",
        "<thead><tr><th>Product</th><th>Quantity</th><th class=\"num\">Unit Price</th><th class=\"num\">Total</th></tr></thead>",
        "<tbody>",
        _item_rows([item]),
        "</tbody>",
        "</table>",
        "<table class=\"totals\">",
        f"<tr><td>Total:</td><td class=\"num\">{_money(sale['total_amount'])}</td></tr>",
        f"<tr><td>Paid ({_e(sale['payment_method']).upper()}):</td><td class=\"num\">{_money(sale['paid_amount'])}</td></tr>",
    ]
    if parse_number(sale.get("credit_amount")) > 0:
        lines.append(f"<tr><td>On credit:</td><td class=\"num\">{_money(sale['credit_amount'])}</td></tr>")
    lines.append("</table>")
    return _page(f"Receipt {sale['id']}", "\n".join(lines), "receipt")
