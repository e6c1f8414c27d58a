import math
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

_NON_NUMERIC = re.compile(r"[^\d.\-]")


def parse_number(value: Any, default: float = 0.0) -> float:
    """Safely parse a numeric value with fallback.

    Strings may carry currency symbols or grouping commas ("₹1,250.50").
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return default if isinstance(value, float) and math.isnan(value) else float(value)
    if isinstance(value, Decimal):
        return default if value.is_nan() else float(value)
    if isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value)
        try:
            parsed = float(cleaned)
        except ValueError:
            return default
        return default if math.isnan(parsed) else parsed
    return default


def parse_integer(value: Any, default: int = 0) -> int:
    return math.floor(parse_number(value, default))


def round2(x: Any) -> float:
    """Round half-up to two decimal places (currency precision)."""
    try:
        return float(Decimal(str(parse_number(x))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return 0.0


def _group_indian(integer_part: str) -> str:
    if len(integer_part) <= 3:
        return integer_part
    head, tail = integer_part[:-3], integer_part[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_amount(amount: Any) -> str:
    """Two-decimal amount with Indian digit grouping, e.g. 1,23,456.78"""
    value = round2(amount)
    sign = "-" if value < 0 else ""
    integer_part, fraction = f"{abs(value):.2f}".split(".")
    return f"{sign}{_group_indian(integer_part)}.{fraction}"


def format_currency(amount: Any) -> str:
    formatted = format_amount(amount)
    if formatted.startswith("-"):
        return f"-₹{formatted[1:]}"
    return f"₹{formatted}"


def is_valid_integer(value: Any) -> bool:
    num = parse_number(value)
    return num.is_integer() and num >= 1


def format_phone(phone: str) -> str:
    if not phone:
        return ""
    cleaned = re.sub(r"\D", "", phone)
    if len(cleaned) == 10:
        return f"{cleaned[:3]}-{cleaned[3:6]}-{cleaned[6:]}"
    return phone


def truncate_text(text: str, max_length: int = 50) -> str:
    if not text:
        return ""
    return f"{text[:max_length]}..." if len(text) > max_length else text


def calculate_percentage_change(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return ((current - previous) / previous) * 100


def format_percentage(value: float) -> str:
    return f"{value:.1f}%"
