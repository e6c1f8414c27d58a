import re
from typing import Any, Dict, Mapping

from oilmart.core.exceptions import ValidationFailed

VALIDATION_PATTERNS = {
    "phone": re.compile(r"^[+]?[(]?[0-9]{3}[)]?[-\s.]?[0-9]{3}[-\s.]?[0-9]{4}$"),
    "email": re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"),
    # integers only, starting from 1
    "quantity": re.compile(r"^[1-9]\d*$"),
    "amount": re.compile(r"^\d+(\.\d{1,2})?$"),
    "name": re.compile(r"^[A-Za-z][A-Za-z ]{1,49}$"),
}


def validate_phone(phone: str) -> bool:
    return bool(VALIDATION_PATTERNS["phone"].match(phone or ""))


def validate_email(email: str) -> bool:
    return bool(VALIDATION_PATTERNS["email"].match(email or ""))


def validate_quantity(quantity: str) -> bool:
    return bool(VALIDATION_PATTERNS["quantity"].match(quantity or "")) and float(quantity) > 0


def validate_amount(amount: str) -> bool:
    return bool(VALIDATION_PATTERNS["amount"].match(amount or "")) and float(amount) > 0


def validate_name(name: str) -> bool:
    return bool(VALIDATION_PATTERNS["name"].match((name or "").strip()))


def validate_required(value: str) -> bool:
    return len((value or "").strip()) > 0


def validate_min_length(value: str, min_length: int) -> bool:
    return len((value or "").strip()) >= min_length


def validate_max_length(value: str, max_length: int) -> bool:
    return len((value or "").strip()) <= max_length


def validate_numeric_range(value: float, min_value: float, max_value: float) -> bool:
    return min_value <= value <= max_value


def normalize_phone(phone: str) -> str:
    """Return the 10-digit form used to key customer ledgers."""
    phone = (phone or "").strip()
    if not validate_phone(phone):
        raise ValidationFailed("Please enter a valid 10-digit phone number", extra={"field": "phone"})
    return re.sub(r"\D", "", phone)


def get_validation_errors(data: Mapping[str, Any]) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    if data.get("name") and not validate_name(data["name"]):
        errors["name"] = "Name must be 2-50 characters and contain only letters and spaces"

    if data.get("phone") and not validate_phone(data["phone"]):
        errors["phone"] = "Please enter a valid 10-digit phone number"

    if data.get("email") and not validate_email(data["email"]):
        errors["email"] = "Please enter a valid email address"

    if data.get("quantity") and not validate_quantity(str(data["quantity"])):
        errors["quantity"] = "Please enter a valid quantity greater than 0"

    if data.get("amount") and not validate_amount(str(data["amount"])):
        errors["amount"] = "Please enter a valid amount greater than 0"

    return errors
