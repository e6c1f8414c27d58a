from fastapi import APIRouter, Depends, Query
from typing import List, Optional, Any
from datetime import datetime, timezone

from oilmart.models.models import CreditPaymentCreate, CustomerCredit
from oilmart.core.database import db_error, pg_cursor, row_to_dict, rows_to_dicts
from oilmart.core.logging import logger
from oilmart.core.exceptions import AppError, NotFoundError, ValidationFailed
from oilmart.core.security import CurrentUser, get_current_user, require_staff
from oilmart.services import credit
from oilmart.utils.validation import normalize_phone

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/", response_model=List[CustomerCredit])
async def list_customer_credits(
    search: Optional[str] = None,
    outstanding_only: bool = Query(True),
    _: CurrentUser = Depends(require_staff),
):
    """Customer credit accounts, largest balance first."""
    logger.info("GET /api/credits | search=%s outstanding_only=%s", search, outstanding_only)
    where = []
    params: List[Any] = []
    if search:
        where.append("(customer_name ILIKE %s OR customer_phone LIKE %s)")
        params.extend([f"%{search}%", f"%{search}%"])
    if outstanding_only:
        where.append("total_credit > 0")
    sql = "SELECT * FROM customer_credits"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY total_credit DESC, customer_name ASC"
    try:
        with pg_cursor() as cur:
            cur.execute(sql, params)
            return rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to fetch customer credits: %s", e)
        raise db_error("Failed to fetch customer credits", e)

@router.get("/me", response_model=CustomerCredit)
async def get_my_credit(user: CurrentUser = Depends(get_current_user)):
    """The caller's own credit account, looked up by the phone on their profile."""
    logger.info("GET /api/credits/me | user=%s", user.id)
    try:
        with pg_cursor() as cur:
            cur.execute("SELECT name, phone FROM users WHERE id = %s", (user.id,))
            account = row_to_dict(cur)
            if not account:
                raise NotFoundError("User not found")
            try:
                phone = normalize_phone(account["phone"])
            except ValidationFailed:
                phone = None
            if phone:
                try:
                    return credit.fetch_customer_credit(cur, phone)
                except NotFoundError:
                    pass
        # No purchases on credit yet
        return CustomerCredit(
            customer_phone=account["phone"],
            customer_name=account["name"],
            total_credit=0,
            last_updated=datetime.now(timezone.utc),
        )
    except NotFoundError:
        logger.error("User %s not found", user.id)
        raise
    except Exception as e:
        logger.error("Failed to fetch credit for user %s: %s", user.id, e)
        raise db_error("Failed to fetch credit", e)

@router.get("/{phone}", response_model=CustomerCredit)
async def get_customer_credit(phone: str, _: CurrentUser = Depends(require_staff)):
    logger.info("GET /api/credits/%s", phone)
    phone = normalize_phone(phone)
    try:
        with pg_cursor() as cur:
            return credit.fetch_customer_credit(cur, phone)
    except NotFoundError:
        logger.error("No credit account for %s", phone)
        raise
    except Exception as e:
        logger.error("Failed to fetch credit for %s: %s", phone, e)
        raise db_error("Failed to fetch credit", e)

@router.post("/{phone}/payments", response_model=CustomerCredit)
async def record_payment(phone: str, payload: CreditPaymentCreate, user: CurrentUser = Depends(require_staff)):
    """Reduce a customer's running credit by money received."""
    logger.info("POST /api/credits/%s/payments | amount=%s", phone, payload.amount)
    try:
        with pg_cursor(commit=True) as cur:
            return credit.record_credit_payment(cur, phone, payload.amount, payload.description, user)
    except AppError as e:
        logger.error("Credit payment for %s rejected: %s", phone, e.message)
        raise
    except Exception as e:
        logger.error("Failed to record credit payment for %s: %s", phone, e)
        raise db_error("Failed to record credit payment", e)
