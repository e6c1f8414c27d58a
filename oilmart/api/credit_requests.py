from fastapi import APIRouter, Depends, Query
from typing import List, Optional, Any

from oilmart.models.models import (
    CreditRequest,
    CreditRequestApprove,
    CreditRequestCreate,
    CreditRequestReject,
    CreditRequestStatus,
    UserRole,
)
from oilmart.core.database import db_error, pg_cursor, rows_to_dicts
from oilmart.core.logging import logger
from oilmart.core.exceptions import AppError, NotFoundError
from oilmart.core.security import CurrentUser, get_current_user, require_owner
from oilmart.services import credit, ledger

router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/", response_model=List[CreditRequest])
async def list_credit_requests(
    status: Optional[CreditRequestStatus] = None,
    limit: int = Query(100, ge=1, le=1000),
    user: CurrentUser = Depends(get_current_user),
):
    """Customers see their own requests; staff and owners see all of them."""
    logger.info("GET /api/credit-requests | status=%s user=%s", status.value if status else None, user.id)
    where = []
    params: List[Any] = []
    if user.role == UserRole.CUSTOMER:
        where.append("customer_id = %s")
        params.append(user.id)
    if status:
        where.append("status = %s")
        params.append(status.value)
    sql = "SELECT * FROM credit_requests"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY created_at DESC, id DESC LIMIT %s"
    params.append(limit)
    try:
        with pg_cursor() as cur:
            cur.execute(sql, params)
            return rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to fetch credit requests: %s", e)
        raise db_error("Failed to fetch credit requests", e)

@router.get("/{request_id}", response_model=CreditRequest)
async def get_credit_request(request_id: int, user: CurrentUser = Depends(get_current_user)):
    logger.info("GET /api/credit-requests/%s", request_id)
    try:
        with pg_cursor() as cur:
            request = credit.fetch_credit_request(cur, request_id)
        if user.role == UserRole.CUSTOMER and request["customer_id"] != user.id:
            raise NotFoundError("Credit request not found")
        return request
    except NotFoundError:
        logger.error("Credit request %s not found", request_id)
        raise
    except Exception as e:
        logger.error("Failed to fetch credit request %s: %s", request_id, e)
        raise db_error("Failed to fetch credit request", e)

@router.post("/", response_model=CreditRequest, status_code=201)
async def create_credit_request(payload: CreditRequestCreate, user: CurrentUser = Depends(get_current_user)):
    logger.info(
        "POST /api/credit-requests | user=%s amount=%s draft=%s",
        user.id, payload.requested_amount, payload.draft,
    )
    try:
        with pg_cursor(commit=True) as cur:
            return credit.create_credit_request(cur, payload, user)
    except AppError as e:
        logger.error("Credit request rejected: %s", e.message)
        raise
    except Exception as e:
        logger.error("Failed to create credit request: %s", e)
        raise db_error("Failed to create credit request", e)

@router.post("/{request_id}/submit", response_model=CreditRequest)
async def submit_credit_request(request_id: int, user: CurrentUser = Depends(get_current_user)):
    logger.info("POST /api/credit-requests/%s/submit", request_id)
    try:
        with pg_cursor(commit=True) as cur:
            return credit.submit_credit_request(cur, request_id, user)
    except AppError as e:
        logger.error("Submit of credit request %s rejected: %s", request_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to submit credit request %s: %s", request_id, e)
        raise db_error("Failed to submit credit request", e)

@router.post("/{request_id}/approve", response_model=CreditRequest)
async def approve_credit_request(
    request_id: int,
    payload: Optional[CreditRequestApprove] = None,
    owner: CurrentUser = Depends(require_owner),
):
    logger.info("POST /api/credit-requests/%s/approve | owner=%s", request_id, owner.id)
    comments = payload.owner_comments if payload else None
    try:
        with pg_cursor(commit=True) as cur:
            return credit.approve_credit_request(cur, request_id, owner, comments)
    except AppError as e:
        logger.error("Approval of credit request %s rejected: %s", request_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to approve credit request %s: %s", request_id, e)
        raise db_error("Failed to approve credit request", e)

@router.post("/{request_id}/reject", response_model=CreditRequest)
async def reject_credit_request(
    request_id: int,
    payload: CreditRequestReject,
    owner: CurrentUser = Depends(require_owner),
):
    logger.info("POST /api/credit-requests/%s/reject | owner=%s", request_id, owner.id)
    reason = ledger.require_rejection_reason(payload.rejection_reason)
    try:
        with pg_cursor(commit=True) as cur:
            return credit.reject_credit_request(
                cur, request_id, reason, owner, payload.owner_comments
            )
    except AppError as e:
        logger.error("Rejection of credit request %s refused: %s", request_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to reject credit request %s: %s", request_id, e)
        raise db_error("Failed to reject credit request", e)
