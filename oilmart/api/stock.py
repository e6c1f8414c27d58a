from fastapi import APIRouter, Depends, Query
from typing import List, Optional, Any

from oilmart.models.models import (
    StockAdjustment,
    StockAdjustmentCreate,
    TransferRequest,
    TransferRequestCreate,
    TransferStatus,
    TransferStatusUpdate,
)
from oilmart.core.database import db_error, pg_cursor, rows_to_dicts
from oilmart.core.logging import logger
from oilmart.core.exceptions import AppError, PermissionDeniedError
from oilmart.core.security import CurrentUser, require_staff
from oilmart.services import transactions

router = APIRouter(dependencies=[Depends(require_staff)])


@router.get("/adjustments", response_model=List[StockAdjustment])
async def list_adjustments(
    product_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=1000),
):
    logger.info("GET /api/stock/adjustments | product=%s limit=%s", product_id, limit)
    sql = "SELECT * FROM stock_adjustments"
    params: List[Any] = []
    if product_id:
        sql += " WHERE product_id = %s"
        params.append(product_id)
    sql += " ORDER BY created_at DESC, id DESC LIMIT %s"
    params.append(limit)
    try:
        with pg_cursor() as cur:
            cur.execute(sql, params)
            return rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to fetch stock adjustments: %s", e)
        raise db_error("Failed to fetch stock adjustments", e)

@router.post("/adjustments", response_model=StockAdjustment, status_code=201)
async def create_adjustment(payload: StockAdjustmentCreate, user: CurrentUser = Depends(require_staff)):
    logger.info(
        "POST /api/stock/adjustments | product=%s type=%s qty=%s reason=%s",
        payload.product_id, payload.adjustment_type.value, payload.quantity, payload.reason_code.value,
    )
    try:
        with pg_cursor(commit=True) as cur:
            return transactions.adjust_stock(cur, payload, user)
    except AppError as e:
        logger.error("Stock adjustment rejected: %s", e.message)
        raise
    except Exception as e:
        logger.error("Failed to adjust stock: %s", e)
        raise db_error("Failed to adjust stock", e)

@router.get("/transfers", response_model=List[TransferRequest])
async def list_transfers(status: Optional[TransferStatus] = None):
    logger.info("GET /api/stock/transfers | status=%s", status.value if status else None)
    sql = "SELECT * FROM transfer_requests"
    params: List[Any] = []
    if status:
        sql += " WHERE status = %s"
        params.append(status.value)
    sql += " ORDER BY created_at DESC, id DESC"
    try:
        with pg_cursor() as cur:
            cur.execute(sql, params)
            return rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to fetch transfer requests: %s", e)
        raise db_error("Failed to fetch transfer requests", e)

@router.post("/transfers", response_model=TransferRequest, status_code=201)
async def create_transfer(payload: TransferRequestCreate, user: CurrentUser = Depends(require_staff)):
    logger.info(
        "POST /api/stock/transfers | product=%s qty=%s %s -> %s",
        payload.product_id, payload.quantity, payload.from_warehouse, payload.to_warehouse,
    )
    try:
        with pg_cursor(commit=True) as cur:
            return transactions.create_transfer_request(cur, payload, user)
    except AppError as e:
        logger.error("Transfer request rejected: %s", e.message)
        raise
    except Exception as e:
        logger.error("Failed to create transfer request: %s", e)
        raise db_error("Failed to create transfer request", e)

@router.patch("/transfers/{transfer_id}", response_model=TransferRequest)
async def update_transfer(
    transfer_id: int, payload: TransferStatusUpdate, user: CurrentUser = Depends(require_staff)
):
    logger.info("PATCH /api/stock/transfers/%s | status=%s", transfer_id, payload.status.value)
    # Approving or rejecting is the owner's call; staff move approved stock
    if payload.status in (TransferStatus.APPROVED, TransferStatus.REJECTED) and not user.is_owner:
        raise PermissionDeniedError("Owner access required to approve or reject transfers")
    try:
        with pg_cursor(commit=True) as cur:
            return transactions.update_transfer_status(cur, transfer_id, payload.status, user, payload.notes)
    except AppError as e:
        logger.error("Transfer %s update rejected: %s", transfer_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to update transfer %s: %s", transfer_id, e)
        raise db_error("Failed to update transfer", e)
