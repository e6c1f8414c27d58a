from fastapi import APIRouter, Depends, Query
from typing import List, Optional, Any

from oilmart.models.models import (
    Order,
    OrderCreate,
    OrderPlaced,
    OrderStatus,
    OrderStatusUpdate,
    UserRole,
)
from oilmart.core.database import db_error, pg_cursor, rows_to_dicts
from oilmart.core.logging import logger
from oilmart.core.exceptions import AppError, NotFoundError
from oilmart.core.security import CurrentUser, get_current_user, require_roles, require_staff
from oilmart.services import transactions

router = APIRouter(dependencies=[Depends(get_current_user)])

require_customer = require_roles(UserRole.CUSTOMER)


@router.post("/", response_model=OrderPlaced, status_code=201)
async def place_order(payload: OrderCreate, user: CurrentUser = Depends(require_customer)):
    """Place an order from the cart. Credit orders open a credit request for approval."""
    logger.info(
        "POST /api/orders | customer=%s items=%s method=%s",
        user.id, len(payload.items), payload.payment_method.value,
    )
    try:
        with pg_cursor(commit=True) as cur:
            order, credit_request = transactions.place_order(cur, payload, user)
        return {"order": order, "credit_request": credit_request}
    except AppError as e:
        logger.error("Order rejected: %s", e.message)
        raise
    except Exception as e:
        logger.error("Failed to place order: %s", e)
        raise db_error("Failed to place order", e)

@router.get("/", response_model=List[Order])
async def list_orders(
    status: Optional[OrderStatus] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    user: CurrentUser = Depends(get_current_user),
):
    """Customers see their own order history; staff and owners see every order."""
    logger.info("GET /api/orders | status=%s user=%s", status.value if status else None, user.id)
    where = []
    params: List[Any] = []
    if user.role == UserRole.CUSTOMER:
        where.append("customer_id = %s")
        params.append(user.id)
    if status:
        where.append("status = %s")
        params.append(status.value)
    sql = "SELECT * FROM orders"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY created_at DESC, id DESC LIMIT %s OFFSET %s"
    params.extend([limit, skip])
    try:
        with pg_cursor() as cur:
            cur.execute(sql, params)
            orders = rows_to_dicts(cur)
            transactions.attach_order_items(cur, orders)
        return orders
    except Exception as e:
        logger.error("Failed to fetch orders: %s", e)
        raise db_error("Failed to fetch orders", e)

@router.get("/{order_id}", response_model=Order)
async def get_order(order_id: int, user: CurrentUser = Depends(get_current_user)):
    logger.info("GET /api/orders/%s", order_id)
    try:
        with pg_cursor() as cur:
            order = transactions.fetch_order(cur, order_id)
        if user.role == UserRole.CUSTOMER and order["customer_id"] != user.id:
            raise NotFoundError("Order not found")
        return order
    except NotFoundError:
        logger.error("Order %s not found", order_id)
        raise
    except Exception as e:
        logger.error("Failed to fetch order %s: %s", order_id, e)
        raise db_error("Failed to fetch order", e)

@router.patch("/{order_id}/status", response_model=Order)
async def update_order_status(
    order_id: int, payload: OrderStatusUpdate, user: CurrentUser = Depends(require_staff)
):
    logger.info("PATCH /api/orders/%s/status | status=%s", order_id, payload.status.value)
    try:
        with pg_cursor(commit=True) as cur:
            return transactions.update_order_status(cur, order_id, payload.status, user)
    except AppError as e:
        logger.error("Order %s status change rejected: %s", order_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to update order %s: %s", order_id, e)
        raise db_error("Failed to update order", e)

@router.post("/{order_id}/deliver", response_model=Order)
async def deliver_order(order_id: int, user: CurrentUser = Depends(require_staff)):
    """Hand the order over and take every line out of stock."""
    logger.info("POST /api/orders/%s/deliver", order_id)
    try:
        with pg_cursor(commit=True) as cur:
            return transactions.deliver_order(cur, order_id, user)
    except AppError as e:
        logger.error("Delivery of order %s rejected: %s", order_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to deliver order %s: %s", order_id, e)
        raise db_error("Failed to deliver order", e)
