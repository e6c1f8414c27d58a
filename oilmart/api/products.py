from fastapi import APIRouter, Query, Depends
from typing import List, Optional, Any
from datetime import datetime, timezone
import psycopg2.errors

from oilmart.models.models import (
    InventorySummary,
    Product,
    ProductCategory,
    ProductCreate,
    ProductType,
    ProductUpdate,
)
from oilmart.core.database import db_error, insert_row, pg_cursor, row_to_dict, rows_to_dicts, update_row
from oilmart.core.logging import logger
from oilmart.core.exceptions import ConflictError, NotFoundError
from oilmart.core.security import CurrentUser, get_current_user, require_owner, require_staff
from oilmart.services.reporting import inventory_summary

router = APIRouter(dependencies=[Depends(get_current_user)])

# Storefront listing, readable without an account
catalog_router = APIRouter()


def _product_query(
    category: Optional[ProductCategory],
    product_type: Optional[ProductType],
    search: Optional[str],
    in_stock_only: bool = False,
):
    clauses = []
    params: List[Any] = []
    if category:
        clauses.append("category = %s")
        params.append(category.value)
    if product_type:
        clauses.append("type = %s")
        params.append(product_type.value)
    if search:
        clauses.append("(name ILIKE %s OR description ILIKE %s)")
        like = f"%{search}%"
        params.extend([like, like])
    if in_stock_only:
        clauses.append("stock > 0")
    sql = "SELECT * FROM products"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    return sql, params


@catalog_router.get("/", response_model=List[Product])
async def get_catalog(
    category: Optional[ProductCategory] = None,
    search: Optional[str] = None,
):
    logger.info("GET /api/catalog | category=%s search=%s", category.value if category else None, search)
    sql, params = _product_query(category, None, search, in_stock_only=True)
    try:
        with pg_cursor() as cur:
            cur.execute(sql + " ORDER BY name ASC", params)
            return rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to fetch catalog: %s", e)
        raise db_error("Failed to fetch catalog", e)


@router.get("/", response_model=List[Product])
async def get_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    category: Optional[ProductCategory] = None,
    product_type: Optional[ProductType] = None,
    search: Optional[str] = None
):
    """Get all products with optional filtering"""
    logger.info(
        "GET /api/products | skip=%s limit=%s category=%s type=%s search=%s",
        skip,
        limit,
        category.value if category else None,
        product_type.value if product_type else None,
        search,
    )
    sql, params = _product_query(category, product_type, search)
    sql += " ORDER BY id ASC LIMIT %s OFFSET %s"
    params.extend([limit, skip])

    try:
        with pg_cursor() as cur:
            cur.execute(sql, params)
            return rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to fetch products: %s", e)
        raise db_error("Failed to fetch products", e)

@router.get("/low-stock", response_model=List[Product])
async def get_low_stock_products(_: CurrentUser = Depends(require_staff)):
    """Products at or below their low-stock alert level"""
    logger.info("GET /api/products/low-stock")
    try:
        with pg_cursor() as cur:
            cur.execute("SELECT * FROM products WHERE stock <= lowstock_alert ORDER BY stock ASC, name ASC")
            return rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to fetch low stock products: %s", e)
        raise db_error("Failed to fetch low stock products", e)

@router.get("/summary", response_model=InventorySummary)
async def get_inventory_summary(_: CurrentUser = Depends(require_staff)):
    logger.info("GET /api/products/summary")
    try:
        with pg_cursor() as cur:
            cur.execute("SELECT stock, lowstock_alert, base_price FROM products")
            products = rows_to_dicts(cur)
    except Exception as e:
        logger.error("Failed to compute inventory summary: %s", e)
        raise db_error("Failed to compute inventory summary", e)
    return inventory_summary(products)

@router.get("/{product_id}", response_model=Product)
async def get_product(product_id: int):
    """Get a specific product by ID"""
    logger.info("GET /api/products/%s", product_id)
    try:
        with pg_cursor() as cur:
            cur.execute("SELECT * FROM products WHERE id = %s", (product_id,))
            product = row_to_dict(cur)
            if not product:
                raise NotFoundError("Product not found")
            return product
    except NotFoundError:
        logger.error("Product %s not found", product_id)
        raise
    except Exception as e:
        logger.error("Failed to fetch product %s: %s", product_id, e)
        raise db_error("Failed to fetch product", e)

@router.post("/", response_model=Product, status_code=201)
async def create_product(product: ProductCreate, owner: CurrentUser = Depends(require_owner)):
    """Create a new product"""
    logger.info("POST /api/products - creating product %s", product.name)
    data = product.model_dump()
    data["name"] = data["name"].strip()
    data["created_by"] = owner.id
    try:
        with pg_cursor(commit=True) as cur:
            row = insert_row(cur, "products", data)
        logger.info("Product created id=%s", row["id"])
        return row
    except Exception as e:
        logger.error("Failed to create product: %s", e)
        raise db_error("Failed to create product", e)

@router.put("/{product_id}", response_model=Product)
async def update_product(product_id: int, product: ProductUpdate, _: CurrentUser = Depends(require_owner)):
    """Update a product's catalogue fields. Stock moves only through stock operations."""
    logger.info("PUT /api/products/%s", product_id)
    update_data = product.model_dump(exclude_unset=True, exclude_none=True)
    try:
        with pg_cursor(commit=True) as cur:
            cur.execute("SELECT * FROM products WHERE id = %s FOR UPDATE", (product_id,))
            current = row_to_dict(cur)
            if not current:
                raise NotFoundError("Product not found")
            if not update_data:
                return current
            update_data["updated_at"] = datetime.now(timezone.utc)
            row = update_row(cur, "products", product_id, update_data)
            cur.execute("UPDATE products SET version = version + 1 WHERE id = %s RETURNING version", (product_id,))
            row["version"] = cur.fetchone()[0]
        logger.info("Product %s updated", product_id)
        return row
    except NotFoundError:
        logger.error("Product %s not found for update", product_id)
        raise
    except Exception as e:
        logger.error("Failed to update product %s: %s", product_id, e)
        raise db_error("Failed to update product", e)

@router.delete("/{product_id}")
async def delete_product(product_id: int, _: CurrentUser = Depends(require_owner)):
    """Delete a product"""
    logger.info("DELETE /api/products/%s", product_id)
    try:
        with pg_cursor(commit=True) as cur:
            cur.execute("DELETE FROM products WHERE id = %s RETURNING id", (product_id,))
            deleted = cur.fetchone()
            if not deleted:
                raise NotFoundError("Product not found")
        logger.info("Product %s deleted", product_id)
        return {"message": "Product deleted successfully"}
    except NotFoundError:
        logger.error("Product %s not found for deletion", product_id)
        raise
    except psycopg2.errors.ForeignKeyViolation:
        logger.error("Product %s has sales history and cannot be deleted", product_id)
        raise ConflictError("Product has sales, bills or orders and cannot be deleted")
    except Exception as e:
        logger.error("Failed to delete product %s: %s", product_id, e)
        raise db_error("Failed to delete product", e)
