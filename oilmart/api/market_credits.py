from fastapi import APIRouter, Depends
from typing import List, Optional
from pydantic import BaseModel

from oilmart.models.models import (
    Collection,
    CollectionCreate,
    CustomerBalance,
    CustomerHistory,
    MarketCredit,
    MarketCreditCreate,
    MarketCreditSummary,
    MarketCreditUpdate,
)
from oilmart.core.database import db_error, pg_cursor, rows_to_dicts
from oilmart.core.logging import logger
from oilmart.core.exceptions import AppError, NotFoundError
from oilmart.core.security import CurrentUser, require_owner
from oilmart.services import credit
from oilmart.services.exports import MARKET_CREDIT_HEADERS, csv_response, market_credit_rows, render_csv
from oilmart.services.reporting import customer_balance, group_collections, market_credit_summary
from oilmart.utils.validation import normalize_phone

router = APIRouter(dependencies=[Depends(require_owner)])


class PaidUpdate(BaseModel):
    paid: bool


@router.get("/", response_model=List[MarketCredit])
async def list_market_credits(search: Optional[str] = None, paid: Optional[bool] = None):
    logger.info("GET /api/market-credits | search=%s paid=%s", search, paid)
    try:
        with pg_cursor() as cur:
            credits = credit.list_market_credits(cur)
    except Exception as e:
        logger.error("Failed to fetch market credits: %s", e)
        raise db_error("Failed to fetch market credits", e)
    if search:
        needle = search.lower()
        credits = [c for c in credits if needle in c["customer_name"].lower() or search in c["customer_phone"]]
    if paid is not None:
        credits = [c for c in credits if c["paid"] == paid]
    return credits

@router.get("/summary", response_model=MarketCreditSummary)
async def get_summary():
    logger.info("GET /api/market-credits/summary")
    try:
        with pg_cursor() as cur:
            cur.execute("SELECT id, customer_phone, amount, paid FROM market_credits")
            credits = rows_to_dicts(cur)
            collections = credit.fetch_collections(cur, [c["id"] for c in credits])
    except Exception as e:
        logger.error("Failed to compute market credit summary: %s", e)
        raise db_error("Failed to compute market credit summary", e)
    summary = market_credit_summary(credits, group_collections(collections))
    if summary["negative_balances"]:
        logger.warning("Market credits with negative outstanding: %s", summary["negative_balances"])
    return summary

@router.get("/export")
async def export_market_credits():
    logger.info("GET /api/market-credits/export")
    try:
        with pg_cursor() as cur:
            credits = credit.list_market_credits(cur)
    except Exception as e:
        logger.error("Failed to export market credits: %s", e)
        raise db_error("Failed to export market credits", e)
    return csv_response("market-credits", render_csv(MARKET_CREDIT_HEADERS, market_credit_rows(credits)))

@router.get("/customers/{phone}/balance", response_model=CustomerBalance)
async def get_customer_balance(phone: str):
    """Combined balance of every credit entry for one customer."""
    logger.info("GET /api/market-credits/customers/%s/balance", phone)
    phone = normalize_phone(phone)
    try:
        with pg_cursor() as cur:
            credits = credit.list_market_credits(cur, phone)
            collections = credit.fetch_collections(cur, [c["id"] for c in credits])
    except Exception as e:
        logger.error("Failed to compute balance for %s: %s", phone, e)
        raise db_error("Failed to compute customer balance", e)
    return customer_balance(credits, group_collections(collections), phone)

@router.get("/customers/{phone}/history", response_model=CustomerHistory)
async def get_customer_history(phone: str):
    logger.info("GET /api/market-credits/customers/%s/history", phone)
    phone = normalize_phone(phone)
    try:
        with pg_cursor() as cur:
            credits = credit.list_market_credits(cur, phone)
            collections = credit.fetch_collections(cur, [c["id"] for c in credits])
    except Exception as e:
        logger.error("Failed to fetch history for %s: %s", phone, e)
        raise db_error("Failed to fetch customer history", e)
    return {"credit_entries": credits, "collections": collections}

@router.post("/", response_model=MarketCredit, status_code=201)
async def create_market_credit(payload: MarketCreditCreate, owner: CurrentUser = Depends(require_owner)):
    logger.info(
        "POST /api/market-credits | customer=%s amount=%s initial=%s",
        payload.customer_phone, payload.amount, payload.collection_amount,
    )
    try:
        with pg_cursor(commit=True) as cur:
            return credit.create_market_credit(cur, payload, owner)
    except AppError as e:
        logger.error("Market credit rejected: %s", e.message)
        raise
    except Exception as e:
        logger.error("Failed to create market credit: %s", e)
        raise db_error("Failed to create market credit", e)

@router.get("/{credit_id}", response_model=MarketCredit)
async def get_market_credit(credit_id: int):
    logger.info("GET /api/market-credits/%s", credit_id)
    try:
        with pg_cursor() as cur:
            return credit.fetch_market_credit(cur, credit_id)
    except NotFoundError:
        logger.error("Market credit %s not found", credit_id)
        raise
    except Exception as e:
        logger.error("Failed to fetch market credit %s: %s", credit_id, e)
        raise db_error("Failed to fetch market credit", e)

@router.put("/{credit_id}", response_model=MarketCredit)
async def update_market_credit(credit_id: int, payload: MarketCreditUpdate):
    logger.info("PUT /api/market-credits/%s", credit_id)
    try:
        with pg_cursor(commit=True) as cur:
            return credit.update_market_credit(cur, credit_id, payload)
    except AppError as e:
        logger.error("Update of market credit %s rejected: %s", credit_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to update market credit %s: %s", credit_id, e)
        raise db_error("Failed to update market credit", e)

@router.patch("/{credit_id}/paid", response_model=MarketCredit)
async def set_paid(credit_id: int, payload: PaidUpdate):
    logger.info("PATCH /api/market-credits/%s/paid | paid=%s", credit_id, payload.paid)
    try:
        with pg_cursor(commit=True) as cur:
            return credit.set_market_credit_paid(cur, credit_id, payload.paid)
    except NotFoundError:
        logger.error("Market credit %s not found", credit_id)
        raise
    except Exception as e:
        logger.error("Failed to update market credit %s: %s", credit_id, e)
        raise db_error("Failed to update market credit", e)

@router.delete("/{credit_id}")
async def delete_market_credit(credit_id: int):
    logger.info("DELETE /api/market-credits/%s", credit_id)
    try:
        with pg_cursor(commit=True) as cur:
            credit.delete_market_credit(cur, credit_id)
        return {"message": "Market credit deleted successfully"}
    except NotFoundError:
        logger.error("Market credit %s not found for deletion", credit_id)
        raise
    except Exception as e:
        logger.error("Failed to delete market credit %s: %s", credit_id, e)
        raise db_error("Failed to delete market credit", e)

@router.get("/{credit_id}/collections", response_model=List[Collection])
async def get_collections(credit_id: int):
    logger.info("GET /api/market-credits/%s/collections", credit_id)
    try:
        with pg_cursor() as cur:
            credit.fetch_market_credit(cur, credit_id)
            return credit.fetch_collections(cur, [credit_id])
    except NotFoundError:
        logger.error("Market credit %s not found", credit_id)
        raise
    except Exception as e:
        logger.error("Failed to fetch collections for %s: %s", credit_id, e)
        raise db_error("Failed to fetch collections", e)

@router.post("/{credit_id}/collections", response_model=Collection, status_code=201)
async def add_collection(credit_id: int, payload: CollectionCreate, owner: CurrentUser = Depends(require_owner)):
    logger.info("POST /api/market-credits/%s/collections | amount=%s", credit_id, payload.amount)
    try:
        with pg_cursor(commit=True) as cur:
            return credit.add_collection(cur, credit_id, payload.amount, owner, payload.notes)
    except AppError as e:
        logger.error("Collection on %s rejected: %s", credit_id, e.message)
        raise
    except Exception as e:
        logger.error("Failed to add collection to %s: %s", credit_id, e)
        raise db_error("Failed to add collection", e)
