from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from oilmart.api import (
    admin,
    auth,
    bills,
    credit_requests,
    credits,
    dashboard,
    market_credits,
    orders,
    pending_payments,
    products,
    sales,
    stock,
)
from oilmart.core.config import settings
from oilmart.core.database import close_pg_pool, init_schema
from oilmart.core.logging import logger
from oilmart.core.exceptions import register_exception_handlers


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_schema:
        init_schema()
    logger.info("%s API started", settings.project_name)
    yield
    close_pg_pool()
    logger.info("%s API stopped", settings.project_name)


app = FastAPI(
    title="Oil Mart Retail API",
    description="Point of sale, billing, inventory, orders and credit tracking for an edible-oil trading shop",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register exception handlers
register_exception_handlers(app)

# Include routers
prefix = settings.api_prefix
app.include_router(auth.router, prefix=f"{prefix}/auth", tags=["auth"])
app.include_router(admin.router, prefix=f"{prefix}/admin", tags=["admin"])
app.include_router(products.catalog_router, prefix=f"{prefix}/catalog", tags=["products"])
app.include_router(products.router, prefix=f"{prefix}/products", tags=["products"])
app.include_router(sales.router, prefix=f"{prefix}/sales", tags=["sales"])
app.include_router(bills.router, prefix=f"{prefix}/bills", tags=["bills"])
app.include_router(credits.router, prefix=f"{prefix}/credits", tags=["credits"])
app.include_router(market_credits.router, prefix=f"{prefix}/market-credits", tags=["market-credits"])
app.include_router(credit_requests.router, prefix=f"{prefix}/credit-requests", tags=["credit-requests"])
app.include_router(pending_payments.router, prefix=f"{prefix}/pending-payments", tags=["pending-payments"])
app.include_router(stock.router, prefix=f"{prefix}/stock", tags=["stock"])
app.include_router(orders.router, prefix=f"{prefix}/orders", tags=["orders"])
app.include_router(dashboard.router, prefix=f"{prefix}/dashboard", tags=["dashboard"])

@app.get("/")
async def root():
    logger.info("Root endpoint hit")
    return {"message": "Oil Mart Retail API"}

@app.get("/health")
async def health_check():
    logger.info("Health check requested")
    return {"status": "healthy"}
