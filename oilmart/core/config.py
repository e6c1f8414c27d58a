import os
from typing import List
from pydantic_settings import BaseSettings
from pathlib import Path

class Settings(BaseSettings):
    # Database configuration
    database_url: str = os.getenv("DATABASE_URL", "")
    db_pool_min: int = int(os.getenv("DB_POOL_MIN", "1"))
    db_pool_max: int = int(os.getenv("DB_POOL_MAX", "5"))
    auto_create_schema: bool = os.getenv("AUTO_CREATE_SCHEMA", "false").lower() in ("1", "true", "yes")

    # Security
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-here")
    algorithm: str = os.getenv("ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
    refresh_token_expire_days: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "14"))

    # Ledger rules
    pending_payment_due_days: int = int(os.getenv("PENDING_PAYMENT_DUE_DAYS", "30"))
    due_soon_days: int = int(os.getenv("DUE_SOON_DAYS", "7"))
    amount_tolerance: float = float(os.getenv("AMOUNT_TOLERANCE", "0.01"))
    # Day, week and month boundaries are cut in the shop's local time
    shop_timezone: str = os.getenv("SHOP_TIMEZONE", "Asia/Kolkata")

    # Printed on bills and receipts
    store_name: str = os.getenv("STORE_NAME", "Raja Trading Company")
    store_tagline: str = os.getenv("STORE_TAGLINE", "Premium Quality Oils Since 1970")
    store_phone: str = os.getenv("STORE_PHONE", "+91 98765 43210")
    store_address: str = os.getenv("STORE_ADDRESS", "123 Bazaar Street, City")

    # API configuration
    api_prefix: str = "/api"
    project_name: str = "Oil Mart Retail"
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    class Config:
        # Load the project .env regardless of current working directory
        env_file = str(Path(__file__).resolve().parents[2] / ".env")

settings = Settings()
