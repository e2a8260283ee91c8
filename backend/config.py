# backend/config.py
from pydantic_settings import BaseSettings
from typing import ClassVar
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite:///./inventory_ledger.db"

    FRONTEND_URL: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"

    # Analytics windows and thresholds
    ANALYTICS_WINDOW_DAYS: int = 30
    ANALYTICS_TOP_N: int = 5
    REORDER_HORIZON_DAYS: int = 15
    REORDER_SENTINEL_DAYS: int = 999
    # Cost basis used when a product has no explicit cost
    DEFAULT_COST_RATIO: float = 0.5

    # How many times a conflicting stock transaction is replayed
    TX_MAX_RETRIES: int = 3

    class Config:
        env_file: ClassVar[str] = str(env_path)
        extra: ClassVar[str] = "ignore"

settings = Settings()
