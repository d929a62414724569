from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(...)
    DB_POOL_MAX: int = Field(default=10, ge=1)
    DB_STATEMENT_TIMEOUT_MS: int = Field(default=5000, ge=100)

    # -----------------------
    # Mode switch
    # -----------------------
    # DEMO_MODE => simulated transfers, fixture-first extraction, force-approve allowed
    DEMO_MODE: bool = False
    TRANSFER_MODE: Literal["simulated", "real"] = "simulated"

    # -----------------------
    # Worker
    # -----------------------
    WORKER_TICK_SECONDS: float = Field(default=1.0, gt=0)
    WORKER_CONCURRENCY: int = Field(default=1, ge=1)
    WORKER_STALE_SECONDS: int = Field(default=300, ge=1)
    JOB_MAX_ATTEMPTS: int = Field(default=5, ge=1)

    # -----------------------
    # External calls / retries
    # -----------------------
    EXTERNAL_CALL_TIMEOUT_S: float = Field(default=10.0, gt=0)
    PAYOUT_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    PAYOUT_RETRY_BASE_DELAY_S: float = Field(default=1.0, ge=0)
    PAYOUT_RETRY_MAX_DELAY_S: float = Field(default=10.0, ge=0)

    # -----------------------
    # Risk engine
    # -----------------------
    RISK_APPROVAL_THRESHOLD: float = 0.5
    RISK_DEVICE_VELOCITY_CAP: int = Field(default=3, ge=1)
    RISK_FUZZY_WINDOW_DAYS: int = Field(default=7, ge=1)
    RISK_TIMEZONE: str = "UTC"

    ENABLE_QUALITY_SCORING: bool = False
    QUALITY_MIN_WORDS: int = 12
    QUALITY_SHORT_WORDS: int = 20
    QUALITY_BANNED_PHRASES: str = "this is a test,just testing,demo submission,test receipt"
    QUALITY_KEYWORDS: str = "dog,cat,pet,puppy,kitten,food,toy,treat"

    # -----------------------
    # Field extraction (OCR)
    # -----------------------
    OCR_SERVICE_URL: str = ""
    OCR_SERVICE_API_KEY: str = ""
    OCR_FIXTURES_PATH: str = "fixtures/receipts.json"
    RECEIPTS_DIR: str = "uploads"

    # -----------------------
    # Transfer rail
    # -----------------------
    TRANSFER_RAIL_URL: str = ""
    TRANSFER_RAIL_API_KEY: str = ""
    TRANSFER_CURRENCY: str = "USDC"

    # -----------------------
    # Admin
    # -----------------------
    ADMIN_API_KEY: str = Field(default="dev-admin-key-change-me", min_length=8)
    ADMIN_OVERRIDES_ENABLED: bool = False


def csv_setting(raw: str | None) -> list[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


settings = Settings()
