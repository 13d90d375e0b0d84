from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Coine Wallet API"
    database_url: str = "sqlite:///coine_wallet.db"
    database_timeout_seconds: float = 5.0
    log_level: str = "INFO"

    # Amounts are integer minor units (cents).
    initial_balance: int = 1_000_000
    min_transfer_amount: int = 1
    max_transfer_amount: int = 100_000_000
    low_balance_threshold: int = 100_000

    max_conflict_retries: int = 5
    idempotency_retention_hours: int = 24
    admin_token: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="WALLET_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
