from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "RewardStore"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/rewardstore"

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// URLs; asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    db_pool_size: int = 5
    db_pool_timeout_seconds: float = 30.0

    # "local": points ledger lives in the same database, purchases are one transaction.
    # "remote": ledger is an external HTTP service, purchases run as a compensated saga.
    ledger_mode: Literal["local", "remote"] = "local"
    ledger_url: str = "http://localhost:8081"
    ledger_timeout_seconds: float = 10.0

    cors_origins: list[str] = ["*"]

    # Observability
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"


settings = Settings()


# Prefix for ledger reasons written by redemptions: "redeem_<item name>"
REDEEM_REASON_PREFIX = "redeem_"
