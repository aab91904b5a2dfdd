"""
Configuration for the wallet ledger.

Uses pydantic-settings; every value can be overridden through a ``WALLET_``
prefixed environment variable or a ``.env`` file.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WalletSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WALLET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Deployment label attached to log output"
    )
    database_url: str = Field(
        default="sqlite:///./wallet.db",
        description="SQLAlchemy URL of the ledger store"
    )
    lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long a unit waits for a contended lock before failing as transient"
    )
    history_limit: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Maximum number of transactions returned per page"
    )
    echo_sql: bool = Field(
        default=False,
        description="Echo SQL statements (debugging only)"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )
    log_json: bool = Field(
        default=False,
        description="Render logs as JSON lines instead of console output"
    )

    @field_validator("log_level")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> WalletSettings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload after changing the environment.
    """
    return WalletSettings()
