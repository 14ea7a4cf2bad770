"""Configuration settings for jobledger hosts."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jobledger.types import NULL_IDENTITY


class Settings(BaseSettings):
    """Defaults loaded from the environment (``JOBLEDGER_*``) or ``.env``.

    These seed a new ledger. Once a ledger exists its admin and cap live in
    storage and only change through the admin operations.
    """

    # Ledger
    max_applications_per_job: int = 10
    null_identity: str = NULL_IDENTITY

    # Hosting
    db_path: str = "jobledger.db"
    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_prefix="JOBLEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars not in model
    )

    @field_validator("max_applications_per_job")
    @classmethod
    def cap_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_applications_per_job must be positive")
        return v

    @field_validator("null_identity")
    @classmethod
    def null_identity_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("null_identity cannot be empty")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
