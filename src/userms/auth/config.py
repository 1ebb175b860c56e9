"""
Configuration for the identity core.

Settings are read from ``USERMS_*`` environment variables (or a ``.env``
file). Every component also takes explicit arguments, so settings are only
the defaults used when wiring the service together.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")


class Settings(BaseSettings):
    """Identity service settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="USERMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Persistence
    database_path: Path = Path("data/users.db")
    store_retry_attempts: int = Field(default=3, ge=0)
    store_retry_delay: float = Field(default=0.05, ge=0)

    # Tokens
    jwt_secret_key: str = "dev-jwt-secret-change-me-before-deploying-anywhere"
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = Field(default=24 * 60 * 60, gt=0)
    refresh_grace_seconds: int = Field(default=24 * 60 * 60, ge=0)
    near_expiry_seconds: int = Field(default=30 * 60, ge=0)

    # Password hashing
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @field_validator("jwt_algorithm")
    @classmethod
    def _hmac_only(cls, value: str) -> str:
        value = value.upper()
        if value not in HMAC_ALGORITHMS:
            raise ValueError(f"jwt_algorithm must be one of {', '.join(HMAC_ALGORITHMS)}")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
