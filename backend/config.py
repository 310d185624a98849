"""
Application settings.

All configuration is read once from the environment (and an optional .env file)
into an immutable Settings object. main.py builds it at startup and hands it to
the components that need it; nothing reads the environment at request time.
"""

import logging
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")
DEFAULT_ADMIN_PASSWORD = "admin123"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    environment: str = "development"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./errando.db"
    create_tables: bool = True

    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    access_token_expire_days: int = Field(7, ge=1, le=90)

    cors_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    seed_admin: bool = True
    admin_username: str = "admin"
    admin_email: str = "admin@example.com"
    admin_password: str = DEFAULT_ADMIN_PASSWORD

    @field_validator("jwt_secret_key")
    @classmethod
    def secret_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError(
                "JWT_SECRET_KEY must not be empty. "
                "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
            )
        return value

    @field_validator("jwt_algorithm")
    @classmethod
    def algorithm_supported(cls, value: str) -> str:
        if value not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported JWT_ALGORITHM={value}. Supported: {', '.join(SUPPORTED_ALGORITHMS)}")
        return value

    @property
    def is_production_like(self) -> bool:
        """True for production and staging, where insecure defaults are refused."""
        return self.environment.lower() in ("production", "staging")


def load_settings() -> Settings:
    """
    Build the Settings object, failing startup when it cannot be built.

    Raises:
        RuntimeError: if JWT_SECRET_KEY is missing or any value is invalid,
            or if a production-like environment still uses the default admin password
    """
    try:
        settings = Settings()
    except ValueError as e:
        logger.critical(f"Invalid configuration: {e}")
        raise RuntimeError(f"Invalid configuration, refusing to start: {e}") from e

    if settings.is_production_like and settings.seed_admin:
        password = settings.admin_password.strip()
        if password == DEFAULT_ADMIN_PASSWORD or len(password) < 8:
            logger.critical("A secure ADMIN_PASSWORD (8+ chars, not the default) is required in production/staging")
            raise RuntimeError("Secure ADMIN_PASSWORD is required in production/staging")

    return settings
