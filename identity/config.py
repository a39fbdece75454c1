"""
Identity Backend - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and connection strings are loaded from environment variables.

Security: Development secrets below must be overridden via environment.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        DATABASE_URL: SQLAlchemy URL for the user and session stores
        JWT_SECRET: Signing key for access tokens
        JWT_REFRESH_SECRET: Signing key for refresh tokens (must differ)
        JWT_ACCESS_EXPIRES: Access token lifetime ("30s", "15m", "1h", "7d")
        JWT_REFRESH_EXPIRES: Refresh token lifetime
        AVAILABILITY_CACHE_TTL_MS: Lifetime of an email availability entry
        REGISTRATION_STALE_HOURS: Age after which pending registrations are purged
        CLEANUP_HOUR: Local wall-clock hour of the daily cleanup run
    """

    APP_NAME: str = "Identity Backend"

    # Database (PostgreSQL for production, SQLite for development)
    DATABASE_URL: str = "sqlite:///./identity.db"

    # Tokens
    JWT_SECRET: str = "dev-access-secret-change-me-32-chars"
    JWT_REFRESH_SECRET: str = "dev-refresh-secret-change-me-32-chars"
    JWT_ACCESS_EXPIRES: str = "1h"
    JWT_REFRESH_EXPIRES: str = "7d"
    JWT_ISSUER: str = "beautytime-api"
    JWT_ALGORITHM: str = "HS256"

    # Password hashing
    BCRYPT_WORK_FACTOR: int = 12

    # Email availability cache
    AVAILABILITY_CACHE_TTL_MS: int = 300_000
    AVAILABILITY_TIMEOUT_MS: int = 5_000
    AVAILABILITY_SWEEP_INTERVAL_SECONDS: int = 600

    # Registration cleanup
    REGISTRATION_STALE_HOURS: int = 24
    CLEANUP_HOUR: int = 2
    CLEANUP_MINUTE: int = 0

    # Sessions
    SESSION_REAP_INTERVAL_SECONDS: int = 300
    DEFAULT_TIMEZONE: str = "UTC"

    # Bulk operations
    FANOUT_CONCURRENCY: int = 10

    # Background drivers (sweep, reaper, daily cleanup)
    BACKGROUND_TASKS_ENABLED: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()
