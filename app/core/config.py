from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    # Either a full SQLAlchemy URL (local dev, tests) or a Cloud SQL instance.
    DATABASE_URL: Optional[str] = None
    # Format: "project-id:region:instance-name"
    CLOUD_SQL_CONNECTION_NAME: Optional[str] = None
    DB_USER: str = "allowlist_user"
    DB_PASS: str = ""
    DB_NAME: str = "allowlist_db"
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    # Google Cloud (trace correlation in logs)
    GOOGLE_CLOUD_PROJECT: Optional[str] = None

    # Local or Not
    ENVIRONMENT: str = "production"  # "local", "production", "staging"
    RUN_LOCALLY: bool = False

    # DEV BYPASS: only honoured when RUN_LOCALLY is also true
    SKIP_AUTH: bool = False
    DEV_USER_UID: Optional[str] = None
    DEV_USER_EMAIL: Optional[str] = None

    # Custom claim value that marks a Firebase user as staff
    STAFF_ROLE: str = "staff"

    # Prefix of generated request correlation ids ("allowlist_3f9c0a1b2c4d")
    REQUEST_ID_PREFIX: str = "allowlist"

    # Upper bound on concurrent audit writes per mutation
    AUDIT_MAX_WORKERS: int = 8

    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def USES_CLOUD_SQL(self) -> bool:
        return bool(self.CLOUD_SQL_CONNECTION_NAME) and not self.DATABASE_URL

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Resolved once per process; never invalidated."""
    return Settings()


settings = get_settings()
