"""Application configuration from environment variables."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Gatekeeper settings loaded from environment variables."""

    # App
    APP_NAME: str = "Gatekeeper"
    DEBUG: bool = False
    LOG_LEVEL: Optional[str] = None

    # Database (role store)
    DATABASE_URL: str = "sqlite:///./gatekeeper.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 40
    DB_POOL_TIMEOUT: int = 30

    # Redis (permission cache)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: float = 0.5
    REDIS_MAX_CONNECTIONS: int = 100

    # Cache TTLs, in seconds
    PERMISSION_CACHE_TTL_SECONDS: int = 60 * 60 * 8
    USER_ROLES_CACHE_TTL_SECONDS: int = 60 * 60
    ROLE_ID_CACHE_TTL_SECONDS: int = 60 * 60

    # Cache warming
    CACHE_WARM_LIMIT: int = 5000
    CACHE_WARM_ON_STARTUP: bool = False
    CACHE_POPULATE_CONCURRENCY: int = 10

    # Policy
    POLICY_USE_HIERARCHY: bool = False

    # Invite codes
    INVITE_CODE_EXPIRATION_HOURS: int = 24
    INVITE_CODE_MAX_ATTEMPTS: int = 10

    # Super admin seed
    SUPER_ADMIN_ID: str = "super-admin"
    SUPER_ADMIN_EMAIL: str = "admin@gatekeeper.local"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


settings = Settings()
