"""
Settings for the GHL bridge services.

All values come from the environment (or a local .env file) and are read once
per process via get_settings().
"""

import functools
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    ENV: str = "development"
    SERVICE_NAME: str = "ghl-bridge"

    DATABASE_URL: str = "sqlite:///./ghl_bridge.db"
    REDIS_URL: Optional[str] = None

    # Public base URL of this service, used to build webhook URLs for instances
    APP_URL: str = "http://localhost:8000"
    CORS_ORIGINS: List[str] = ["*"]

    # GoHighLevel
    GHL_API_BASE_URL: str = "https://services.leadconnectorhq.com"
    GHL_API_VERSION: str = "2021-07-28"
    GHL_CLIENT_ID: str = ""
    GHL_CLIENT_SECRET: str = ""
    GHL_OAUTH_REDIRECT_URI: Optional[str] = None
    GHL_CONVERSATION_PROVIDER_ID: str = ""
    GHL_WORKFLOW_TOKEN: str = ""

    # GREEN-API
    GREEN_API_URL: str = "https://api.green-api.com"
    GREEN_API_ENCRYPTION_KEY: Optional[str] = None

    HTTP_TIMEOUT_SECONDS: float = 30.0
    TOKEN_REFRESH_WINDOW_SECONDS: int = 300
    TOKEN_REFRESH_LOCK_TIMEOUT_SECONDS: int = 30

    STATUS_REPORT_MAX_ATTEMPTS: int = 3
    STATUS_REPORT_BACKOFF_SECONDS: float = 1.0
    STATUS_REPORT_INITIAL_DELAY_SECONDS: float = 0.0

    # Refuse to guess when a tenant owns several instances and the contact has no tag
    STRICT_INSTANCE_ROUTING: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json | text


@functools.lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)."""
    return Settings()
