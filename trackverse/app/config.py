"""Application configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "TrackVerse API"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, testing, production

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # CORS Settings
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # Rate limiting
    API_KEY_RATE_WINDOW_SECONDS: int = 3600
    DEFAULT_RATE_LIMIT_TIER: str = "free"
    IP_RATE_LIMIT: int = 30  # unauthenticated requests per window
    IP_RATE_WINDOW_SECONDS: int = 60
    RATE_LIMIT_CLEANUP_INTERVAL: int = 300

    # Webhooks
    WEBHOOK_DELIVERY_TIMEOUT: float = 30.0
    WEBHOOK_TEST_TIMEOUT: float = 10.0
    WEBHOOK_MAX_ATTEMPTS: int = 3
    WEBHOOK_RETRY_BASE_SECONDS: float = 120.0  # 2, 4, 8 minutes
    WEBHOOK_RESPONSE_BODY_LIMIT: int = 1000
    WEBHOOK_RETRY_POLL_INTERVAL: float = 30.0
    WEBHOOK_MAX_CONSECUTIVE_FAILURES: int = 10

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
