from typing import Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from admission.models.rate_limit import BucketConfig


class Settings(BaseSettings):
    """Admission pipeline settings loaded from the environment (and .env)."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Service Configuration
    SERVICE_NAME: str = "admission-pipeline"
    SERVICE_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    HOST: str = "0.0.0.0"
    PORT: int = 8080

    # Security Configuration
    JWT_SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    ALLOW_FALLBACK_IDENTITY: bool = False

    # Identity resolution (optional external collaborator)
    IDENTITY_SERVICE_URL: Optional[str] = None
    IDENTITY_SERVICE_TIMEOUT: int = 5

    # Rate Limiting Configuration
    RATE_LIMIT_DISABLED: bool = False
    RATE_LIMIT_EXEMPT_PRIVATE: bool = False
    RATE_LIMIT_WINDOW_MS: int = 5 * 60 * 1000
    RATE_LIMIT_MAX_REQS: int = 50
    API_WINDOW_MS: int = 5 * 60 * 1000
    API_MAX_REQS: int = 300
    CHAT_WINDOW_MS: int = 5 * 60 * 1000
    CHAT_MAX_REQS: int = 120
    CHAT_MAX_CONCURRENCY: int = 2
    RATE_LIMIT_BLOCK_MS: int = 0
    RATE_LIMIT_SWEEP_INTERVAL_MS: int = 5 * 60 * 1000
    RATE_LIMIT_USE_REDIS: bool = False
    REDIS_URL: str = "redis://localhost:6379/0"

    # Request Deduplication Configuration
    DEDUP_DEFAULT_TTL_MS: int = 5000
    DEDUP_SWEEP_INTERVAL_MS: int = 60 * 1000

    # Admin API
    ADMIN_API_ENABLED: bool = True

    # CORS Configuration
    CORS_ENABLED: bool = True
    CORS_ORIGINS: list = ["http://localhost:3000", "http://localhost:8080"]
    CORS_METHODS: list = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    CORS_HEADERS: list = ["*"]

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.strip().lower() == "production"

    @property
    def rate_limit_active(self) -> bool:
        """The disable switch is ignored in production."""
        return self.is_production or not self.RATE_LIMIT_DISABLED

    def bucket_configs(self) -> Dict[str, BucketConfig]:
        """Named rate limit buckets derived from the environment."""
        return {
            "default": BucketConfig(
                name="default",
                limit=self.RATE_LIMIT_MAX_REQS,
                window_ms=self.RATE_LIMIT_WINDOW_MS,
                block_ms=self.RATE_LIMIT_BLOCK_MS,
            ),
            "api": BucketConfig(
                name="api",
                limit=self.API_MAX_REQS,
                window_ms=self.API_WINDOW_MS,
                block_ms=self.RATE_LIMIT_BLOCK_MS,
            ),
            "chat": BucketConfig(
                name="chat",
                limit=self.CHAT_MAX_REQS,
                window_ms=self.CHAT_WINDOW_MS,
                block_ms=self.RATE_LIMIT_BLOCK_MS,
            ),
        }


def get_settings() -> Settings:
    return Settings()


settings = get_settings()
