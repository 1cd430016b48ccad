from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from functools import lru_cache


WEAK_SECRET_KEYS = {
    "changeme",
    "secret",
    "password",
    "development",
    "test",
    "development-secret-key-change-in-production",
}

MIN_PRODUCTION_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/crm_notifications"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Auth
    SECRET_KEY: str = "development-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    DOCS_ENABLED: bool = True

    # Error tracking
    SENTRY_DSN: str | None = None
    VERSION: str = "1.0.0"

    # Realtime delivery: "memory" keeps the insert feed in-process,
    # "postgres" listens on the channel fed by the insert trigger.
    REALTIME_BACKEND: str = "memory"
    REALTIME_CHANNEL: str = "user_notifications"

    # Toast presentation timing
    TOAST_AUTO_CLOSE_MS: int = 5000
    TOAST_EXIT_GRACE_MS: int = 300
    TOAST_MAX_VISIBLE: int = 3

    # Listing sizes
    NOTIFICATIONS_PAGE_SIZE: int = 20
    BELL_PAGE_SIZE: int = 10
    CENTER_PAGE_SIZE: int = 50

    # WebSocket housekeeping
    WEBSOCKET_STALE_SECONDS: int = 120
    WEBSOCKET_SWEEP_INTERVAL_SECONDS: int = 60

    @field_validator('REALTIME_BACKEND')
    @classmethod
    def validate_realtime_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("memory", "postgres"):
            raise ValueError("REALTIME_BACKEND must be 'memory' or 'postgres'")
        return v

    @model_validator(mode='after')
    def validate_production_secrets(self) -> "Settings":
        """Refuse to start in production with a guessable signing key."""
        if self.is_production:
            if self.SECRET_KEY.lower() in WEAK_SECRET_KEYS:
                raise ValueError("SECRET_KEY uses a known weak value")
            if len(self.SECRET_KEY) < MIN_PRODUCTION_SECRET_LENGTH:
                raise ValueError(
                    f"SECRET_KEY must be at least {MIN_PRODUCTION_SECRET_LENGTH} characters in production"
                )
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        """SQL echo leaks bound parameters, so it is never enabled in production."""
        return self.DEBUG and not self.is_production

    @property
    def asyncpg_dsn(self) -> str:
        """Plain libpq-style DSN for direct asyncpg connections."""
        return self.DATABASE_URL.replace("postgresql+asyncpg://", "postgresql://", 1)

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
