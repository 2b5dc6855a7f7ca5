"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "MedWaste_Custody"
    ENV: str = "development"
    DEBUG: bool = True
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Database
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Proxy / client IP handling
    # Only trust X-Forwarded-* headers when running behind a trusted reverse proxy (e.g. nginx).
    TRUST_PROXY_HEADERS: bool = False

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    HANDOFF_EXPIRY_SWEEP_SECONDS: float = 300.0

    # JWT (tokens are issued by the identity service; we only verify them)
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for exp validation

    # Handoff confirmation links
    HANDOFF_TOKEN_TTL_HOURS: int = 24
    PUBLIC_CONFIRM_BASE_URL: str = "https://medicalwaste.kz/confirm"

    # Public token endpoints: attempts per window, counted per token and per client IP.
    PUBLIC_TOKEN_RATE_LIMIT: int = 5
    PUBLIC_TOKEN_RATE_WINDOW_SECONDS: int = 15 * 60  # 15 minutes

    # Notifications (comma-separated, attempted in order)
    NOTIFICATION_CHANNELS: str = "sms,whatsapp"
    NOTIFICATION_HTTP_TIMEOUT_SECONDS: float = 10.0
    NOTIFICATION_LOG_PAGE_LIMIT: int = 200

    # SMS (Mobizon)
    MOBIZON_API_KEY: str | None = None
    MOBIZON_API_URL: str = "https://api.mobizon.kz/service/message/sendsmsmessage"

    # WhatsApp (Twilio)
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_WHATSAPP_FROM: str | None = None
    TWILIO_API_BASE: str = "https://api.twilio.com/2010-04-01"

    # Telegram
    TELEGRAM_BOT_TOKEN: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def notification_channels(self) -> list[str]:
        """Get enabled notification channels as list."""
        return [
            channel.strip().lower()
            for channel in self.NOTIFICATION_CHANNELS.split(",")
            if channel.strip()
        ]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
