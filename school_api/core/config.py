from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    All config comes from .env file.
    Change values in .env and they apply everywhere.
    """

    # ── Database ──────────────────────────────────────────
    DATABASE_URL: str                     # asyncpg: used by FastAPI
    DATABASE_SYNC_URL: str | None = None  # psycopg2: used only by Alembic

    # ── JWT ───────────────────────────────────────────────
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 7 * 24 * 60

    # ── CORS ──────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # ── App ───────────────────────────────────────────────
    APP_ENV: str = "production"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── Tenancy / calendar ────────────────────────────────
    PLATFORM_SCHOOL_ID: str = "platform"
    SCHOOL_TIMEZONE: str = "Asia/Kolkata"

    # ── OTP ───────────────────────────────────────────────
    OTP_LENGTH: int = 6
    OTP_EXPIRE_MINUTES: int = 5
    OTP_MAX_ATTEMPTS: int = 5
    OTP_RATE_LIMIT_MAX_REQUESTS: int = 5
    OTP_RATE_LIMIT_WINDOW_MINUTES: int = 15

    # ── Trusted devices ───────────────────────────────────
    TRUSTED_DEVICE_DAYS: int = 30

    # ── SMS (Fast2SMS) ────────────────────────────────────
    FAST2SMS_API_KEY: str = ""
    FAST2SMS_SENDER_ID: str = "VYASAI"

    # ── Throttling / maintenance ──────────────────────────
    RATE_LIMIT_ENABLED: bool = True
    PUBLIC_RATE_LIMIT: str = "20/minute"
    CLEANUP_INTERVAL_MINUTES: int = 60  # 0 disables the background loop

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def origins_list(self) -> list[str]:
        """Splits comma-separated ALLOWED_ORIGINS into a list."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# Single instance used across the entire app
settings = get_settings()
