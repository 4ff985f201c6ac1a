"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Public app URL (quote links in outbound messages)
    APP_URL: str = "http://localhost:3000"

    # Cron trigger (GET /internal/cron/run-tasks). Empty disables the bearer check.
    CRON_SECRET: str = ""

    # Token Encryption (for stored provider credentials)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Booking
    HOLD_TTL_MINUTES: int = 10
    SLOT_DAYS_AHEAD: int = 14
    DEFAULT_TIMEZONE: str = "America/Los_Angeles"
    DEFAULT_DEPOSIT_PERCENT: int = 25

    # Task queue
    TASK_BATCH_SIZE: int = 20
    TASK_MAX_RETRIES: int = 3
    TASK_BACKOFF_BASE: int = 4  # minutes = base ** (retry_count - 1)
    WORKER_POLL_INTERVAL: int = 60

    # Google Calendar OAuth (token refresh)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""

    # Microsoft Graph OAuth (token refresh)
    MICROSOFT_CLIENT_ID: str = ""
    MICROSOFT_CLIENT_SECRET: str = ""

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Email (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "Bookings <noreply@example.com>"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_BOOKING: int = 30

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"


settings = Settings()
