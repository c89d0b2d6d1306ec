from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Storage - in-memory stores are used when these are unset
    DATABASE_URL: str | None = None
    REDIS_URL: str | None = None

    # Outbound email (Resend). Without an API key emails are only logged.
    RESEND_API_KEY: str | None = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    RESEND_FROM_EMAIL: str = "no-reply@bikemanager.app"
    RESEND_FROM_NAME: str = "BikeManager"
    EMAIL_SEND_TIMEOUT_SECONDS: float = 15.0
    FRONTEND_URL: str = "http://localhost:5173"

    # =================================================================
    # MAINTENANCE REMINDER CRON
    # =================================================================
    MAINTENANCE_REMINDER_ENABLED: bool = False
    MAINTENANCE_REMINDER_CRON: str = "0 9 * * *"  # 9 AM daily
    REMINDER_TIMEZONE: str = "America/Sao_Paulo"
    REMINDER_SCAN_ON_STARTUP: bool | None = None  # None: every environment except production
    REMINDER_REDELIVERY_LIMIT: int = 3
    REMINDER_REDELIVERY_WINDOW_SECONDS: int = 86400  # 24 hours

    # =================================================================
    # DELIVERY QUEUE
    # =================================================================
    DELIVERY_POLL_INTERVAL_SECONDS: float = 5.0
    DELIVERY_CONCURRENCY: int = 5
    DELIVERY_MAX_ATTEMPTS: int = 3
    DELIVERY_BACKOFF_BASE_SECONDS: float = 2.0
    DELIVERY_SHUTDOWN_TIMEOUT_SECONDS: float = 10.0
    QUEUE_RETENTION_HOURS: int = 24

    # =================================================================
    # PASSWORD RESET
    # =================================================================
    PASSWORD_RESET_RATE_LIMIT: int = 3
    PASSWORD_RESET_WINDOW_SECONDS: int = 3600  # 1 hour
    PASSWORD_RESET_TOKEN_EXPIRY: int = 3600  # seconds
    PASSWORD_MIN_LENGTH: int = 6
    RATE_WINDOW_FAIL_OPEN: bool = False

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def is_production(self) -> bool:
        return self.environment == "production"

    def scan_on_startup(self) -> bool:
        """Outside production an initial reminder scan runs when the process starts."""
        if self.REMINDER_SCAN_ON_STARTUP is not None:
            return self.REMINDER_SCAN_ON_STARTUP
        return not self.is_production()

    def password_reset_url(self, secret: str) -> str:
        return f"{self.FRONTEND_URL.rstrip('/')}/reset-password?token={secret}"

    def get_delivery_config(self) -> dict:
        """
        Get delivery queue configuration.
        Development gets a shorter backoff so retries are visible quickly.
        """
        config = {
            "concurrency": self.DELIVERY_CONCURRENCY,
            "poll_interval": self.DELIVERY_POLL_INTERVAL_SECONDS,
            "max_attempts": self.DELIVERY_MAX_ATTEMPTS,
            "backoff_base_seconds": self.DELIVERY_BACKOFF_BASE_SECONDS,
            "delivery_timeout": self.EMAIL_SEND_TIMEOUT_SECONDS * 2,
        }

        if self.environment == "development":
            config.update({"backoff_base_seconds": min(self.DELIVERY_BACKOFF_BASE_SECONDS, 1.0)})

        return config

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
