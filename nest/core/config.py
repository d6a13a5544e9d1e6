"""Application configuration management."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # JWT Configuration
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Public URLs
    APP_URL: str = "http://localhost:3000"
    BASE_URL: str = ""

    # Email/SMTP Configuration
    SMTP_SERVER: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_TLS: bool = True
    FROM_EMAIL: str = "noreply@nestbyeden.app"
    FROM_NAME: str = "Nest by Eden Oasis"
    CAR_BOOKINGS_EMAIL_TO: str = ""

    # Web Push (VAPID)
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_MAILTO: str = "mailto:noreply@nestbyeden.app"
    PUSH_TTL_SECONDS: int = 86400

    # Push queue worker
    PUSH_WORKER_BATCH_SIZE: int = 10
    PUSH_MAX_RETRIES: int = 3
    PUSH_TRIGGER_TIMEOUT_SECONDS: float = 2.5

    # Cron / worker endpoints
    CRON_SECRET: str = ""

    # Chat webhook
    GOOGLE_CHAT_WEBHOOK_URL: str = ""
    GOOGLE_CHAT_WEBHOOK_URL_DEV: str = ""

    # Environment
    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def vapid_configured(self) -> bool:
        return bool(self.VAPID_PUBLIC_KEY and self.VAPID_PRIVATE_KEY)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_SERVER and self.FROM_EMAIL)


settings = Settings()


def get_settings() -> Settings:
    return settings
