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

    # Error tracking (optional)
    SENTRY_DSN: str = ""

    # Internal scheduled endpoints (cron jobs / manual sweep)
    INTERNAL_SECRET: str = ""

    LOG_LEVEL: str = "INFO"

    # Scheduler
    SCHEDULER_INTERVAL_SECONDS: int = 60
    SCHEDULER_BATCH_SIZE: int = 100
    SCHEDULER_MAX_CONCURRENCY: int = 10
    CLAIM_LEASE_SECONDS: int = 300  # Crashed workers release their claims after this

    # Dispatch
    MESSAGE_TRANSPORT: str = "dry_run"  # dry_run | whatsapp_cloud | evolution
    DISPATCH_TIMEOUT_SECONDS: float = 15.0
    DISPATCH_RETRY_BACKOFF_SECONDS: int = 0  # 0 = retry on every sweep
    DISPATCH_RETRY_BACKOFF_MAX_SECONDS: int = 3600

    # WhatsApp Cloud API
    WHATSAPP_API_VERSION: str = "v18.0"
    WHATSAPP_PHONE_NUMBER_ID: str = ""
    WHATSAPP_ACCESS_TOKEN: str = ""

    # Evolution API
    EVOLUTION_API_URL: str = ""
    EVOLUTION_API_KEY: str = ""
    EVOLUTION_INSTANCE: str = ""

    # Business hours windows fall back to this zone
    DEFAULT_TIMEZONE: str = "UTC"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.WHATSAPP_PHONE_NUMBER_ID and self.WHATSAPP_ACCESS_TOKEN)

    @property
    def evolution_configured(self) -> bool:
        return bool(self.EVOLUTION_API_URL and self.EVOLUTION_API_KEY and self.EVOLUTION_INSTANCE)


settings = Settings()
