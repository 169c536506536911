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
    DATABASE_URL: str = "sqlite:///./clinic_scheduling.db"

    # Clinic calendar
    # IANA zone that defines calendar days, business days (queue numbers) and drop hours
    CLINIC_TIMEZONE: str = "UTC"
    WORKING_HOURS_PER_DAY: int = 8  # Nominal chair hours per room per day
    MANUAL_STATUS_CHANGE_DELAY_MINUTES: int = 1
    WALK_IN_DEFAULT_DURATION_MINUTES: int = 30

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Error tracking (optional)
    SENTRY_DSN: str = ""  # Get from https://sentry.io

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
