"""Configuration settings for the application."""

from datetime import time
from urllib.parse import quote

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "vendorstock"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    # Full SQLAlchemy URL; takes precedence over the postgres_* parts when set
    database_url_override: str = ""

    # Application settings
    debug: bool = False

    # Expiry tracking
    near_expiry_threshold_days: int = 7

    # Daily expiry sweep
    sweep_enabled: bool = True
    sweep_time: time = time(0, 1)
    sweep_timezone: str = "Asia/Kolkata"
    sweep_concurrency: int = 4

    # Bulk updates
    bulk_recalculate_before_write: bool = True
    bulk_max_rows: int = 5000
    bulk_max_file_bytes: int = 5 * 1024 * 1024

    @property
    def database_url(self) -> str:
        """Construct the database URL for async PostgreSQL connection."""
        if self.database_url_override:
            return self.database_url_override
        base_url = (
            f"postgresql+asyncpg://{quote(self.postgres_user, safe='')}:{quote(self.postgres_password, safe='')}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        # Add SSL for Azure PostgreSQL
        if "azure" in self.postgres_host.lower() or "postgres.database" in self.postgres_host.lower():
            return f"{base_url}?ssl=require"
        return base_url


# Global settings instance
settings = Settings()
