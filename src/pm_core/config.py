"""Application settings loaded from the environment."""
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration.

    Values come from environment variables (case-insensitive) or a local
    ``.env`` file. Defaults are suitable for local development with SQLite.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./pm_core.db"
    cors_origins: str = "http://localhost:3000"  # comma-separated
    log_level: str = "INFO"

    # Blob store for uploaded files
    upload_dir: str = "./storage/files"
    max_upload_bytes: int = 10 * 1024 * 1024  # 10 MiB

    # Notification outbox dispatcher
    notification_max_attempts: int = 3

    # Personal access tokens issued by /auth/token
    token_ttl_days: int = 30

    # Development server
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def cors_origin_list(self) -> list[str]:
        """CORS origins split into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
