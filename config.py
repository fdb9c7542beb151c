from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Forum backend settings, read from the environment and an optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Relational store
    DATABASE_URL: str = "sqlite+aiosqlite:///./forum.db"
    STORE_TIMEOUT_SECONDS: float = 10.0
    SEED_CATEGORIES: str = "General"

    # Activity log (Firestore)
    ACTIVITY_LOG_ENABLED: bool = True
    FIRESTORE_PROJECT: Optional[str] = None
    ACTIVITY_LOG_COLLECTION: str = "activity_logs"

    # Auth
    SECRET_KEY: Optional[str] = None
    SECRET_KEY_RESOURCE: Optional[str] = None
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 150

    # HTTP
    PORT: int = 3000
    ALLOWED_HOSTS: List[str] = ["*"]
    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    @property
    def seed_category_names(self) -> List[str]:
        return [name.strip() for name in self.SEED_CATEGORIES.split(",") if name.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
