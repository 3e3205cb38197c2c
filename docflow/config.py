"""Application settings loaded from the environment."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./docflow.db"
    storage_root: str = "./storage"
    max_upload_bytes: int = 25 * 1024 * 1024

    recent_limit: int = 5
    audit_page_limit: int = 50

    log_level: str = "INFO"

    model_config = {"env_prefix": "DOCFLOW_", "env_file": ".env", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
