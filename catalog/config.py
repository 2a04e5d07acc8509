from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Catalog settings, read from CATALOG_* environment variables or a .env file.
    """

    model_config = SettingsConfigDict(env_prefix="CATALOG_", env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///./catalog.db"
    database_echo: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Document limits
    title_max_length: int = 200
    description_max_length: int = 500
    content_max_bytes: int = 1_000_000
    max_tags_per_document: int = 10

    # Tag and username shape
    tag_min_length: int = 2
    tag_max_length: int = 50
    username_min_length: int = 3
    username_max_length: int = 30
    username_max_suffix: int = 1000

    # Search
    search_query_max_length: int = 200
    search_max_tags: int = 5
    default_per_page: int = 20
    max_per_page: int = 50
    rank_content_prefix: int = 1000
    rank_max_candidates: int = 500

    # API
    cors_origins: List[str] = ["*"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
