"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


def _normalize_database_url(url: str) -> str:
    """
    Rewrite hosted Postgres URLs to the asyncpg driver.

    Hosting providers hand out ``postgres://`` or ``postgresql://`` URLs;
    SQLAlchemy's asyncio engine needs the driver named explicitly.
    """
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./fixtures_cache.db"
    # Encrypted channel without client certificate validation (hosted Postgres)
    database_ssl_relaxed: bool = True

    # Origin site
    origin_base_url: str = "https://ablefast.com"

    # Cache settings
    current_ttl_seconds: int = 600
    coalesce_timeout: float = 120.0
    serve_stale_on_error: bool = False

    # Headless browser
    navigation_timeout_ms: int = 30000
    selector_timeout_ms: int = 5000
    wait_selector: Optional[str] = "select option"

    # Resilience
    render_max_attempts: int = 3
    breaker_fail_max: int = 5
    breaker_reset_timeout: float = 60.0

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def async_database_url(self) -> str:
        return _normalize_database_url(self.database_url)


settings = Settings()
