"""
Database connection and setup
Async SQLAlchemy engine shared process-wide (Postgres in production, SQLite locally)
"""
import logging
import ssl
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from config.settings import Settings, settings as default_settings

logger = logging.getLogger("db")


def _relaxed_ssl_context() -> ssl.SSLContext:
    """TLS without certificate validation; hosted Postgres requires encryption only."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def create_engine_from_settings(config: Optional[Settings] = None) -> AsyncEngine:
    """
    Create the process-wide engine (and its connection pool).

    Call once at startup and dispose() at shutdown.
    """
    config = config or default_settings
    url = config.async_database_url
    connect_args: Dict[str, Any] = {}

    if url.startswith("postgresql+asyncpg") and config.database_ssl_relaxed:
        connect_args["ssl"] = _relaxed_ssl_context()

    engine = create_async_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        echo=False,  # Set to True to see SQL queries
    )
    logger.info(f"Database engine created ({engine.dialect.name})")
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to the shared engine."""
    return async_sessionmaker(engine, expire_on_commit=False)
