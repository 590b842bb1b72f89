"""
Durable key/value cache store backed by the fixture_cache table.

The store is a dumb map: no TTL, no eviction. Freshness decisions belong
to the cache manager.
"""
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from fixtures_service.cache.core import CacheEntry
from fixtures_service.db import create_session_factory
from fixtures_service.errors import StoreError
from fixtures_service.models import Base, CacheRow, utcnow

logger = logging.getLogger("store")

_UPSERT_BUILDERS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class CacheStore:
    """
    Key -> (payload, last_fetched) mapping over a shared engine.

    Usage:
        store = CacheStore(engine)
        await store.init_schema()
        await store.put("current", {...})
        entry = await store.get("current")
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self._engine = engine
        self._sessions = session_factory or create_session_factory(engine)

        dialect = engine.dialect.name
        if dialect not in _UPSERT_BUILDERS:
            raise ValueError(f"Unsupported database dialect for upsert: {dialect}")
        self._insert = _UPSERT_BUILDERS[dialect]

    async def init_schema(self) -> None:
        """
        Create the cache table if missing.
        Safe to call multiple times (won't recreate existing tables)
        """
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to initialize cache table: {e}") from e
        logger.info("Cache table initialized")

    async def get(self, key: str) -> Optional[CacheEntry]:
        """
        Look up one key.

        Returns:
            The entry, or None when the key has never been written

        Raises:
            StoreError: If the query fails
        """
        stmt = select(CacheRow.payload, CacheRow.last_fetched).where(CacheRow.key == key)
        try:
            async with self._sessions() as session:
                row = (await session.execute(stmt)).first()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read cache key '{key}': {e}") from e

        if row is None:
            return None
        return CacheEntry(key=key, payload=row.payload, last_fetched=row.last_fetched)

    async def put(self, key: str, payload: Any) -> None:
        """
        Insert or overwrite one key in a single atomic upsert.

        last_fetched is refreshed to now on every write; concurrent writers
        for the same key resolve as last-writer-wins.

        Raises:
            StoreError: If the write fails
        """
        now = utcnow()
        stmt = self._insert(CacheRow).values(key=key, payload=payload, last_fetched=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=[CacheRow.key],
            set_={"payload": stmt.excluded.payload, "last_fetched": stmt.excluded.last_fetched},
        )
        try:
            async with self._sessions() as session:
                async with session.begin():
                    await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to write cache key '{key}': {e}") from e
        logger.debug(f"Cached '{key}' at {now.isoformat()}")
