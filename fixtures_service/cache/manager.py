"""
Fetch-through cache orchestration for fixtures.

Three retrieval policies:
- "current": served from cache while younger than the TTL, else re-rendered
- date keys: fetched once, then served from cache forever
- week discovery: always rendered live, never cached
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

from pydantic import ValidationError

from fixtures_service.errors import RenderError, StoreError
from fixtures_service.models import utcnow
from fixtures_service.scraper.breaker import get_breaker_stats
from fixtures_service.scraper.extractor import extract_records, extract_week_options

from .coalescer import RequestCoalescer
from .core import (
    CURRENT_KEY,
    CacheBackend,
    CacheEntry,
    CacheSource,
    CurrentSnapshot,
    DiscoveryStatus,
    FetchResult,
    HistoricalSnapshot,
    PageRenderer,
    WeekDiscovery,
    payload_adapter,
)
from .ttl_policies import KeyClass, get_key_class, get_policy, is_fresh

logger = logging.getLogger("cache.manager")

DEFAULT_ORIGIN = "https://ablefast.com"
DEFAULT_WAIT_SELECTOR = "select option"
DISCOVERY_KEY = "discovery:weeks"


class CacheManager:
    """
    Main cache orchestration with:
    - Per-key-class freshness policies
    - Single-flight coalescing of concurrent refetches
    - Non-fatal cache reads and writes
    - Optional stale fallback when a "current" refetch fails
    """

    def __init__(
        self,
        store: CacheBackend,
        renderer: PageRenderer,
        origin_base_url: str = DEFAULT_ORIGIN,
        current_ttl_seconds: Optional[int] = None,
        wait_selector: Optional[str] = DEFAULT_WAIT_SELECTOR,
        coalesce_timeout: float = 120.0,
        serve_stale_on_error: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the cache manager.

        Args:
            store: Persistent key/value cache
            renderer: Headless page renderer
            origin_base_url: Origin site root, without trailing slash
            current_ttl_seconds: Override for the "current" TTL
            wait_selector: Selector signalling client-side rendering is done
            coalesce_timeout: Timeout for waiting on coalesced fetches
            serve_stale_on_error: Return an expired "current" entry if the refetch fails
            clock: Returns naive UTC now (injectable for tests)
        """
        self._store = store
        self._renderer = renderer
        self._origin = origin_base_url.rstrip("/")
        self._current_policy = get_policy(KeyClass.CURRENT, current_ttl_seconds)
        self._historical_policy = get_policy(KeyClass.HISTORICAL)
        self._wait_selector = wait_selector
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout)
        self._serve_stale_on_error = serve_stale_on_error
        self._clock = clock

        # Stats tracking
        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "renders": 0,
            "stale_served": 0,
            "store_errors": 0,
            "discovery_failures": 0,
        }

    # =========================================================================
    # Public operations
    # =========================================================================

    async def fetch_current(self) -> FetchResult:
        """
        Fixtures for the current week, at most TTL seconds old.

        Raises:
            RenderError: If a refetch is needed and rendering fails
        """
        entry = await self._read(CURRENT_KEY)
        snapshot = self._decode(entry, CurrentSnapshot)
        now = self._clock()

        if snapshot is not None and is_fresh(entry, self._current_policy, now):
            logger.debug(f"CACHE HIT (fresh): {CURRENT_KEY} [age={entry.age_seconds(now):.1f}s]")
            self._stats["hits"] += 1
            return FetchResult(CURRENT_KEY, snapshot.records, True, CacheSource.FRESH)

        if snapshot is None:
            logger.info(f"CACHE MISS: {CURRENT_KEY}")
            self._stats["misses"] += 1
        else:
            logger.info(f"CACHE EXPIRED: {CURRENT_KEY} [age={entry.age_seconds(now):.1f}s]")
            self._stats["expired"] += 1

        try:
            return await self._coalescer.get_or_fetch(CURRENT_KEY, self._refresh_current)
        except (RenderError, TimeoutError) as e:
            if self._serve_stale_on_error and snapshot is not None:
                logger.warning(f"Refetch of {CURRENT_KEY} failed ({e}); serving stale cache")
                self._stats["stale_served"] += 1
                return FetchResult(CURRENT_KEY, snapshot.records, True, CacheSource.STALE)
            raise

    async def fetch_by_date(self, date: str) -> FetchResult:
        """
        Fixtures for a past week. Once cached, an entry is served forever.

        Raises:
            RenderError: If the date is not cached and rendering fails
        """
        if get_key_class(date) is KeyClass.CURRENT:
            # The "current" key must keep its TTL even when asked for by name
            return await self.fetch_current()

        entry = await self._read(date)
        snapshot = self._decode(entry, HistoricalSnapshot)

        if snapshot is not None and is_fresh(entry, self._historical_policy, self._clock()):
            logger.debug(f"CACHE HIT (permanent): {date}")
            self._stats["hits"] += 1
            return FetchResult(date, snapshot.records, True, CacheSource.FRESH)

        logger.info(f"CACHE MISS: {date}")
        self._stats["misses"] += 1
        return await self._coalescer.get_or_fetch(date, lambda: self._refresh_date(date))

    async def list_available_weeks(self) -> WeekDiscovery:
        """
        Weeks offered by the origin's dropdown, always read live.

        Never raises: failures come back as DiscoveryStatus.FAILED so callers
        can tell them apart from a genuinely empty listing.
        """
        try:
            return await self._coalescer.get_or_fetch(DISCOVERY_KEY, self._discover_weeks)
        except TimeoutError as e:
            logger.error(f"Week discovery failed: {e}")
            self._stats["discovery_failures"] += 1
            return WeekDiscovery(DiscoveryStatus.FAILED, error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        lookups = self._stats["hits"] + self._stats["misses"] + self._stats["expired"]
        hit_rate = (self._stats["hits"] / lookups * 100) if lookups > 0 else 0

        stats: Dict[str, Any] = dict(self._stats)
        stats["hit_rate_percent"] = round(hit_rate, 1)
        stats["coalescer"] = self._coalescer.get_stats()
        breaker = getattr(self._renderer, "breaker", None)
        if breaker is not None:
            stats["breaker"] = get_breaker_stats(breaker)
        return stats

    # =========================================================================
    # Fetch sequences (run once per key under the coalescer)
    # =========================================================================

    async def _refresh_current(self) -> FetchResult:
        # A flight that finished while the caller was still reading may have refilled the key
        entry = await self._read(CURRENT_KEY)
        snapshot = self._decode(entry, CurrentSnapshot)
        if snapshot is not None and is_fresh(entry, self._current_policy, self._clock()):
            logger.debug(f"CACHE HIT (refilled): {CURRENT_KEY}")
            return FetchResult(CURRENT_KEY, snapshot.records, True, CacheSource.FRESH)

        html = await self._render(self._origin + "/")
        records = extract_records(html)
        snapshot = CurrentSnapshot(records=records, fetched_at=self._clock())
        await self._write(CURRENT_KEY, snapshot)
        return FetchResult(CURRENT_KEY, records, False, CacheSource.UPSTREAM)

    async def _refresh_date(self, date: str) -> FetchResult:
        entry = await self._read(date)
        snapshot = self._decode(entry, HistoricalSnapshot)
        if snapshot is not None and is_fresh(entry, self._historical_policy, self._clock()):
            logger.debug(f"CACHE HIT (refilled): {date}")
            return FetchResult(date, snapshot.records, True, CacheSource.FRESH)

        html = await self._render(f"{self._origin}/results/{quote(date, safe='')}")
        records = extract_records(html)
        await self._write(date, HistoricalSnapshot(records=records))
        return FetchResult(date, records, False, CacheSource.UPSTREAM)

    async def _discover_weeks(self) -> WeekDiscovery:
        try:
            html = await self._render(self._origin + "/")
            weeks = extract_week_options(html)
        except Exception as e:
            logger.error(f"Week discovery failed: {e}")
            self._stats["discovery_failures"] += 1
            return WeekDiscovery(DiscoveryStatus.FAILED, error=str(e))

        if not weeks:
            logger.warning("Week discovery found no selectable weeks")
            return WeekDiscovery(DiscoveryStatus.EMPTY)
        return WeekDiscovery(DiscoveryStatus.OK, weeks=weeks)

    async def _render(self, url: str) -> str:
        self._stats["renders"] += 1
        return await self._renderer.render(url, wait_selector=self._wait_selector)

    # =========================================================================
    # Store access (failures never fail the request)
    # =========================================================================

    async def _read(self, key: str) -> Optional[CacheEntry]:
        try:
            return await self._store.get(key)
        except StoreError as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            self._stats["store_errors"] += 1
            return None

    async def _write(self, key: str, snapshot: Any) -> None:
        try:
            await self._store.put(key, snapshot.model_dump(mode="json"))
        except StoreError as e:
            logger.warning(f"Cache write failed for {key}, returning uncached result: {e}")
            self._stats["store_errors"] += 1

    def _decode(self, entry: Optional[CacheEntry], expected: type) -> Optional[Any]:
        """Parse a stored payload; anything unexpected counts as a miss."""
        if entry is None:
            return None
        try:
            snapshot = payload_adapter.validate_python(entry.payload)
        except ValidationError as e:
            logger.warning(f"Unreadable cache payload for {entry.key}, ignoring: {e}")
            return None
        if not isinstance(snapshot, expected):
            logger.warning(
                f"Cache payload for {entry.key} is {snapshot.kind}, "
                f"expected {expected.__name__}; ignoring"
            )
            return None
        return snapshot
