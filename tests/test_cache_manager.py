"""
Unit tests for the fetch-through cache manager.

Uses an in-memory store and a scripted renderer so every freshness
decision can be checked without a database or a browser.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest

from fixtures_service.cache import (
    CacheEntry,
    CacheManager,
    CacheSource,
    CurrentSnapshot,
    DiscoveryStatus,
    HistoricalSnapshot,
)
from fixtures_service.errors import RenderError, StoreError
from fixtures_service.schemas import ScheduleRecord, WeekOption


NOW = datetime(2024, 9, 14, 15, 0, 0)

FIXTURES_HTML = """
<select><option value="2024-09-07">Week 3</option><option value="2024-09-14">Week 4</option></select>
<table id="table"><tbody>
  <tr><td>12</td><td>Red FC</td><td>v</td><td>Blue FC</td><td>2-1</td><td>FT</td></tr>
  <tr><td>13</td><td>Green FC</td><td>v</td><td>White FC</td><td></td><td>P</td></tr>
</tbody></table>
"""

CACHED_RECORDS = [
    ScheduleRecord(number="1", home="Old Home", away="Old Away", result="0-0", status="FT"),
]


# =============================================================================
# Test doubles
# =============================================================================

class MemoryStore:
    """Dict-backed store recording writes."""

    def __init__(self, clock=lambda: NOW):
        self.entries: Dict[str, CacheEntry] = {}
        self.puts: List[str] = []
        self.fail_reads = False
        self.fail_writes = False
        self._clock = clock

    def seed(self, key: str, payload: Any, last_fetched: datetime) -> None:
        self.entries[key] = CacheEntry(key=key, payload=payload, last_fetched=last_fetched)

    async def get(self, key: str) -> Optional[CacheEntry]:
        if self.fail_reads:
            raise StoreError("connection refused")
        return self.entries.get(key)

    async def put(self, key: str, payload: Any) -> None:
        if self.fail_writes:
            raise StoreError("connection refused")
        self.puts.append(key)
        self.entries[key] = CacheEntry(key=key, payload=payload, last_fetched=self._clock())


class SlowReadStore(MemoryStore):
    """One read answers late, with what the table held when it was issued."""

    def __init__(self, slow_call: int = 2, delay: float = 0.05):
        super().__init__()
        self.slow_call = slow_call
        self.delay = delay
        self.get_calls = 0

    async def get(self, key: str) -> Optional[CacheEntry]:
        self.get_calls += 1
        entry = await super().get(key)
        if self.get_calls == self.slow_call:
            await asyncio.sleep(self.delay)
        return entry


class ScriptedRenderer:
    """Returns fixed HTML after a short delay, counting calls."""

    def __init__(self, html: str = FIXTURES_HTML, error: Optional[Exception] = None, delay: float = 0.01):
        self.html = html
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    async def render(self, url: str, wait_selector: Optional[str] = None) -> str:
        self.calls.append(url)
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.html


def _current_payload(records=CACHED_RECORDS, fetched_at=NOW) -> dict:
    return CurrentSnapshot(records=records, fetched_at=fetched_at).model_dump(mode="json")


def _historical_payload(records=CACHED_RECORDS) -> dict:
    return HistoricalSnapshot(records=records).model_dump(mode="json")


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def renderer():
    return ScriptedRenderer()


@pytest.fixture
def manager(store, renderer):
    return CacheManager(store=store, renderer=renderer, clock=lambda: NOW)


# =============================================================================
# fetch_current
# =============================================================================

class TestFetchCurrent:
    """Tests for the 10-minute "current" policy."""

    def test_fresh_entry_served_without_render(self, manager, store, renderer):
        store.seed("current", _current_payload(), NOW - timedelta(minutes=9, seconds=59))

        result = asyncio.run(manager.fetch_current())

        assert renderer.calls == []
        assert result.served_from_cache is True
        assert result.records == CACHED_RECORDS
        assert result.week == "current"

    def test_expired_entry_renders_once_and_overwrites(self, manager, store, renderer):
        store.seed("current", _current_payload(), NOW - timedelta(minutes=10, seconds=1))

        result = asyncio.run(manager.fetch_current())

        assert renderer.calls == ["https://ablefast.com/"]
        assert store.puts == ["current"]
        assert result.served_from_cache is False
        assert [r.number for r in result.records] == ["12", "13"]
        stored = store.entries["current"].payload
        assert stored["kind"] == "current"
        assert stored["records"][0]["home"] == "Red FC"

    def test_entry_exactly_at_ttl_is_stale(self, manager, store, renderer):
        store.seed("current", _current_payload(), NOW - timedelta(minutes=10))

        asyncio.run(manager.fetch_current())

        assert len(renderer.calls) == 1

    def test_miss_renders_and_persists(self, manager, store, renderer):
        result = asyncio.run(manager.fetch_current())

        assert len(renderer.calls) == 1
        assert result.served_from_cache is False
        assert result.source is CacheSource.UPSTREAM
        assert store.entries["current"].payload["fetched_at"].startswith("2024-09-14T15:00:00")

    def test_custom_ttl(self, store, renderer):
        manager = CacheManager(store=store, renderer=renderer, current_ttl_seconds=60, clock=lambda: NOW)
        store.seed("current", _current_payload(), NOW - timedelta(seconds=61))

        asyncio.run(manager.fetch_current())

        assert len(renderer.calls) == 1

    def test_historical_payload_under_current_key_is_a_miss(self, manager, store, renderer):
        store.seed("current", _historical_payload(), NOW)

        result = asyncio.run(manager.fetch_current())

        assert len(renderer.calls) == 1
        assert result.served_from_cache is False

    def test_unreadable_payload_is_a_miss(self, manager, store, renderer):
        store.seed("current", {"fixtures": [], "timestamp": 123}, NOW)

        result = asyncio.run(manager.fetch_current())

        assert len(renderer.calls) == 1
        assert result.served_from_cache is False

    def test_render_failure_propagates(self, store):
        renderer = ScriptedRenderer(error=RenderError("navigation timed out", transient=True))
        manager = CacheManager(store=store, renderer=renderer, clock=lambda: NOW)

        with pytest.raises(RenderError):
            asyncio.run(manager.fetch_current())
        assert store.puts == []

    def test_render_failure_with_stale_entry_fails_by_default(self, store):
        renderer = ScriptedRenderer(error=RenderError("boom"))
        manager = CacheManager(store=store, renderer=renderer, clock=lambda: NOW)
        store.seed("current", _current_payload(), NOW - timedelta(hours=1))

        with pytest.raises(RenderError):
            asyncio.run(manager.fetch_current())

    def test_stale_fallback_when_enabled(self, store):
        renderer = ScriptedRenderer(error=RenderError("boom"))
        manager = CacheManager(
            store=store, renderer=renderer, serve_stale_on_error=True, clock=lambda: NOW
        )
        store.seed("current", _current_payload(), NOW - timedelta(hours=1))

        result = asyncio.run(manager.fetch_current())

        assert result.served_from_cache is True
        assert result.source is CacheSource.STALE
        assert result.records == CACHED_RECORDS
        assert manager.get_stats()["stale_served"] == 1

    def test_store_write_failure_still_returns_records(self, manager, store, renderer):
        store.fail_writes = True

        result = asyncio.run(manager.fetch_current())

        assert result.served_from_cache is False
        assert [r.number for r in result.records] == ["12", "13"]
        assert manager.get_stats()["store_errors"] == 1

    def test_store_read_failure_treated_as_miss(self, manager, store, renderer):
        store.fail_reads = True

        result = asyncio.run(manager.fetch_current())

        assert len(renderer.calls) == 1
        assert result.served_from_cache is False


# =============================================================================
# fetch_by_date
# =============================================================================

class TestFetchByDate:
    """Tests for the permanent historical policy."""

    def test_cached_date_never_rerendered(self, manager, store, renderer):
        store.seed("2023-01-07", _historical_payload(), NOW - timedelta(days=400))

        result = asyncio.run(manager.fetch_by_date("2023-01-07"))

        assert renderer.calls == []
        assert result.served_from_cache is True
        assert result.week == "2023-01-07"
        assert result.records == CACHED_RECORDS

    def test_miss_renders_results_page(self, manager, store, renderer):
        result = asyncio.run(manager.fetch_by_date("2024-09-07"))

        assert renderer.calls == ["https://ablefast.com/results/2024-09-07"]
        assert result.served_from_cache is False
        assert store.entries["2024-09-07"].payload["kind"] == "historical"

    def test_second_call_served_from_cache(self, manager, renderer):
        async def scenario():
            first = await manager.fetch_by_date("2024-09-07")
            second = await manager.fetch_by_date("2024-09-07")
            return first, second

        first, second = asyncio.run(scenario())

        assert len(renderer.calls) == 1
        assert first.served_from_cache is False
        assert second.served_from_cache is True
        assert second.records == first.records

    def test_current_key_by_name_keeps_ttl(self, manager, store, renderer):
        store.seed("current", _current_payload(), NOW - timedelta(minutes=11))

        result = asyncio.run(manager.fetch_by_date("current"))

        assert renderer.calls == ["https://ablefast.com/"]
        assert store.entries["current"].payload["kind"] == "current"
        assert result.served_from_cache is False

    def test_date_is_url_quoted(self, manager, renderer):
        asyncio.run(manager.fetch_by_date("../admin"))

        assert renderer.calls == ["https://ablefast.com/results/..%2Fadmin"]

    def test_custom_origin(self, store, renderer):
        manager = CacheManager(
            store=store, renderer=renderer, origin_base_url="http://origin.test/", clock=lambda: NOW
        )

        asyncio.run(manager.fetch_by_date("2024-09-07"))

        assert renderer.calls == ["http://origin.test/results/2024-09-07"]


# =============================================================================
# Single-flight
# =============================================================================

class TestSingleFlight:
    """Concurrent refetches for one key share a single render."""

    def test_ten_concurrent_current_calls_render_once(self, manager, renderer):
        async def scenario():
            return await asyncio.gather(*(manager.fetch_current() for _ in range(10)))

        results = asyncio.run(scenario())

        assert len(renderer.calls) == 1
        assert all(r.records == results[0].records for r in results)
        assert all(r.served_from_cache is False for r in results)

    def test_failure_broadcast_to_all_waiters(self, store):
        renderer = ScriptedRenderer(error=RenderError("origin down"))
        manager = CacheManager(store=store, renderer=renderer, clock=lambda: NOW)

        async def scenario():
            return await asyncio.gather(
                *(manager.fetch_current() for _ in range(5)), return_exceptions=True
            )

        results = asyncio.run(scenario())

        assert len(renderer.calls) == 1
        assert all(isinstance(r, RenderError) for r in results)

    def test_distinct_keys_render_independently(self, manager, renderer):
        async def scenario():
            await asyncio.gather(
                manager.fetch_current(),
                manager.fetch_by_date("2024-09-07"),
                manager.fetch_by_date("2024-08-31"),
            )

        asyncio.run(scenario())

        assert len(renderer.calls) == 3

    def test_slow_read_after_flight_finished_does_not_rerender(self, renderer):
        store = SlowReadStore()
        manager = CacheManager(store=store, renderer=renderer, clock=lambda: NOW)

        async def scenario():
            return await asyncio.gather(manager.fetch_current(), manager.fetch_current())

        first, second = asyncio.run(scenario())

        assert len(renderer.calls) == 1
        assert store.puts == ["current"]
        assert first.served_from_cache is False
        assert second.served_from_cache is True
        assert second.records == first.records

    def test_slow_read_of_date_does_not_rerender(self, renderer):
        store = SlowReadStore()
        manager = CacheManager(store=store, renderer=renderer, clock=lambda: NOW)

        async def scenario():
            return await asyncio.gather(
                manager.fetch_by_date("2024-09-07"), manager.fetch_by_date("2024-09-07")
            )

        first, second = asyncio.run(scenario())

        assert len(renderer.calls) == 1
        assert store.puts == ["2024-09-07"]
        assert second.source is CacheSource.FRESH

    def test_in_flight_table_empty_after_completion(self, manager):
        asyncio.run(manager.fetch_current())

        assert manager.get_stats()["coalescer"]["active_requests"] == 0


# =============================================================================
# Week discovery
# =============================================================================

class TestListAvailableWeeks:
    """Discovery is always live and reports failures distinctly."""

    def test_weeks_found(self, manager, store, renderer):
        discovery = asyncio.run(manager.list_available_weeks())

        assert discovery.status is DiscoveryStatus.OK
        assert discovery.weeks == [
            WeekOption(date="2024-09-07", label="Week 3"),
            WeekOption(date="2024-09-14", label="Week 4"),
        ]
        assert store.puts == []

    def test_always_renders_live(self, manager, renderer):
        async def scenario():
            await manager.list_available_weeks()
            await manager.list_available_weeks()

        asyncio.run(scenario())

        assert len(renderer.calls) == 2

    def test_empty_listing(self, store):
        manager = CacheManager(store=store, renderer=ScriptedRenderer(html="<html></html>"), clock=lambda: NOW)

        discovery = asyncio.run(manager.list_available_weeks())

        assert discovery.status is DiscoveryStatus.EMPTY
        assert discovery.weeks == []
        assert discovery.failed is False

    def test_render_failure_reported_not_raised(self, store):
        renderer = ScriptedRenderer(error=RenderError("browser launch failed"))
        manager = CacheManager(store=store, renderer=renderer, clock=lambda: NOW)

        discovery = asyncio.run(manager.list_available_weeks())

        assert discovery.status is DiscoveryStatus.FAILED
        assert discovery.failed is True
        assert discovery.weeks == []
        assert "browser launch failed" in discovery.error
        assert manager.get_stats()["discovery_failures"] == 1

    def test_waiter_timeout_reported_not_raised(self, store):
        renderer = ScriptedRenderer(delay=0.5)
        manager = CacheManager(store=store, renderer=renderer, coalesce_timeout=0.01, clock=lambda: NOW)

        discovery = asyncio.run(manager.list_available_weeks())

        assert discovery.status is DiscoveryStatus.FAILED
        assert "timed out" in discovery.error
        assert manager.get_stats()["discovery_failures"] == 1
