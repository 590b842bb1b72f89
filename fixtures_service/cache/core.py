"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter

from fixtures_service.schemas import ScheduleRecord, WeekOption


CURRENT_KEY = "current"


class CacheSource(Enum):
    """Where a returned result came from."""
    FRESH = "fresh"         # Within TTL (or a permanent historical entry)
    STALE = "stale"         # Past TTL, served because the refetch failed
    UPSTREAM = "upstream"   # Rendered from the origin site


class DiscoveryStatus(Enum):
    """Outcome of a live week discovery."""
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class CacheEntry:
    """
    A persisted cache row as seen by the orchestrator.
    """
    key: str
    payload: Any
    last_fetched: datetime

    def age_seconds(self, now: datetime) -> float:
        """Seconds since the entry was written."""
        return (now - self.last_fetched).total_seconds()


class CurrentSnapshot(BaseModel):
    """Payload stored under the "current" key; expires after the TTL."""
    kind: Literal["current"] = "current"
    records: List[ScheduleRecord]
    fetched_at: datetime


class HistoricalSnapshot(BaseModel):
    """Payload stored under a date key; valid forever once written."""
    kind: Literal["historical"] = "historical"
    records: List[ScheduleRecord]


CachePayload = Annotated[
    Union[CurrentSnapshot, HistoricalSnapshot],
    Field(discriminator="kind"),
]

payload_adapter: TypeAdapter = TypeAdapter(CachePayload)


@dataclass
class FetchResult:
    """Records for one week, returned to callers and never persisted as-is."""
    week: str
    records: List[ScheduleRecord]
    served_from_cache: bool
    source: CacheSource = CacheSource.UPSTREAM

    def to_dict(self) -> dict:
        """Convert to the API response shape."""
        return {
            "week": self.week,
            "fixtures": [record.model_dump() for record in self.records],
            "cached": self.served_from_cache,
        }


@dataclass
class WeekDiscovery:
    """
    Result of a live week discovery.

    An empty list on its own is ambiguous; the status tells a genuine
    "no weeks listed" apart from "discovery failed".
    """
    status: DiscoveryStatus
    weeks: List[WeekOption] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status is DiscoveryStatus.FAILED


class CacheBackend(Protocol):
    """What the orchestrator needs from the cache store."""

    async def get(self, key: str) -> Optional[CacheEntry]:
        ...

    async def put(self, key: str, payload: Any) -> None:
        ...


class PageRenderer(Protocol):
    """What the orchestrator needs from the render fetcher."""

    async def render(self, url: str, wait_selector: Optional[str] = None) -> str:
        ...
