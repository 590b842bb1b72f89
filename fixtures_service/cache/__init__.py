"""
Fetch-through caching with per-key TTL policies and request coalescing.
"""
from .core import (
    CURRENT_KEY,
    CacheEntry,
    CacheSource,
    CurrentSnapshot,
    DiscoveryStatus,
    FetchResult,
    HistoricalSnapshot,
    WeekDiscovery,
)
from .ttl_policies import (
    TTL_CONFIG,
    CachePolicy,
    KeyClass,
    get_key_class,
    get_policy,
    is_fresh,
)
from .coalescer import RequestCoalescer
from .manager import CacheManager

__all__ = [
    # Core types
    "CURRENT_KEY",
    "CacheEntry",
    "CacheSource",
    "CurrentSnapshot",
    "HistoricalSnapshot",
    "FetchResult",
    "WeekDiscovery",
    "DiscoveryStatus",
    # TTL policies
    "TTL_CONFIG",
    "CachePolicy",
    "KeyClass",
    "get_key_class",
    "get_policy",
    "is_fresh",
    # Coalescing
    "RequestCoalescer",
    # Manager
    "CacheManager",
]
