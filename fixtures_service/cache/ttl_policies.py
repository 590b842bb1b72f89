"""
TTL configuration and key-to-policy mapping.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from .core import CURRENT_KEY, CacheEntry


class KeyClass(Enum):
    """Classes of cache keys with different freshness rules."""
    CURRENT = "current"         # This week's fixtures, change often
    HISTORICAL = "historical"   # A past week, never changes once played


@dataclass(frozen=True)
class CachePolicy:
    """Freshness rule for one key class."""
    key_class: KeyClass
    ttl_seconds: Optional[int]  # None = never expires


# Freshness by key class (in seconds)
TTL_CONFIG: Dict[KeyClass, CachePolicy] = {
    KeyClass.CURRENT: CachePolicy(KeyClass.CURRENT, ttl_seconds=600),          # 10 minutes
    KeyClass.HISTORICAL: CachePolicy(KeyClass.HISTORICAL, ttl_seconds=None),  # permanent
}


def get_policy(key_class: KeyClass, current_ttl_seconds: Optional[int] = None) -> CachePolicy:
    """
    Get the cache policy for a key class.

    Args:
        key_class: The key class
        current_ttl_seconds: Override for the "current" TTL (from settings)

    Returns:
        CachePolicy for that class
    """
    policy = TTL_CONFIG[key_class]
    if key_class is KeyClass.CURRENT and current_ttl_seconds is not None:
        return CachePolicy(KeyClass.CURRENT, ttl_seconds=current_ttl_seconds)
    return policy


def get_key_class(key: str) -> KeyClass:
    """Every key other than "current" is a historical date key."""
    if key == CURRENT_KEY:
        return KeyClass.CURRENT
    return KeyClass.HISTORICAL


def is_fresh(entry: CacheEntry, policy: CachePolicy, now: datetime) -> bool:
    """
    Decide whether a cached entry can be served without refetching.

    Fresh means strictly younger than the TTL; an entry exactly at the TTL
    is stale. Policies without a TTL never expire.
    """
    if policy.ttl_seconds is None:
        return True
    return entry.age_seconds(now) < policy.ttl_seconds
