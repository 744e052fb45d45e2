"""Cache entry domain entity."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CachePriority(str, Enum):
    """Eviction class of a cache entry. Low-priority entries are evicted first."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Eviction rank (lower is evicted earlier)."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    CachePriority.LOW: 0,
    CachePriority.MEDIUM: 1,
    CachePriority.HIGH: 2,
}


@dataclass(frozen=True)
class CacheEntryEntity:
    """Domain entity for a locally cached value.

    Attributes:
        key: Unique cache key (e.g. "patient:1")
        data: The cached value (any JSON-serializable value)
        created_at: Unix timestamp of the last write
        expires_at: Unix timestamp after which the entry is invisible
        tags: Labels used for bulk invalidation
        priority: Eviction class
        access_count: Number of successful reads since the last write
        last_accessed_at: Unix timestamp of the last successful read, if any
    """

    key: str
    data: Any
    created_at: float
    expires_at: float
    tags: frozenset[str] = field(default_factory=frozenset)
    priority: CachePriority = CachePriority.MEDIUM
    access_count: int = 0
    last_accessed_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check whether the entry has expired at the given time."""
        return self.expires_at <= now

    def eviction_key(self) -> tuple[int, float, int]:
        """Sort key for eviction: low priority, then least recently used, then least used."""
        return (self.priority.rank, self.last_accessed_at or 0.0, self.access_count)


class LookupStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    OFFLINE_MISS = "offline_miss"


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache read that distinguishes "not found" from "offline and uncached"."""

    key: str
    status: LookupStatus
    data: Any = None

    @property
    def is_hit(self) -> bool:
        return self.status is LookupStatus.HIT
