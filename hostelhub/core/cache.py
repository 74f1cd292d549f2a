"""
In-process TTL caches used by the access gate.

Entries are evicted lazily on read and swept in bulk once the map grows past
``max_entries``. The caches are not shared between worker processes, so a
value may lag the database by at most its TTL.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

from hostelhub.core.config import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    value: Any
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


class TTLCache:
    def __init__(self, default_ttl: float, max_entries: int = 1000, clock: Optional[Clock] = None):
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock or time.monotonic
        self._entries: Dict[Hashable, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> Any:
        """Return the cached value, or None when the key is missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl=ttl)
        if len(self._entries) > self.max_entries:
            self.sweep()

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Cache sweep removed %d expired entries", len(expired))
        return len(expired)


class AccessCaches:
    """Admin-role and subscription caches shared by the gate and the payment handlers."""

    def __init__(self, admin: TTLCache, subscription: TTLCache):
        self.admin = admin
        self.subscription = subscription

    @classmethod
    def from_settings(cls, clock: Optional[Clock] = None) -> "AccessCaches":
        return cls(
            admin=TTLCache(
                settings.ADMIN_CACHE_TTL_SECONDS,
                max_entries=settings.CACHE_SWEEP_THRESHOLD,
                clock=clock,
            ),
            subscription=TTLCache(
                settings.SUBSCRIPTION_CACHE_TTL_SECONDS,
                max_entries=settings.CACHE_SWEEP_THRESHOLD,
                clock=clock,
            ),
        )

    def get_admin_status(self, user_id: str) -> Optional[bool]:
        return self.admin.get(f"admin:{user_id}")

    def set_admin_status(self, user_id: str, is_admin: bool) -> None:
        self.admin.set(f"admin:{user_id}", is_admin)

    def clear_admin_status(self, user_id: str) -> None:
        self.admin.delete(f"admin:{user_id}")

    def get_subscription(self, user_id: str) -> Any:
        return self.subscription.get(f"subscription:{user_id}")

    def set_subscription(self, user_id: str, snapshot: Any) -> None:
        self.subscription.set(f"subscription:{user_id}", snapshot)

    def clear_subscription(self, user_id: str) -> None:
        self.subscription.delete(f"subscription:{user_id}")
