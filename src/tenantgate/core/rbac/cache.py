"""Process-local cache of expanded permission sets."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

DEFAULT_TTL_SECONDS = 15 * 60


@dataclass
class _CacheEntry:
    value: frozenset[str]
    expires_at: float


def cache_key(user_id: UUID) -> str:
    return f"UserPermissions_{user_id}"


class PermissionCache:
    """TTL cache keyed per user, with a registry of every key it has written.

    The registry lets ``clear`` drop every entry without enumerating an
    external keyspace, which is what mapping changes need.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._keys: set[str] = set()

    def get(self, user_id: UUID) -> frozenset[str] | None:
        """Cached permissions, or None when absent or expired."""
        key = cache_key(user_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            self._keys.discard(key)
            return None
        return entry.value

    def set(self, user_id: UUID, permissions: frozenset[str]) -> None:
        key = cache_key(user_id)
        self._entries[key] = _CacheEntry(value=permissions, expires_at=self._clock() + self._ttl)
        self._keys.add(key)

    def invalidate(self, user_id: UUID) -> None:
        key = cache_key(user_id)
        self._entries.pop(key, None)
        self._keys.discard(key)

    def clear(self) -> int:
        """Remove every registered key. Returns how many were removed."""
        removed = 0
        for key in list(self._keys):
            if self._entries.pop(key, None) is not None:
                removed += 1
        self._keys.clear()
        return removed

    def __len__(self) -> int:
        return len(self._keys)
