"""In-memory key/value cache with per-entry expiry."""

import time
from typing import Callable, Generic, Optional, TypeVar

V = TypeVar("V")


class ExpiringCache(Generic[V]):
    """
    Entries are dropped lazily on access and by purge_expired().

    Not shared between processes; a value added on one worker is not
    visible to another.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[V, float]] = {}

    def add(self, key: str, value: V, ttl_seconds: float) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def get(self, key: str) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def pop(self, key: str) -> Optional[V]:
        """Get and remove; each value can be consumed once."""
        value = self.get(key)
        self._entries.pop(key, None)
        return value

    def purge_expired(self) -> int:
        """Remove every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
