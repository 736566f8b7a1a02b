import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """Keyed expiring map: get/set/invalidate/clear with a fixed TTL.

    Caches are passed to the services that use them instead of living in
    module scope, so tests can control time and isolate instances.
    """

    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = ttl_seconds

    def get(self, key: Hashable) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: Hashable, value: Any):
        raise NotImplementedError

    def invalidate(self, key: Hashable):
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError


class InMemoryTTLCache(TTLCache):
    """Process-local TTL cache. Not shared between processes or instances."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, stored_at = entry
        if self._clock() - stored_at > self.ttl_seconds:
            # Expired entries are dropped on read
            del self._entries[key]
            return None
        return value

    def set(self, key: Hashable, value: Any):
        self._entries[key] = (value, self._clock())

    def invalidate(self, key: Hashable):
        self._entries.pop(key, None)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
