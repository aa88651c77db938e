import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")


class LRUTTLCache(Generic[V]):
    """
    Bounded LRU cache whose entries also expire after ``ttl`` seconds.

    Expiry is passive: a stale entry is dropped when it is touched, or in
    bulk by ``purge_stale()``. Inserting into a full cache evicts the least
    recently used entry.

    Args:
        max_size: Maximum number of entries
        ttl: Entry lifetime in seconds
        timer: Monotonic clock returning seconds
        update_age_on_get: Restart an entry's TTL on every successful get
    """

    def __init__(self, max_size: int, ttl: float,
                 timer: Callable[[], float] = time.monotonic,
                 update_age_on_get: bool = False):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        self.max_size = max_size
        self.ttl = ttl
        self._timer = timer
        self._update_age_on_get = update_age_on_get
        self._entries: "OrderedDict[Hashable, Tuple[V, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return self.has(key)

    def _is_stale(self, stored_at: float, now: float) -> bool:
        return now - stored_at >= self.ttl

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return default

        value, stored_at = entry
        now = self._timer()
        if self._is_stale(stored_at, now):
            del self._entries[key]
            return default

        self._entries.move_to_end(key)
        if self._update_age_on_get:
            self._entries[key] = (value, now)
        return value

    def has(self, key: Hashable) -> bool:
        """Check presence without touching recency or age"""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._is_stale(entry[1], self._timer()):
            del self._entries[key]
            return False
        return True

    def set(self, key: Hashable, value: V) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            self.purge_stale()
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)

        self._entries[key] = (value, self._timer())

    def delete(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def purge_stale(self) -> int:
        """Drop every expired entry, returns how many were removed"""
        now = self._timer()
        stale = [k for k, (_, stored_at) in self._entries.items()
                 if self._is_stale(stored_at, now)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def values(self) -> Any:
        return [value for value, _ in self._entries.values()]
