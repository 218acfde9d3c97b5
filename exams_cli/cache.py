import threading
import time
from contextlib import contextmanager
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Hashable,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
)

V = TypeVar("V")

_MISSING = object()


class TTLCache(Generic[V]):
    """
    Small thread-safe cache with a per-entry time to live and a size bound.

    Owners are expected to call `invalidate`/`clear` from the mutations that
    make an entry stale; the TTL only bounds how long a missed invalidation
    can be observed.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Optional[V] = None) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: V, ttl_seconds: Optional[float] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[key] = (self._clock() + ttl, value)

    def get_or_load(self, key: Hashable, loader: Callable[[], V]) -> V:
        value: Any = self.get(key, _MISSING)  # type: ignore[arg-type]
        if value is not _MISSING:
            return value
        value = loader()
        self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING  # type: ignore[arg-type]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict(self) -> None:
        # Expired entries first, then the one closest to expiry.
        now = self._clock()
        expired = [k for k, (exp, _) in self._entries.items() if exp <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]


class KeyedLocks:
    """
    One reentrant lock per key, handed out on demand.

    A key's lock exists only while some thread holds or waits for it.
    `hold_many` acquires in sorted key order, so callers that lock several
    keys cannot deadlock each other.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, threads holding or waiting]
        self._locks: Dict[Hashable, List[Any]] = {}

    def _checkout(self, key: Hashable) -> Any:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.RLock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold_many(self, keys: Iterable[Hashable]) -> Iterator[None]:
        ordered = sorted(set(keys))
        locks = [self._checkout(key) for key in ordered]
        held = []
        try:
            for lock in locks:
                lock.acquire()
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()
            for key in ordered:
                self._checkin(key)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self.hold_many([key]):
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
