"""Per-key TTL cache with single-flight computation.

Entries are checked for expiry on read; an expired entry is a miss for
``get_or_compute`` but stays in place until replaced so ``last_known`` can hand
it out as a stale fallback. Plain keys are one entry per source. Tuple keys
(one per coordinate cell for weather) are bounded on write: storing one drops
its expired siblings and then the oldest live ones beyond
``max_entries_per_source``. There is no background sweep.
"""

import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Mapping, Optional


@dataclass(frozen=True)
class CacheEntry:
    key: Hashable
    value: Any
    expires_at: float


def _base_key(key: Hashable) -> Hashable:
    # Parameterized keys are tuples led by their source; TTLs are configured per source.
    if isinstance(key, tuple) and key:
        return key[0]
    return key


class TtlCache:
    def __init__(
        self,
        default_ttl: float = 300.0,
        ttls: Optional[Mapping[Hashable, float]] = None,
        clock: Callable[[], float] = time.monotonic,
        max_entries_per_source: int = 64,
    ):
        self.default_ttl = default_ttl
        self.ttls = dict(ttls or {})
        self.clock = clock
        self.max_entries_per_source = max_entries_per_source
        self.stats: Dict[str, int] = {"hits": 0, "misses": 0, "coalesced": 0}
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._inflight: Dict[Hashable, Future] = {}
        self._lock = threading.Lock()

    def ttl_for(self, key: Hashable) -> float:
        return self.ttls.get(_base_key(key), self.default_ttl)

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= self.clock():
                return None
            return entry.value

    def last_known(self, key: Hashable) -> Optional[Any]:
        """Most recent successful value for ``key``, expired or not."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.value if entry else None

    def _store(self, key: Hashable, value: Any, lifetime: float) -> None:
        # Caller holds the lock.
        now = self.clock()
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(key=key, value=value, expires_at=now + lifetime)
        if not isinstance(key, tuple):
            return
        base = _base_key(key)
        siblings = [k for k in self._entries if k != key and _base_key(k) == base]
        live = []
        for sibling in siblings:
            if self._entries[sibling].expires_at <= now:
                del self._entries[sibling]
            else:
                live.append(sibling)
        # Insertion order is store order, so the head of ``live`` is the oldest.
        for sibling in live[: max(0, len(live) + 1 - self.max_entries_per_source)]:
            del self._entries[sibling]

    def get_or_compute(self, key: Hashable, compute_fn: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """Return the fresh value for ``key``, computing it at most once across concurrent callers.

        A ``compute_fn`` that raises is not cached: the owner and every waiter
        get the exception and the next call computes again.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at > self.clock():
                self.stats["hits"] += 1
                return entry.value
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                self.stats["misses"] += 1
                future = Future()
                self._inflight[key] = future
            else:
                self.stats["coalesced"] += 1

        if not owner:
            return future.result()

        try:
            value = compute_fn()
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(exc)
            raise

        lifetime = ttl if ttl is not None else self.ttl_for(key)
        with self._lock:
            self._store(key, value, lifetime)
            self._inflight.pop(key, None)
        future.set_result(value)
        return value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
