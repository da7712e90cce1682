import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from sentinel_aggregator.config import AppConfig
from sentinel_aggregator.domain import (
    FALLBACK_RECORDS,
    FALLBACK_WEATHER,
    SNAPSHOT_FIELDS,
    RefreshParams,
    Snapshot,
    SourceErrorReason,
    SourceKey,
    SourceResult,
)
from sentinel_aggregator.services.cache import TtlCache
from sentinel_aggregator.sources.base import SourceAdapter
from sentinel_aggregator.utils.errors import SourceError

logger = logging.getLogger(__name__)

STATIC_FALLBACKS: Dict[SourceKey, Any] = {
    SourceKey.NEWS: FALLBACK_RECORDS,
    SourceKey.THREAT_INTEL: FALLBACK_RECORDS,
    SourceKey.WEATHER: FALLBACK_WEATHER,
    SourceKey.SOCIAL_ALERTS: FALLBACK_RECORDS,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Aggregator:
    """Fans out one cached fetch per source and merges the results into a Snapshot."""

    def __init__(
        self,
        adapters: Mapping[SourceKey, SourceAdapter],
        cache: TtlCache,
        config: AppConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.adapters = dict(adapters)
        self.cache = cache
        self.config = config
        self.clock = clock
        self.metrics: Dict[str, int] = {}
        self._metrics_lock = threading.Lock()
        self._last_fetched_at: Optional[datetime] = None

    def _inc_metric(self, name: str, amount: int = 1):
        with self._metrics_lock:
            self.metrics[name] = self.metrics.get(name, 0) + amount

    def _load(self, adapter: SourceAdapter, params: RefreshParams) -> Any:
        def compute():
            result = adapter.fetch(params)
            if not result.ok:
                raise SourceError(result.error, result.detail or "fetch failed")
            return result.value

        return self.cache.get_or_compute(
            adapter.cache_key(params), compute, ttl=self.config.ttl_for(adapter.key)
        )

    def _collect(
        self, params: RefreshParams, keys: Optional[Iterable[SourceKey]] = None
    ) -> Dict[SourceKey, SourceResult]:
        results: Dict[SourceKey, SourceResult] = {}
        adapters = self.adapters if keys is None else {k: self.adapters[k] for k in keys if k in self.adapters}
        if not adapters:
            return results
        executor = ThreadPoolExecutor(max_workers=len(adapters), thread_name_prefix="source-fetch")
        started = time.monotonic()
        try:
            futures = {key: executor.submit(self._load, adapter, params) for key, adapter in adapters.items()}
            for key, future in futures.items():
                remaining = max(0.0, started + self.config.timeout_for(key) - time.monotonic())
                try:
                    results[key] = SourceResult.success(key, future.result(timeout=remaining))
                except FutureTimeout:
                    future.cancel()
                    logger.warning("Source fetch timed out", extra={"source": key.value, "reason": "timeout"})
                    results[key] = SourceResult.failure(key, SourceErrorReason.TIMEOUT, "deadline exceeded")
                except SourceError as exc:
                    results[key] = SourceResult.failure(key, exc.reason, str(exc))
                except Exception as exc:  # noqa: BLE001
                    logger.error("Source fetch crashed", extra={"source": key.value, "error": str(exc)}, exc_info=True)
                    results[key] = SourceResult.failure(key, SourceErrorReason.UNAVAILABLE, str(exc))
        finally:
            # Timed-out fetches keep running in the background and land in the cache if they succeed.
            executor.shutdown(wait=False)
        return results

    def _next_fetched_at(self) -> datetime:
        now = self.clock()
        with self._metrics_lock:
            if self._last_fetched_at is not None and now <= self._last_fetched_at:
                now = self._last_fetched_at + timedelta(microseconds=1)
            self._last_fetched_at = now
        return now

    def _resolve(
        self, key: SourceKey, result: Optional[SourceResult], params: RefreshParams
    ) -> Tuple[Any, Optional[SourceErrorReason], bool]:
        """Section value, error reason and stale flag for one source."""
        if result is not None and result.ok:
            return result.value, None, False
        reason = result.error if result is not None else SourceErrorReason.UNAVAILABLE
        self._inc_metric(f"source_failures_{key.value}")
        adapter = self.adapters.get(key)
        previous = self.cache.last_known(adapter.cache_key(params)) if adapter else None
        if previous is not None:
            return previous, reason, True
        return STATIC_FALLBACKS[key], reason, False

    @staticmethod
    def _section(key: SourceKey, value: Any) -> Any:
        return value if key == SourceKey.WEATHER else tuple(value)

    def refresh(self, params: Optional[RefreshParams] = None) -> Snapshot:
        params = params or RefreshParams()
        results = self._collect(params)
        sections: Dict[str, Any] = {}
        errors: Dict[SourceKey, SourceErrorReason] = {}
        stale = set()
        for key in SourceKey:
            value, reason, was_stale = self._resolve(key, results.get(key), params)
            sections[SNAPSHOT_FIELDS[key]] = self._section(key, value)
            if reason is not None:
                errors[key] = reason
            if was_stale:
                stale.add(key)
        self._inc_metric("refreshes")
        snapshot = Snapshot(
            fetched_at=self._next_fetched_at(),
            source_errors=frozenset(errors),
            error_reasons=MappingProxyType(errors),
            stale_sources=frozenset(stale),
            params=params,
            **sections,
        )
        if errors:
            logger.info(
                "Refresh completed with source errors",
                extra={"error": ",".join(sorted(k.value for k in errors))},
            )
        return snapshot

    def localize(self, snapshot: Snapshot, params: RefreshParams) -> Snapshot:
        """Copy of ``snapshot`` with its coordinate-dependent sections loaded for ``params``.

        Only parameterized sources are fetched (through the cache); every other
        section and ``fetched_at`` are carried over unchanged.
        """
        keys = [key for key, adapter in self.adapters.items() if adapter.parameterized]
        if params == snapshot.params or not keys:
            return snapshot
        results = self._collect(params, keys)
        sections: Dict[str, Any] = {}
        errors = dict(snapshot.error_reasons)
        stale = set(snapshot.stale_sources)
        for key in keys:
            value, reason, was_stale = self._resolve(key, results.get(key), params)
            sections[SNAPSHOT_FIELDS[key]] = self._section(key, value)
            errors.pop(key, None)
            stale.discard(key)
            if reason is not None:
                errors[key] = reason
            if was_stale:
                stale.add(key)
        return replace(
            snapshot,
            source_errors=frozenset(errors),
            error_reasons=MappingProxyType(errors),
            stale_sources=frozenset(stale),
            params=params,
            **sections,
        )
