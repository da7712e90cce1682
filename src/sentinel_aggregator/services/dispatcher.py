import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, List, Optional

from sentinel_aggregator.domain import RefreshParams, ScoredSnapshot, Snapshot, ThreatAssessment
from sentinel_aggregator.services.aggregator import Aggregator
from sentinel_aggregator.utils.errors import NotReadyError

logger = logging.getLogger(__name__)

RefreshListener = Callable[[ScoredSnapshot, str], None]


class Dispatcher:
    """Owns the published snapshot and runs refreshes on request or on a timer.

    Every refresh aggregates for the default parameters and concurrent
    refreshes share one aggregator run. A caller asking for other coordinates
    gets the published snapshot with its coordinate-dependent sections loaded
    for those coordinates, so no caller ever sees a ``fetched_at`` ahead of the
    published one.
    """

    def __init__(
        self,
        aggregator: Aggregator,
        assess: Callable[[Snapshot], ThreatAssessment],
        default_params: Optional[RefreshParams] = None,
        listeners: Optional[List[RefreshListener]] = None,
    ):
        self.aggregator = aggregator
        self.assess = assess
        self.default_params = default_params or RefreshParams()
        self.listeners: List[RefreshListener] = list(listeners or [])
        self.metrics: Dict[str, int] = {"refreshes": 0, "coalesced": 0}
        self._current: Optional[ScoredSnapshot] = None
        self._inflight: Optional[Future] = None
        self._lock = threading.Lock()

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._current is not None

    def current(self) -> ScoredSnapshot:
        with self._lock:
            if self._current is None:
                raise NotReadyError("No snapshot has been produced yet", status_code=503)
            return self._current

    def add_listener(self, listener: RefreshListener) -> None:
        self.listeners.append(listener)

    def view(self, params: Optional[RefreshParams] = None) -> ScoredSnapshot:
        """Published snapshot as seen from ``params``; refreshes once on a cold start."""
        params = params or self.default_params
        if params == self.default_params:
            return self.current()
        with self._lock:
            scored = self._current
        if scored is None:
            return self.refresh(params)
        return self._localize(scored, params)

    def _localize(self, scored: ScoredSnapshot, params: RefreshParams) -> ScoredSnapshot:
        if params == scored.snapshot.params:
            return scored
        snapshot = self.aggregator.localize(scored.snapshot, params)
        return ScoredSnapshot(snapshot=snapshot, assessment=self.assess(snapshot))

    def _publish(self, scored: ScoredSnapshot) -> ScoredSnapshot:
        with self._lock:
            if self._current is None or scored.snapshot.fetched_at > self._current.snapshot.fetched_at:
                self._current = scored
            return self._current

    def _notify(self, scored: ScoredSnapshot, trigger: str) -> None:
        for listener in self.listeners:
            try:
                listener(scored, trigger)
            except Exception as exc:  # noqa: BLE001
                logger.error("Refresh listener failed", extra={"trigger": trigger, "error": str(exc)}, exc_info=True)

    def _refresh_published(self, trigger: str) -> ScoredSnapshot:
        with self._lock:
            future = self._inflight
            owner = future is None
            if owner:
                future = Future()
                self._inflight = future
                self.metrics["refreshes"] += 1
            else:
                self.metrics["coalesced"] += 1
        if not owner:
            return future.result()

        try:
            snapshot = self.aggregator.refresh(self.default_params)
            scored = self._publish(ScoredSnapshot(snapshot=snapshot, assessment=self.assess(snapshot)))
        except BaseException as exc:
            with self._lock:
                self._inflight = None
            future.set_exception(exc)
            raise
        with self._lock:
            self._inflight = None
        future.set_result(scored)
        logger.info(
            "Snapshot refreshed",
            extra={
                "trigger": trigger,
                "latitude": self.default_params.latitude,
                "longitude": self.default_params.longitude,
            },
        )
        self._notify(scored, trigger)
        return scored

    def refresh(self, params: Optional[RefreshParams] = None, trigger: str = "on_demand") -> ScoredSnapshot:
        scored = self._refresh_published(trigger)
        return self._localize(scored, params or self.default_params)
