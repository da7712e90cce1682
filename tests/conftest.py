import threading
import time

import pytest

from sentinel_aggregator.domain import SourceErrorReason, SourceKey, WeatherReading
from sentinel_aggregator.sources.base import SourceAdapter
from sentinel_aggregator.utils.errors import SourceError


class FakeAdapter(SourceAdapter):
    """Adapter returning queued outcomes; an exception instance in the queue is raised."""

    def __init__(self, key, outcomes=None, parameterized=False, gate=None):
        super().__init__()
        self.key = key
        self.parameterized = parameterized
        self.outcomes = list(outcomes or [])
        self.gate = gate
        self.calls = 0
        self.started = threading.Event()
        self._lock = threading.Lock()

    def _fetch(self, params):
        with self._lock:
            self.calls += 1
            # The last queued outcome repeats.
            if len(self.outcomes) > 1:
                outcome = self.outcomes.pop(0)
            else:
                outcome = self.outcomes[0] if self.outcomes else ()
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def failure(reason=SourceErrorReason.UNAVAILABLE):
    return SourceError(reason, f"fake {reason.value}")


@pytest.fixture
def make_adapters():
    def factory(**overrides):
        adapters = {
            SourceKey.NEWS: FakeAdapter(SourceKey.NEWS, [()]),
            SourceKey.THREAT_INTEL: FakeAdapter(SourceKey.THREAT_INTEL, [()]),
            SourceKey.WEATHER: FakeAdapter(
                SourceKey.WEATHER, [WeatherReading(latitude=0.0, longitude=0.0, temperature=21.5)], parameterized=True
            ),
            SourceKey.SOCIAL_ALERTS: FakeAdapter(SourceKey.SOCIAL_ALERTS, [()]),
        }
        adapters.update(overrides)
        return adapters

    return factory


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.005)
