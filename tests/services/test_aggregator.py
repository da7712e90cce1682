import threading
from datetime import datetime, timezone

from conftest import FakeAdapter, failure
from sentinel_aggregator.config import AppConfig
from sentinel_aggregator.domain import (
    FALLBACK_WEATHER,
    RefreshParams,
    SourceErrorReason,
    SourceKey,
    WeatherReading,
)
from sentinel_aggregator.services.aggregator import Aggregator
from sentinel_aggregator.services.cache import TtlCache


def fixed_clock(value=datetime(2024, 1, 1, tzinfo=timezone.utc)):
    return lambda: value


def test_all_sources_succeed(make_adapters):
    news = FakeAdapter(SourceKey.NEWS, [({"title": "Calm day", "description": ""},)])
    aggregator = Aggregator(make_adapters(**{SourceKey.NEWS: news}), TtlCache(), AppConfig())
    snapshot = aggregator.refresh(RefreshParams())
    assert snapshot.news == ({"title": "Calm day", "description": ""},)
    assert snapshot.threats == ()
    assert snapshot.alerts == ()
    assert snapshot.weather.temperature == 21.5
    assert snapshot.source_errors == frozenset()
    assert snapshot.stale_sources == frozenset()


def test_failed_source_gets_static_fallback_on_cold_cache(make_adapters):
    adapters = make_adapters(
        **{
            SourceKey.THREAT_INTEL: FakeAdapter(SourceKey.THREAT_INTEL, [failure(SourceErrorReason.DENIED)]),
            SourceKey.WEATHER: FakeAdapter(SourceKey.WEATHER, [failure()], parameterized=True),
        }
    )
    snapshot = Aggregator(adapters, TtlCache(), AppConfig()).refresh(RefreshParams())
    assert snapshot.threats == ()
    assert snapshot.weather == FALLBACK_WEATHER
    assert snapshot.source_errors == {SourceKey.THREAT_INTEL, SourceKey.WEATHER}
    assert snapshot.error_reasons[SourceKey.THREAT_INTEL] == SourceErrorReason.DENIED
    assert snapshot.error_reasons[SourceKey.WEATHER] == SourceErrorReason.UNAVAILABLE


def test_failed_fetch_and_empty_success_are_distinct(make_adapters):
    adapters = make_adapters(**{SourceKey.NEWS: FakeAdapter(SourceKey.NEWS, [failure()])})
    snapshot = Aggregator(adapters, TtlCache(), AppConfig()).refresh(RefreshParams())
    # Both sections are empty, only the failed one is flagged.
    assert snapshot.news == () and snapshot.alerts == ()
    assert SourceKey.NEWS in snapshot.source_errors
    assert SourceKey.SOCIAL_ALERTS not in snapshot.source_errors


def test_failure_after_expiry_reuses_stale_value(make_adapters):
    now = [0.0]
    cache = TtlCache(default_ttl=300, clock=lambda: now[0])
    news = FakeAdapter(SourceKey.NEWS, [({"title": "first"},), failure()])
    aggregator = Aggregator(make_adapters(**{SourceKey.NEWS: news}), cache, AppConfig(source_ttls={"news": 10}))
    aggregator.refresh(RefreshParams())
    now[0] = 11.0
    snapshot = aggregator.refresh(RefreshParams())
    assert news.calls == 2
    assert snapshot.news == ({"title": "first"},)
    assert snapshot.source_errors == {SourceKey.NEWS}
    assert snapshot.stale_sources == {SourceKey.NEWS}


def test_cached_sources_are_not_refetched(make_adapters):
    adapters = make_adapters()
    aggregator = Aggregator(adapters, TtlCache(), AppConfig())
    aggregator.refresh(RefreshParams())
    aggregator.refresh(RefreshParams())
    assert all(adapter.calls == 1 for adapter in adapters.values())


def test_weather_is_cached_per_coordinates(make_adapters):
    adapters = make_adapters()
    aggregator = Aggregator(adapters, TtlCache(), AppConfig())
    aggregator.refresh(RefreshParams(0.0, 0.0))
    aggregator.refresh(RefreshParams(51.5, -0.1))
    assert adapters[SourceKey.WEATHER].calls == 2
    assert adapters[SourceKey.NEWS].calls == 1


def test_weather_timeout_falls_back_then_recovers(make_adapters):
    gate = threading.Event()
    weather = FakeAdapter(
        SourceKey.WEATHER, [WeatherReading(latitude=0.0, longitude=0.0, temperature=12.0)], parameterized=True, gate=gate
    )
    config = AppConfig(source_timeouts={"weather": 0.05})
    aggregator = Aggregator(make_adapters(**{SourceKey.WEATHER: weather}), TtlCache(), config)

    first = aggregator.refresh(RefreshParams())
    assert first.weather == FALLBACK_WEATHER
    assert first.error_reasons[SourceKey.WEATHER] == SourceErrorReason.TIMEOUT
    assert SourceKey.NEWS not in first.source_errors

    gate.set()
    weather.gate = None
    second = aggregator.refresh(RefreshParams())
    assert second.weather.temperature == 12.0
    assert SourceKey.WEATHER not in second.source_errors


def test_unexpected_adapter_error_never_escapes(make_adapters):
    class Exploding(FakeAdapter):
        def fetch(self, params):
            raise RuntimeError("boom")

    adapters = make_adapters(**{SourceKey.SOCIAL_ALERTS: Exploding(SourceKey.SOCIAL_ALERTS)})
    snapshot = Aggregator(adapters, TtlCache(), AppConfig()).refresh(RefreshParams())
    assert snapshot.alerts == ()
    assert snapshot.error_reasons[SourceKey.SOCIAL_ALERTS] == SourceErrorReason.UNAVAILABLE


def test_missing_adapter_is_reported_with_fallback(make_adapters):
    adapters = make_adapters()
    del adapters[SourceKey.SOCIAL_ALERTS]
    snapshot = Aggregator(adapters, TtlCache(), AppConfig()).refresh(RefreshParams())
    assert snapshot.alerts == ()
    assert SourceKey.SOCIAL_ALERTS in snapshot.source_errors


def test_merge_is_keyed_not_ordered_by_completion(make_adapters):
    gate = threading.Event()
    slow_news = FakeAdapter(SourceKey.NEWS, [({"title": "slow news"},)], gate=gate)
    threats = FakeAdapter(SourceKey.THREAT_INTEL, [({"signature": "1.2.3.4"},)])
    adapters = make_adapters(**{SourceKey.NEWS: slow_news, SourceKey.THREAT_INTEL: threats})
    threading.Timer(0.05, gate.set).start()
    snapshot = Aggregator(adapters, TtlCache(), AppConfig()).refresh(RefreshParams())
    assert snapshot.news == ({"title": "slow news"},)
    assert snapshot.threats == ({"signature": "1.2.3.4"},)


def test_fetched_at_strictly_increases_with_frozen_clock(make_adapters):
    aggregator = Aggregator(make_adapters(), TtlCache(), AppConfig(), clock=fixed_clock())
    first = aggregator.refresh(RefreshParams())
    second = aggregator.refresh(RefreshParams())
    assert second.fetched_at > first.fetched_at
    assert aggregator.metrics["refreshes"] == 2


def test_nearby_coordinates_share_one_weather_entry(make_adapters):
    adapters = make_adapters()
    aggregator = Aggregator(adapters, TtlCache(), AppConfig())
    aggregator.refresh(RefreshParams(51.5071, -0.1276))
    aggregator.refresh(RefreshParams(51.5072, -0.1277))
    assert adapters[SourceKey.WEATHER].calls == 1


def test_cache_stays_bounded_across_many_coordinates(make_adapters):
    now = [0.0]
    cache = TtlCache(default_ttl=1, clock=lambda: now[0])
    aggregator = Aggregator(make_adapters(), cache, AppConfig(default_ttl=1))
    for i in range(200):
        now[0] += 2
        aggregator.refresh(RefreshParams(10 + i * 0.001, 20.0))
    assert len(cache) <= 10


def test_localize_swaps_weather_and_keeps_fetched_at(make_adapters):
    weather = FakeAdapter(
        SourceKey.WEATHER,
        [WeatherReading(temperature=21.5), failure(SourceErrorReason.TIMEOUT)],
        parameterized=True,
    )
    adapters = make_adapters(**{SourceKey.WEATHER: weather})
    aggregator = Aggregator(adapters, TtlCache(), AppConfig(), clock=fixed_clock())
    published = aggregator.refresh(RefreshParams(0.0, 0.0))
    local = aggregator.localize(published, RefreshParams(48.85, 2.35))
    assert local.fetched_at == published.fetched_at
    assert local.params == RefreshParams(48.85, 2.35)
    assert local.news == published.news
    assert local.weather == FALLBACK_WEATHER
    assert dict(local.error_reasons) == {SourceKey.WEATHER: SourceErrorReason.TIMEOUT}
    assert local.source_errors == {SourceKey.WEATHER}
    assert adapters[SourceKey.NEWS].calls == 1
    assert aggregator.localize(published, RefreshParams(0.0, 0.0)) is published
