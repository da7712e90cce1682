from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from sentinel_aggregator.domain import (
    FALLBACK_WEATHER,
    RefreshParams,
    ScoredSnapshot,
    Snapshot,
    SourceKey,
    ThreatAssessment,
    ThreatLevel,
)
from sentinel_aggregator.models import Base
from sentinel_aggregator.services.history import record_refresh, recent_runs


def setup_session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)()


def scored_at(fetched_at, level=ThreatLevel.LOW, errors=frozenset()):
    snapshot = Snapshot(
        news=({"title": "a"}, {"title": "b"}),
        threats=(),
        weather=FALLBACK_WEATHER,
        alerts=({"title": "c"},),
        fetched_at=fetched_at,
        source_errors=frozenset(errors),
        params=RefreshParams(10.0, 20.0),
    )
    return ScoredSnapshot(snapshot=snapshot, assessment=ThreatAssessment(level=level, message=""))


def test_record_and_list_recent_runs():
    session = setup_session()
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    record_refresh(session, scored_at(now - timedelta(minutes=5)), "scheduled")
    record_refresh(session, scored_at(now, ThreatLevel.HIGH, {SourceKey.WEATHER}), "on_demand")
    session.commit()
    runs = recent_runs(session, limit=10)
    assert [r["trigger"] for r in runs] == ["on_demand", "scheduled"]
    assert runs[0]["threat_level"] == "HIGH"
    assert runs[0]["source_errors"] == ["weather"]
    assert runs[0]["record_counts"] == {"news": 2, "threats": 0, "alerts": 1, "weather": 0}
    assert runs[0]["latitude"] == 10.0


def test_recent_runs_respects_limit():
    session = setup_session()
    start = datetime(2024, 5, 1, tzinfo=timezone.utc)
    for i in range(5):
        record_refresh(session, scored_at(start + timedelta(minutes=i)), "scheduled")
    session.commit()
    assert len(recent_runs(session, limit=3)) == 3
