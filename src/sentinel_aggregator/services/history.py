import json
from typing import Any, Dict, List

from sqlalchemy import select

from sentinel_aggregator.domain import ScoredSnapshot
from sentinel_aggregator.models import RefreshRun
from sentinel_aggregator.utils.db import session_scope


def record_counts(scored: ScoredSnapshot) -> Dict[str, int]:
    snapshot = scored.snapshot
    return {
        "news": len(snapshot.news),
        "threats": len(snapshot.threats),
        "alerts": len(snapshot.alerts),
        "weather": 1 if snapshot.weather.available else 0,
    }


def record_refresh(session, scored: ScoredSnapshot, trigger: str) -> RefreshRun:
    snapshot = scored.snapshot
    run = RefreshRun(
        trigger=trigger,
        fetched_at=snapshot.fetched_at.replace(tzinfo=None),
        threat_level=scored.assessment.level.value,
        source_errors_json=json.dumps(sorted(k.value for k in snapshot.source_errors)),
        record_counts_json=json.dumps(record_counts(scored)),
        latitude=snapshot.params.latitude,
        longitude=snapshot.params.longitude,
    )
    session.add(run)
    session.flush()
    return run


def recent_runs(session, limit: int = 20) -> List[Dict[str, Any]]:
    stmt = select(RefreshRun).order_by(RefreshRun.fetched_at.desc(), RefreshRun.id.desc()).limit(limit)
    return [run.to_dict() for run in session.execute(stmt).scalars().all()]


def history_listener(Session):
    """Dispatcher listener that stores every completed refresh."""

    def listener(scored: ScoredSnapshot, trigger: str) -> None:
        with session_scope(Session) as session:
            record_refresh(session, scored, trigger)

    return listener
