"""Domain types shared by the adapters, the aggregator and the dispatcher.

Records coming out of the source adapters are plain dicts; everything that
travels between components (results, snapshots, assessments) is a frozen
dataclass so a published snapshot can be handed to any thread as-is.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

Record = Dict[str, Any]


class SourceKey(str, Enum):
    NEWS = "news"
    THREAT_INTEL = "threat_intel"
    WEATHER = "weather"
    SOCIAL_ALERTS = "social_alerts"


class SourceErrorReason(str, Enum):
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    DENIED = "denied"


class ThreatLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _LEVEL_RANKS[self]


_LEVEL_RANKS = {ThreatLevel.LOW: 0, ThreatLevel.MEDIUM: 1, ThreatLevel.HIGH: 2}


@dataclass(frozen=True)
class RefreshParams:
    latitude: float = 0.0
    longitude: float = 0.0


@dataclass(frozen=True)
class WeatherReading:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    temperature: Optional[float] = None
    windspeed: Optional[float] = None
    winddirection: Optional[float] = None
    weathercode: Optional[int] = None
    observed_at: Optional[str] = None
    available: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Used for a source's field when it failed and nothing was ever cached for it.
FALLBACK_WEATHER = WeatherReading(available=False)
FALLBACK_RECORDS: Tuple[Record, ...] = ()

# Snapshot attribute holding each source's section.
SNAPSHOT_FIELDS = {
    SourceKey.NEWS: "news",
    SourceKey.THREAT_INTEL: "threats",
    SourceKey.WEATHER: "weather",
    SourceKey.SOCIAL_ALERTS: "alerts",
}


@dataclass(frozen=True)
class SourceResult:
    """Outcome of one adapter call.

    ``value`` is a tuple of records for list-shaped sources and a
    ``WeatherReading`` for the weather source. A failed call carries an
    ``error`` reason and no value.
    """

    source: SourceKey
    value: Any = None
    error: Optional[SourceErrorReason] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, source: SourceKey, value: Any) -> "SourceResult":
        return cls(source=source, value=value)

    @classmethod
    def failure(cls, source: SourceKey, reason: SourceErrorReason, detail: str = "") -> "SourceResult":
        return cls(source=source, error=reason, detail=detail)


def _records_to_list(records: Tuple[Record, ...]):
    return [dict(r) for r in records]


@dataclass(frozen=True)
class Snapshot:
    news: Tuple[Record, ...]
    threats: Tuple[Record, ...]
    weather: WeatherReading
    alerts: Tuple[Record, ...]
    fetched_at: datetime
    source_errors: FrozenSet[SourceKey] = frozenset()
    error_reasons: Mapping[SourceKey, SourceErrorReason] = field(default_factory=dict)
    stale_sources: FrozenSet[SourceKey] = frozenset()
    params: RefreshParams = field(default_factory=RefreshParams)

    def section(self, source: SourceKey) -> Any:
        return getattr(self, SNAPSHOT_FIELDS[source])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "news": _records_to_list(self.news),
            "threats": _records_to_list(self.threats),
            "weather": self.weather.to_dict(),
            "alerts": _records_to_list(self.alerts),
            "fetched_at": self.fetched_at.isoformat(),
            "source_errors": sorted(k.value for k in self.source_errors),
            "error_reasons": {k.value: v.value for k, v in sorted(self.error_reasons.items())},
            "stale_sources": sorted(k.value for k in self.stale_sources),
            "params": {"latitude": self.params.latitude, "longitude": self.params.longitude},
        }


@dataclass(frozen=True)
class ThreatAssessment:
    level: ThreatLevel
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level.value, "message": self.message}


@dataclass(frozen=True)
class ScoredSnapshot:
    snapshot: Snapshot
    assessment: ThreatAssessment

    def to_dict(self) -> Dict[str, Any]:
        return {"snapshot": self.snapshot.to_dict(), "assessment": self.assessment.to_dict()}
