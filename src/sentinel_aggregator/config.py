import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sentinel_aggregator.domain import SourceKey

DEFAULT_THREAT_KEYWORDS = ("attack", "missile", "conflict", "breach", "invasion")


def env_bool(key: str, default: bool = False) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def env_list(key: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    value = os.getenv(key)
    if not value:
        return tuple(default)
    return tuple(item.strip() for item in value.split(",") if item.strip())


def env_per_source(suffix: str) -> Dict[str, float]:
    values: Dict[str, float] = {}
    for source in SourceKey:
        raw = os.getenv(f"{source.value.upper()}_{suffix}")
        if raw:
            values[source.value] = float(raw)
    return values


@dataclass(frozen=True)
class AppConfig:
    database_url: str = field(
        default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./sentinel_aggregator.db")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    scheduler_enabled: bool = field(default_factory=lambda: env_bool("SCHEDULER_ENABLED", True))
    refresh_interval: int = field(default_factory=lambda: int(os.getenv("REFRESH_INTERVAL", "300")))
    default_ttl: float = field(default_factory=lambda: float(os.getenv("CACHE_TTL_SECONDS", "300")))
    default_timeout: float = field(default_factory=lambda: float(os.getenv("SOURCE_TIMEOUT_SECONDS", "10")))
    source_ttls: Dict[str, float] = field(default_factory=lambda: env_per_source("TTL_SECONDS"))
    source_timeouts: Dict[str, float] = field(default_factory=lambda: env_per_source("TIMEOUT_SECONDS"))
    threat_keywords: Tuple[str, ...] = field(
        default_factory=lambda: env_list("THREAT_KEYWORDS", DEFAULT_THREAT_KEYWORDS)
    )
    volume_threshold: int = field(default_factory=lambda: int(os.getenv("THREAT_VOLUME_THRESHOLD", "5")))
    rules_path: Optional[str] = field(default_factory=lambda: os.getenv("THREAT_RULES_PATH") or None)
    default_latitude: float = field(default_factory=lambda: float(os.getenv("DEFAULT_LATITUDE", "0")))
    default_longitude: float = field(default_factory=lambda: float(os.getenv("DEFAULT_LONGITUDE", "0")))
    news_query: str = field(default_factory=lambda: os.getenv("NEWS_QUERY", "global threats"))
    threat_intel_ips: Tuple[str, ...] = field(default_factory=lambda: env_list("THREAT_INTEL_IPS", ("8.8.8.8",)))
    threat_intel_max_age_days: int = field(
        default_factory=lambda: int(os.getenv("THREAT_INTEL_MAX_AGE_DAYS", "30"))
    )
    social_alert_feeds: Tuple[str, ...] = field(
        default_factory=lambda: env_list("SOCIAL_ALERT_FEEDS", ("https://www.gdacs.org/xml/rss.xml",))
    )

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls()

    def ttl_for(self, source: SourceKey) -> float:
        return self.source_ttls.get(source.value, self.default_ttl)

    def timeout_for(self, source: SourceKey) -> float:
        return self.source_timeouts.get(source.value, self.default_timeout)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "database_url": self.database_url,
            "log_level": self.log_level,
            "scheduler_enabled": self.scheduler_enabled,
            "refresh_interval": self.refresh_interval,
            "default_ttl": self.default_ttl,
            "default_timeout": self.default_timeout,
            "source_ttls": dict(self.source_ttls),
            "source_timeouts": dict(self.source_timeouts),
            "threat_keywords": list(self.threat_keywords),
            "volume_threshold": self.volume_threshold,
            "rules_path": self.rules_path,
            "default_latitude": self.default_latitude,
            "default_longitude": self.default_longitude,
            "news_query": self.news_query,
            "threat_intel_ips": list(self.threat_intel_ips),
            "threat_intel_max_age_days": self.threat_intel_max_age_days,
            "social_alert_feeds": list(self.social_alert_feeds),
        }

    def sources_summary(self) -> List[Dict[str, Any]]:
        return [
            {"source": source.value, "ttl_seconds": self.ttl_for(source), "timeout_seconds": self.timeout_for(source)}
            for source in SourceKey
        ]
