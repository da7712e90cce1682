from datetime import datetime, timezone
from pathlib import Path

import pytest

from sentinel_aggregator.config import AppConfig
from sentinel_aggregator.domain import FALLBACK_WEATHER, Snapshot, SourceKey, ThreatLevel
from sentinel_aggregator.services.scorer import KeywordRule, VolumeRule, assess, build_rules, load_rules
from sentinel_aggregator.utils.errors import ConfigError

RULES = build_rules(AppConfig(threat_keywords=("attack", "missile", "conflict", "breach", "invasion")))


def make_snapshot(news=(), threats=(), alerts=(), errors=frozenset()):
    return Snapshot(
        news=tuple(news),
        threats=tuple(threats),
        weather=FALLBACK_WEATHER,
        alerts=tuple(alerts),
        fetched_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        source_errors=frozenset(errors),
    )


def test_empty_sources_are_low_with_empty_message():
    assessment = assess(make_snapshot(), RULES)
    assert assessment.level == ThreatLevel.LOW
    assert assessment.message == ""


def test_keyword_in_news_is_high_regardless_of_other_sources():
    snapshot = make_snapshot(
        news=[{"title": "Missile strike reported", "description": ""}],
        errors={SourceKey.THREAT_INTEL, SourceKey.WEATHER, SourceKey.SOCIAL_ALERTS},
    )
    assessment = assess(snapshot, RULES)
    assert assessment.level == ThreatLevel.HIGH
    assert assessment.message == "High threat detected!"


def test_keyword_match_is_case_insensitive_substring_in_threats():
    snapshot = make_snapshot(threats=[{"signature": "10.0.0.1", "description": "Credential BREACHES observed"}])
    assert assess(snapshot, RULES).level == ThreatLevel.HIGH


def test_volume_above_threshold_without_keyword_is_medium():
    news = [{"title": f"Markets update {i}"} for i in range(4)]
    threats = [{"signature": f"10.0.0.{i}"} for i in range(2)]
    assert assess(make_snapshot(news=news, threats=threats), RULES).level == ThreatLevel.MEDIUM
    assert assess(make_snapshot(news=news[:3], threats=threats), RULES).level == ThreatLevel.LOW


def test_alerts_are_ignored_by_default_rules():
    alerts = [{"title": "Invasion of locusts"} for _ in range(10)]
    assert assess(make_snapshot(alerts=alerts), RULES).level == ThreatLevel.LOW


def test_non_string_fields_are_not_scanned():
    snapshot = make_snapshot(threats=[{"signature": "1.1.1.1", "confidence": 100}])
    assert assess(snapshot, [KeywordRule(keywords=("100",))]).level == ThreatLevel.LOW


def test_identical_snapshots_yield_identical_assessments():
    news = [{"title": "Conflict escalates"}]
    first = assess(make_snapshot(news=news), RULES)
    second = assess(make_snapshot(news=list(news)), RULES)
    assert first == second


def test_custom_rule_set_is_swappable():
    rules = [VolumeRule(threshold=0, level=ThreatLevel.HIGH, sections=("alerts",))]
    assert assess(make_snapshot(alerts=[{"title": "Flood"}]), rules).level == ThreatLevel.HIGH


def test_load_rules_from_yaml(tmp_path):
    path = tmp_path / "rules.yml"
    path.write_text(
        "rules:\n"
        "  - kind: keyword\n"
        "    keywords: [cyclone]\n"
        "    sections: [alerts]\n"
        "  - kind: volume\n"
        "    level: high\n"
        "    threshold: 2\n",
        encoding="utf-8",
    )
    rules = load_rules(str(path))
    assert rules[0] == KeywordRule(keywords=("cyclone",), level=ThreatLevel.HIGH, sections=("alerts",))
    assert rules[1] == VolumeRule(threshold=2, level=ThreatLevel.HIGH)


def test_load_rules_rejects_unknown_kind(tmp_path):
    path = tmp_path / "rules.yml"
    path.write_text("rules:\n  - kind: sentiment\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_rules(str(path))


def test_shipped_rules_file_matches_defaults():
    path = Path(__file__).resolve().parents[2] / "config" / "threat_rules.yml"
    assert load_rules(str(path)) == RULES


@pytest.mark.parametrize(
    "body",
    [
        "rules:\n  - keyword\n",
        "rules:\n  - kind: volume\n    threshold: abc\n",
        "rules:\n  - kind: keyword\n    keywords: cyclone\n",
        "rules:\n  - kind: volume\n    sections: news\n",
        "rules:\n  - kind: volume\n    sections: [{news: 1}]\n",
    ],
)
def test_load_rules_wraps_malformed_entries_in_config_error(tmp_path, body):
    path = tmp_path / "rules.yml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_rules(str(path))
