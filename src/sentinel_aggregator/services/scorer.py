"""Threat scoring over a Snapshot.

Rules are small frozen dataclasses tagged by ``kind``; each kind has one
evaluator in ``RULE_EVALUATORS``. ``assess`` takes the highest level among the
rules that match, so a rule set can be swapped (from config or a YAML file)
without touching the aggregator.
"""

from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, Iterable, Iterator, List, Sequence, Tuple, Union

import yaml

from sentinel_aggregator.config import AppConfig
from sentinel_aggregator.domain import Record, Snapshot, ThreatAssessment, ThreatLevel
from sentinel_aggregator.utils.errors import ConfigError

DEFAULT_SECTIONS = ("news", "threats")

MESSAGES = {
    ThreatLevel.LOW: "",
    ThreatLevel.MEDIUM: "Elevated activity across monitored feeds",
    ThreatLevel.HIGH: "High threat detected!",
}


@dataclass(frozen=True)
class KeywordRule:
    keywords: Tuple[str, ...]
    level: ThreatLevel = ThreatLevel.HIGH
    sections: Tuple[str, ...] = DEFAULT_SECTIONS
    kind: ClassVar[str] = "keyword"


@dataclass(frozen=True)
class VolumeRule:
    threshold: int = 5
    level: ThreatLevel = ThreatLevel.MEDIUM
    sections: Tuple[str, ...] = DEFAULT_SECTIONS
    kind: ClassVar[str] = "volume"


Rule = Union[KeywordRule, VolumeRule]


def _records(snapshot: Snapshot, sections: Iterable[str]) -> Iterator[Record]:
    for name in sections:
        for record in getattr(snapshot, name):
            yield record


def _text_fields(record: Record) -> Iterator[str]:
    for value in record.values():
        if isinstance(value, str):
            yield value


def _match_keywords(rule: KeywordRule, snapshot: Snapshot) -> bool:
    needles = [k.lower() for k in rule.keywords if k]
    if not needles:
        return False
    for record in _records(snapshot, rule.sections):
        for value in _text_fields(record):
            lowered = value.lower()
            if any(needle in lowered for needle in needles):
                return True
    return False


def _match_volume(rule: VolumeRule, snapshot: Snapshot) -> bool:
    return sum(1 for _ in _records(snapshot, rule.sections)) > rule.threshold


RULE_EVALUATORS: Dict[str, Callable[[Any, Snapshot], bool]] = {
    KeywordRule.kind: _match_keywords,
    VolumeRule.kind: _match_volume,
}


def assess(snapshot: Snapshot, rules: Sequence[Rule]) -> ThreatAssessment:
    level = ThreatLevel.LOW
    for rule in rules:
        if rule.level.rank > level.rank and RULE_EVALUATORS[rule.kind](rule, snapshot):
            level = rule.level
    return ThreatAssessment(level=level, message=MESSAGES[level])


def build_rules(config: AppConfig) -> List[Rule]:
    return [
        KeywordRule(keywords=tuple(config.threat_keywords)),
        VolumeRule(threshold=config.volume_threshold),
    ]


_SNAPSHOT_SECTIONS = {"news", "threats", "alerts"}


def _parse_rule(raw: Any) -> Rule:
    if not isinstance(raw, dict):
        raise ConfigError(f"Rule entries must be mappings, got {raw!r}")
    kind = raw.get("kind")
    try:
        level = ThreatLevel(str(raw.get("level", "")).upper()) if raw.get("level") else None
    except ValueError as exc:
        raise ConfigError(f"Unknown threat level {raw.get('level')!r}") from exc
    raw_sections = raw.get("sections") or DEFAULT_SECTIONS
    if not isinstance(raw_sections, (list, tuple)) or not all(isinstance(s, str) for s in raw_sections):
        raise ConfigError(f"Rule sections must be a list of names, got {raw_sections!r}")
    sections = tuple(raw_sections)
    unknown = set(sections) - _SNAPSHOT_SECTIONS
    if unknown:
        raise ConfigError(f"Unknown snapshot sections {sorted(unknown)}")
    if kind == KeywordRule.kind:
        raw_keywords = raw.get("keywords") or ()
        if not isinstance(raw_keywords, (list, tuple)):
            raise ConfigError(f"Keyword rule keywords must be a list, got {raw_keywords!r}")
        keywords = tuple(str(k) for k in raw_keywords)
        if not keywords:
            raise ConfigError("Keyword rule needs at least one keyword")
        return KeywordRule(keywords=keywords, level=level or ThreatLevel.HIGH, sections=sections)
    if kind == VolumeRule.kind:
        try:
            threshold = int(raw.get("threshold", 5))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Volume threshold must be an integer, got {raw.get('threshold')!r}") from exc
        return VolumeRule(threshold=threshold, level=level or ThreatLevel.MEDIUM, sections=sections)
    raise ConfigError(f"Unsupported rule kind {kind!r}")


def load_rules(path: str) -> List[Rule]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    raw_rules = data.get("rules") if isinstance(data, dict) else None
    if not isinstance(raw_rules, list) or not raw_rules:
        raise ConfigError(f"No rules defined in {path}")
    return [_parse_rule(raw) for raw in raw_rules]
