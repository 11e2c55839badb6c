"""Pattern registry: extraction rules loaded once per run.

The pattern document is the ``log-patterns.json`` file shipped alongside
the incident sheets. It is read with ``yaml.safe_load`` so both the JSON
files and hand-written YAML are accepted::

    patterns:
      trackId:   {pattern: "TrackID:\\s*([A-Z0-9]{3,10})", flags: gi}
      ticketRef: {kind: trackId, pattern: "REF-([0-9]{4})"}
      programId: {pattern: "\\b([A-Z]{2,6}\\d{2,4})\\b", flags: g}
    timeRanges: {searchBefore: 1800, searchAfter: 1800}

A missing or broken document falls back to ``DEFAULT_RULES``; a broken
entry inside an otherwise valid document only loses that entry.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from sentinel_collector.models import (
    PatternKind,
    PatternRule,
    PatternRuleSet,
    TimeRangeConfig,
)

logger = logging.getLogger(__name__)

_ID = r"([A-Z0-9]{3,10})"

DEFAULT_RULES: tuple[PatternRule, ...] = (
    # Track id dialects seen in incident descriptions
    PatternRule.from_flags("trackId", PatternKind.TRACK_ID, rf"TrackID:\s*{_ID}", "gi"),
    PatternRule.from_flags("trackIdAssign", PatternKind.TRACK_ID, rf"trackId={_ID}", "gi"),
    PatternRule.from_flags("trackIdBracket", PatternKind.TRACK_ID, rf"\[ID:\s*{_ID}\]", "gi"),
    PatternRule.from_flags("trackIdHash", PatternKind.TRACK_ID, rf"#{_ID}", "gi"),
    PatternRule.from_flags("trackIdLabel", PatternKind.TRACK_ID, rf"\(識別:\s*{_ID}\)", "gi"),
    PatternRule.from_flags("programId", PatternKind.PROGRAM_ID, r"\b([A-Z]{2,6}\d{2,4})\b", "g"),
    PatternRule.from_flags(
        "timestamp", PatternKind.TIMESTAMP, r"(\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}:\d{2})", "g"
    ),
    PatternRule.from_flags(
        "logLevel", PatternKind.LOG_LEVEL, r"\b(DEBUG|INFO|WARN|WARNING|ERROR|FATAL|TRACE)\b", "i"
    ),
)

DEFAULT_LINE_TRACK_ID = PatternRule.from_flags(
    "lineTrackId", PatternKind.TRACK_ID, r"(?:TrackID|trackId)[:\s\"]*([A-Z0-9]+)", "i"
)

# Kinds that use exactly one rule each
_SINGLE_RULE_KINDS = (PatternKind.PROGRAM_ID, PatternKind.TIMESTAMP, PatternKind.LOG_LEVEL)


def default_rule_set() -> PatternRuleSet:
    """The built-in rule set."""
    return PatternRuleSet(
        rules=DEFAULT_RULES,
        time_ranges=TimeRangeConfig(),
        line_track_id=DEFAULT_LINE_TRACK_ID,
        source="defaults",
    )


def load_patterns(source: str | Path | Mapping[str, Any] | None) -> PatternRuleSet:
    """Load the rule set from a pattern document.

    Args:
        source: Path to the document, an already-parsed mapping, or ``None``.

    Returns:
        The rule set for this run. Falls back to the defaults (with a
        warning) if the source is missing, unreadable, or not a mapping
        with a ``patterns`` section.
    """
    if source is None:
        logger.warning("No log pattern file configured, using default patterns")
        return default_rule_set()

    if isinstance(source, Mapping):
        document: Any = source
        origin = "<mapping>"
    else:
        origin = str(source)
        try:
            text = Path(source).read_text(encoding="utf-8")
            document = yaml.safe_load(text)
        except OSError as exc:
            logger.warning("Failed to read log patterns from %s (%s), using defaults", origin, exc)
            return default_rule_set()
        except yaml.YAMLError as exc:
            logger.warning("Failed to parse log patterns from %s (%s), using defaults", origin, exc)
            return default_rule_set()

    if not isinstance(document, Mapping) or not isinstance(document.get("patterns"), Mapping):
        logger.warning(
            "Log pattern document %s has no 'patterns' mapping, using defaults", origin
        )
        return default_rule_set()

    rule_set = _build_rule_set(document, origin)
    logger.info("Log patterns loaded from %s (%d rules)", origin, len(rule_set.rules))
    return rule_set


# ── Private helpers ──────────────────────────────────────────────


def _build_rule_set(document: Mapping[str, Any], origin: str) -> PatternRuleSet:
    configured = _parse_rules(document["patterns"], origin)

    if document.get("mergeDefaults", True):
        names = {rule.name for rule in configured}
        single_kinds = {rule.kind for rule in configured if rule.kind in _SINGLE_RULE_KINDS}
        rules = [
            rule
            for rule in DEFAULT_RULES
            if rule.name not in names and rule.kind not in single_kinds
        ]
        rules.extend(configured)
    else:
        rules = list(configured)

    for kind in PatternKind:
        if not any(rule.kind == kind for rule in rules):
            logger.warning("No usable %s pattern in %s, using default", kind.value, origin)
            rules.extend(rule for rule in DEFAULT_RULES if rule.kind == kind)

    rules = _keep_single(rules, origin)

    line_track_id = DEFAULT_LINE_TRACK_ID
    if "lineTrackId" in document:
        parsed = _parse_rule("lineTrackId", document["lineTrackId"], origin, PatternKind.TRACK_ID)
        if parsed is not None:
            line_track_id = parsed

    return PatternRuleSet(
        rules=tuple(rules),
        time_ranges=_parse_time_ranges(document.get("timeRanges"), origin),
        line_track_id=line_track_id,
        source=origin,
    )


def _parse_rules(patterns: Mapping[str, Any], origin: str) -> list[PatternRule]:
    rules: list[PatternRule] = []
    for name, entry in patterns.items():
        rule = _parse_rule(str(name), entry, origin)
        if rule is not None:
            rules.append(rule)
    return rules


def _parse_rule(
    name: str,
    entry: Any,
    origin: str,
    default_kind: PatternKind | None = None,
) -> PatternRule | None:
    """Turn one ``{pattern, flags, kind}`` entry into a rule, or ``None``."""
    if isinstance(entry, str):
        entry = {"pattern": entry}
    if not isinstance(entry, Mapping):
        logger.warning("Pattern %r in %s is not a mapping, skipping", name, origin)
        return None

    expression = entry.get("pattern", entry.get("expression"))
    if not isinstance(expression, str) or not expression:
        logger.warning("Pattern %r in %s has no expression, skipping", name, origin)
        return None

    raw_kind = entry.get("kind", default_kind.value if default_kind else name)
    try:
        kind = PatternKind(raw_kind)
    except ValueError:
        logger.warning("Pattern %r in %s has unknown kind %r, skipping", name, origin, raw_kind)
        return None

    flags = entry.get("flags", "")
    rule = PatternRule.from_flags(name, kind, expression, flags if isinstance(flags, str) else "")
    try:
        rule.compile()
    except re.error as exc:
        logger.warning("Pattern %r in %s does not compile (%s), skipping", name, origin, exc)
        return None
    return rule


def _keep_single(rules: list[PatternRule], origin: str) -> list[PatternRule]:
    seen: set[PatternKind] = set()
    kept: list[PatternRule] = []
    for rule in rules:
        if rule.kind in _SINGLE_RULE_KINDS:
            if rule.kind in seen:
                logger.warning(
                    "Extra %s pattern %r in %s ignored", rule.kind.value, rule.name, origin
                )
                continue
            seen.add(rule.kind)
        kept.append(rule)
    return kept


def _parse_time_ranges(raw: Any, origin: str) -> TimeRangeConfig:
    defaults = TimeRangeConfig()
    if raw is None:
        return defaults
    if not isinstance(raw, Mapping):
        logger.warning("timeRanges in %s is not a mapping, using defaults", origin)
        return defaults

    values: dict[str, int] = {}
    for key, field in (("searchBefore", "search_before"), ("searchAfter", "search_after")):
        if key not in raw:
            continue
        value = raw[key]
        if isinstance(value, bool) or not isinstance(value, int | float) or value < 0:
            logger.warning(
                "timeRanges.%s in %s is invalid (%r), using %d",
                key,
                origin,
                value,
                getattr(defaults, field),
            )
            continue
        values[field] = int(value)
    return TimeRangeConfig(**values)
