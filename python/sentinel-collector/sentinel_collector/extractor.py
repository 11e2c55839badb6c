"""Identifier extraction from free-text incident descriptions."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from sentinel_collector.models import ExtractedIdentifiers, PatternKind
from sentinel_collector.timewindow import compute_window, parse_timestamp

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sentinel_collector.models import Incident, PatternRule, PatternRuleSet, TimeWindow

logger = logging.getLogger(__name__)


def _matches(pattern: re.Pattern[str], text: str) -> list[str]:
    """All matches of ``pattern``: group 1 when the rule captures, else the whole match."""
    found: list[str] = []
    for match in pattern.finditer(text):
        value = match.group(1) if pattern.groups else match.group(0)
        if value:
            found.append(value)
    return found


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


class IdentifierExtractor:
    """Pulls track ids, program ids and timestamps out of incident text.

    Every track id dialect in the rule set is applied independently and
    the results are unioned, because incident authors do not agree on one
    notation. Program ids and timestamps use their single rule each.
    """

    def __init__(self, rule_set: PatternRuleSet, timezone: str = "UTC") -> None:
        self.rule_set = rule_set
        self.timezone = timezone
        self._track_rules = [
            (rule, rule.compile()) for rule in rule_set.by_kind(PatternKind.TRACK_ID)
        ]
        self._program = self._compile_single(PatternKind.PROGRAM_ID)
        self._timestamp = self._compile_single(PatternKind.TIMESTAMP)

    def _compile_single(self, kind: PatternKind) -> re.Pattern[str] | None:
        rule: PatternRule | None = self.rule_set.first(kind)
        return rule.compile() if rule is not None else None

    def extract(self, incident: Incident) -> ExtractedIdentifiers:
        text = incident.description or ""

        track_ids: list[str] = []
        for _rule, pattern in self._track_rules:
            track_ids.extend(_matches(pattern, text))

        program_ids = _matches(self._program, text) if self._program else []

        timestamps = _matches(self._timestamp, text) if self._timestamp else []
        raw = (incident.raw_timestamp or "").strip()
        if raw and raw not in timestamps:
            timestamps.append(raw)
        timestamps = list(_unique(timestamps))

        identifiers = ExtractedIdentifiers(
            track_ids=_unique(track_ids),
            program_ids=_unique(program_ids),
            timestamps=tuple(timestamps),
            time_windows=tuple(self.time_windows(timestamps, incident.incident_id)),
        )
        logger.info(
            "Incident %s: TrackIDs: %s | ProgramIDs: %s | Times: %d",
            incident.incident_id,
            ", ".join(identifiers.track_ids),
            ", ".join(identifiers.program_ids),
            len(identifiers.timestamps),
        )
        return identifiers

    def time_windows(self, timestamps: Iterable[str], incident_id: str = "") -> list[TimeWindow]:
        """One window per parseable timestamp; unparseable ones are dropped."""
        ranges = self.rule_set.time_ranges
        windows: list[TimeWindow] = []
        for raw in timestamps:
            anchor = parse_timestamp(raw, self.timezone)
            if anchor is None:
                logger.warning(
                    "Incident %s: failed to parse timestamp %r, no time window",
                    incident_id,
                    raw,
                )
                continue
            windows.append(
                compute_window(anchor, ranges.search_before, ranges.search_after, original=raw)
            )
        return windows


def extract(incident: Incident, rule_set: PatternRuleSet, timezone: str = "UTC") -> ExtractedIdentifiers:
    """Extract identifiers from one incident with the given rule set."""
    return IdentifierExtractor(rule_set, timezone).extract(incident)


def filter_incidents(incidents: Iterable[Incident], target_status: str) -> list[Incident]:
    """Keep only incidents whose status matches ``target_status``."""
    incidents = list(incidents)
    wanted = target_status.strip()
    selected = [i for i in incidents if (i.status or "").strip() == wanted]
    logger.info(
        "Filtered to %d of %d incidents with status %r",
        len(selected),
        len(incidents),
        target_status,
    )
    return selected
