"""Parses raw remote search output into structured log entries."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from sentinel_collector.models import UNKNOWN_LEVEL, LogEntry, PatternKind
from sentinel_collector.patterns import default_rule_set

if TYPE_CHECKING:
    from sentinel_collector.models import PatternRuleSet

logger = logging.getLogger(__name__)

# grep -H prefixes each match with "<file>:"; only absolute paths or *.log names count
_PATH_PREFIX = re.compile(r"^(?P<path>/[^:\s]+|[^:\s/]+(?:/[^:\s]+)*\.log(?:\.\d+)?):")


def _first(pattern: re.Pattern[str] | None, text: str) -> str:
    if pattern is None:
        return ""
    match = pattern.search(text)
    if match is None:
        return ""
    return (match.group(1) if pattern.groups else match.group(0)) or ""


class OutputParser:
    """Turns search output lines into ``LogEntry`` records.

    Each field is matched independently with a single best-match pattern;
    a field that does not match is left empty and never drops the line.
    The parser holds compiled patterns only and performs no I/O.
    """

    def __init__(self, rule_set: PatternRuleSet | None = None) -> None:
        rule_set = rule_set or default_rule_set()
        self._timestamp = self._compile(rule_set, PatternKind.TIMESTAMP)
        self._program = self._compile(rule_set, PatternKind.PROGRAM_ID)
        self._level = self._compile(rule_set, PatternKind.LOG_LEVEL)
        self._track = rule_set.line_track_id.compile()

    @staticmethod
    def _compile(rule_set: PatternRuleSet, kind: PatternKind) -> re.Pattern[str] | None:
        rule = rule_set.first(kind)
        return rule.compile() if rule is not None else None

    def parse(self, raw_output: str, server_id: str, incident_id: str = "") -> list[LogEntry]:
        if not raw_output or not raw_output.strip():
            return []

        entries = [
            self.parse_line(line, server_id, incident_id)
            for line in raw_output.splitlines()
            if line.strip()
        ]
        logger.debug("Server %s: parsed %d lines", server_id, len(entries))
        return entries

    def parse_line(self, line: str, server_id: str, incident_id: str = "") -> LogEntry:
        log_path = ""
        text = line
        prefix = _PATH_PREFIX.match(line)
        if prefix is not None:
            log_path = prefix.group("path")
            text = line[prefix.end():]

        level = _first(self._level, text).upper()
        return LogEntry(
            incident_id=incident_id,
            track_id=_first(self._track, text),
            program_id=_first(self._program, text),
            server_id=server_id,
            timestamp=_first(self._timestamp, text),
            log_level=level or UNKNOWN_LEVEL,
            log_path=log_path,
            content=line,
        )


def parse(raw_output: str, server_id: str, rule_set: PatternRuleSet | None = None) -> list[LogEntry]:
    """Parse ``raw_output`` from ``server_id`` with the given (or default) rules."""
    return OutputParser(rule_set).parse(raw_output, server_id)
