"""Data models for incident-driven log collection."""

from __future__ import annotations

import re
from collections.abc import Iterable  # noqa: TC003
from datetime import UTC, datetime  # noqa: TC003
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

UNKNOWN_LEVEL = "UNKNOWN"

# ── Incidents ────────────────────────────────────────────────────


class Incident(BaseModel):
    """A problem under investigation, as supplied by the incident source.

    Only ``incident_id`` is required; records missing the other fields are
    tolerated and treated as empty.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    incident_id: str
    description: str = ""
    status: str = ""
    raw_timestamp: str = ""
    source_ref: str = ""
    assignee: str = ""
    row_number: int | None = None

    @field_validator(
        "incident_id", "description", "status", "raw_timestamp", "source_ref", "assignee",
        mode="before",
    )
    @classmethod
    def cell_to_text(cls, value: Any, info: ValidationInfo) -> Any:
        """Sheet cells arrive as ``None``, numbers or datetimes; keep them as text."""
        if value is None:
            # a missing id stays an error
            return value if info.field_name == "incident_id" else ""
        if isinstance(value, datetime):
            return value.isoformat()
        return value if isinstance(value, str) else str(value)


# ── Pattern rules ────────────────────────────────────────────────


class PatternKind(StrEnum):
    """What an extraction rule pulls out of free text."""

    TRACK_ID = "trackId"
    PROGRAM_ID = "programId"
    TIMESTAMP = "timestamp"
    LOG_LEVEL = "logLevel"


class PatternRule(BaseModel):
    """A named regular expression for one identifier kind."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: PatternKind
    expression: str
    case_insensitive: bool = False
    multiline: bool = False
    dotall: bool = False

    @classmethod
    def from_flags(cls, name: str, kind: PatternKind, expression: str, flags: str = "") -> PatternRule:
        """Build a rule from a JavaScript-style flag string such as ``"gi"``.

        ``g`` and ``u`` have no Python counterpart and are ignored; every rule
        is applied to all matches anyway.
        """
        flags = flags or ""
        return cls(
            name=name,
            kind=kind,
            expression=expression,
            case_insensitive="i" in flags,
            multiline="m" in flags,
            dotall="s" in flags,
        )

    @property
    def re_flags(self) -> int:
        value = 0
        if self.case_insensitive:
            value |= re.IGNORECASE
        if self.multiline:
            value |= re.MULTILINE
        if self.dotall:
            value |= re.DOTALL
        return value

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.expression, self.re_flags)


class TimeRangeConfig(BaseModel):
    """Seconds searched on each side of an extracted timestamp."""

    model_config = ConfigDict(frozen=True)

    search_before: int = 1800
    search_after: int = 1800


class PatternRuleSet(BaseModel):
    """The immutable set of extraction rules used for one run."""

    model_config = ConfigDict(frozen=True)

    rules: tuple[PatternRule, ...]
    time_ranges: TimeRangeConfig = Field(default_factory=TimeRangeConfig)
    line_track_id: PatternRule
    source: str = "defaults"

    def by_kind(self, kind: PatternKind) -> list[PatternRule]:
        return [rule for rule in self.rules if rule.kind == kind]

    def first(self, kind: PatternKind) -> PatternRule | None:
        for rule in self.rules:
            if rule.kind == kind:
                return rule
        return None


# ── Extraction results ───────────────────────────────────────────


class TimeWindow(BaseModel):
    """Search window around one anchor timestamp."""

    model_config = ConfigDict(frozen=True)

    anchor: datetime
    start: datetime
    end: datetime
    original: str = ""

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class ExtractedIdentifiers(BaseModel):
    """Identifiers and time anchors pulled from one incident.

    Id tuples are deduplicated and keep first-seen order so that the same
    input always yields the same output.
    """

    model_config = ConfigDict(frozen=True)

    track_ids: tuple[str, ...] = ()
    program_ids: tuple[str, ...] = ()
    timestamps: tuple[str, ...] = ()
    time_windows: tuple[TimeWindow, ...] = ()

    @property
    def search_terms(self) -> list[str]:
        """Track ids then program ids, without duplicates."""
        return list(dict.fromkeys([*self.track_ids, *self.program_ids]))

    @property
    def is_empty(self) -> bool:
        return not self.track_ids and not self.program_ids


# ── Targets and sessions ─────────────────────────────────────────


class ServerTarget(BaseModel):
    """A remote host the collector attempts to search."""

    model_config = ConfigDict(frozen=True)

    id: str
    host: str = ""
    port: int = 22
    user: str = "logcollector"

    @property
    def enabled(self) -> bool:
        return bool(self.host.strip())

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class SessionState(StrEnum):
    """Lifecycle states for a per-target session."""

    PENDING = "pending"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"
    SKIPPED = "skipped"


class TargetOutcome(BaseModel):
    """What happened to one target during connection setup."""

    target: ServerTarget
    state: SessionState
    reason: str = ""


class CommandOutput(BaseModel):
    """Raw result of one remote command."""

    stdout: str = ""
    stderr: str = ""
    exit_status: int | None = 0


# ── Log entries and results ──────────────────────────────────────


class LogEntry(BaseModel):
    """One matched log line from one server.

    Fields that could not be recognized are empty strings, never ``None``.
    """

    model_config = ConfigDict(frozen=True)

    incident_id: str = ""
    track_id: str = ""
    program_id: str = ""
    server_id: str
    timestamp: str = ""
    log_level: str = UNKNOWN_LEVEL
    log_path: str = ""
    content: str = ""

    def parsed_timestamp(self, tz: str = "UTC") -> datetime | None:
        """The entry timestamp as an aware UTC datetime, or ``None``."""
        from sentinel_collector.timewindow import parse_timestamp

        return parse_timestamp(self.timestamp, tz)


class SearchTerms(BaseModel):
    """Identifiers used to build an incident's search, kept for auditing."""

    track_ids: list[str] = []
    program_ids: list[str] = []
    timestamps: list[str] = []

    @classmethod
    def from_identifiers(cls, identifiers: ExtractedIdentifiers) -> SearchTerms:
        return cls(
            track_ids=list(identifiers.track_ids),
            program_ids=list(identifiers.program_ids),
            timestamps=list(identifiers.timestamps),
        )


class CollectionResult(BaseModel):
    """Correlated log entries for one incident across all live servers."""

    incident_id: str
    search_terms: SearchTerms = Field(default_factory=SearchTerms)
    entries: list[LogEntry] = []
    per_server_counts: dict[str, int] = {}
    failed_servers: list[str] = []

    @property
    def total_entries(self) -> int:
        return len(self.entries)


class CollectionRun(BaseModel):
    """Everything produced by one collection run."""

    results: list[CollectionResult] = []
    outcomes: list[TargetOutcome] = []
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def tasks_processed(self) -> int:
        return len(self.results)

    @property
    def log_entries_found(self) -> int:
        return sum(r.total_entries for r in self.results)

    @property
    def connected(self) -> list[str]:
        return [
            o.target.id
            for o in self.outcomes
            if o.state in (SessionState.READY, SessionState.CLOSED)
        ]

    @property
    def failed(self) -> list[TargetOutcome]:
        return [o for o in self.outcomes if o.state == SessionState.FAILED]


# ── Collaborator protocols ───────────────────────────────────────


@runtime_checkable
class IncidentSource(Protocol):
    """Supplies incident records, e.g. rows read from a tracking sheet."""

    def incidents(self) -> Iterable[Incident]: ...


@runtime_checkable
class ResultSink(Protocol):
    """Receives one ``CollectionResult`` per processed incident."""

    def emit(self, result: CollectionResult) -> None: ...
