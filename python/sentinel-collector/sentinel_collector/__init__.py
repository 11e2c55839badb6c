"""Sentinel Collector — incident-driven log collection across SSH hosts."""

from sentinel_collector.config import CollectorSettings
from sentinel_collector.connections import ConnectionManager, connect_all
from sentinel_collector.correlation import aggregate
from sentinel_collector.credentials import SshCredentials, targets_from_env
from sentinel_collector.engine import LogCollectionEngine
from sentinel_collector.errors import (
    CollectorError,
    CommandError,
    CredentialsError,
    DuplicateSessionError,
    NoLiveSessionsError,
    SessionClosedError,
)
from sentinel_collector.extractor import IdentifierExtractor, extract, filter_incidents
from sentinel_collector.models import (
    CollectionResult,
    CollectionRun,
    ExtractedIdentifiers,
    Incident,
    IncidentSource,
    LogEntry,
    PatternKind,
    PatternRule,
    PatternRuleSet,
    ResultSink,
    ServerTarget,
    SessionState,
    TargetOutcome,
    TimeWindow,
)
from sentinel_collector.parser import OutputParser, parse
from sentinel_collector.patterns import default_rule_set, load_patterns
from sentinel_collector.search import SearchCoordinator, build_search_command
from sentinel_collector.session import AsyncSshConnector, Session, SessionRegistry

__all__ = [
    "AsyncSshConnector",
    "CollectionResult",
    "CollectionRun",
    "CollectorError",
    "CollectorSettings",
    "CommandError",
    "ConnectionManager",
    "CredentialsError",
    "DuplicateSessionError",
    "ExtractedIdentifiers",
    "IdentifierExtractor",
    "Incident",
    "IncidentSource",
    "LogCollectionEngine",
    "LogEntry",
    "NoLiveSessionsError",
    "OutputParser",
    "PatternKind",
    "PatternRule",
    "PatternRuleSet",
    "ResultSink",
    "SearchCoordinator",
    "ServerTarget",
    "Session",
    "SessionClosedError",
    "SessionRegistry",
    "SessionState",
    "SshCredentials",
    "TargetOutcome",
    "TimeWindow",
    "aggregate",
    "build_search_command",
    "connect_all",
    "default_rule_set",
    "extract",
    "filter_incidents",
    "load_patterns",
    "parse",
    "targets_from_env",
]
