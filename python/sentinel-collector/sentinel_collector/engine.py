"""Collection engine: incidents in, one correlated result per incident out."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sentinel_collector import config
from sentinel_collector.connections import ConnectionManager
from sentinel_collector.correlation import summarize
from sentinel_collector.credentials import SshCredentials, targets_from_env
from sentinel_collector.extractor import IdentifierExtractor, filter_incidents
from sentinel_collector.models import CollectionRun
from sentinel_collector.parser import OutputParser
from sentinel_collector.patterns import load_patterns
from sentinel_collector.search import SearchCoordinator

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sentinel_collector.config import CollectorSettings
    from sentinel_collector.models import (
        Incident,
        IncidentSource,
        PatternRuleSet,
        ResultSink,
        ServerTarget,
    )
    from sentinel_collector.session import Connector

logger = logging.getLogger(__name__)


class LogCollectionEngine:
    """Runs one batch collection.

    Steps: load patterns, select incidents by status, extract identifiers,
    connect to all targets, search each incident on every live server,
    correlate. Sessions are closed before ``run`` returns or raises.
    Only ``NoLiveSessionsError`` escapes; every other failure is logged and
    isolated to the target or incident it belongs to.
    """

    def __init__(
        self,
        settings: CollectorSettings | None = None,
        *,
        rule_set: PatternRuleSet | None = None,
        connector: Connector | None = None,
        credentials: SshCredentials | None = None,
    ) -> None:
        self.settings = settings or config.settings
        self._rule_set = rule_set
        self.connector = connector
        self.credentials = credentials or SshCredentials.from_env()

    @property
    def rule_set(self) -> PatternRuleSet:
        """Patterns for this engine, loaded on first use and fixed afterwards."""
        if self._rule_set is None:
            self._rule_set = load_patterns(self.settings.pattern_file_path)
        return self._rule_set

    async def run(
        self,
        incidents: Iterable[Incident],
        targets: list[ServerTarget] | None = None,
    ) -> CollectionRun:
        """Collect logs for every incident with the target status.

        Args:
            incidents: Incident records from the incident source.
            targets: Servers to search; defaults to ``SSH_HOST_<n>`` targets.

        Raises:
            NoLiveSessionsError: No server could be reached.
        """
        started = time.monotonic()
        run = CollectionRun()
        rule_set = self.rule_set

        selected = _unique_incidents(filter_incidents(incidents, self.settings.target_status))
        if not selected:
            logger.warning(
                "No incidents with status %r, nothing to collect", self.settings.target_status
            )
            run.completed_at = datetime.now(UTC)
            return run

        extractor = IdentifierExtractor(rule_set, self.settings.timestamp_timezone)
        enriched = [(incident, extractor.extract(incident)) for incident in selected]

        if targets is None:
            targets = targets_from_env()

        async with ConnectionManager(
            self.credentials, connector=self.connector, settings=self.settings
        ) as manager:
            await manager.connect_all(targets)
            coordinator = SearchCoordinator(manager.registry, OutputParser(rule_set), self.settings)
            results = await coordinator.search_all(enriched)
        run.outcomes = manager.outcomes

        run.results = [results[incident.incident_id] for incident, _ in enriched]
        run.completed_at = datetime.now(UTC)

        totals = summarize(run.results)
        logger.info(
            "Log collection completed: %d incidents, %d entries, %d/%d servers in %.2fs",
            totals["incidents"],
            totals["entries"],
            len(run.connected),
            len(run.connected) + len(run.failed),
            time.monotonic() - started,
        )
        return run

    async def collect(
        self,
        source: IncidentSource,
        sink: ResultSink,
        targets: list[ServerTarget] | None = None,
    ) -> CollectionRun:
        """Read incidents from ``source`` and emit every result to ``sink``."""
        run = await self.run(source.incidents(), targets)
        for result in run.results:
            sink.emit(result)
        return run


def _unique_incidents(incidents: list[Incident]) -> list[Incident]:
    """First record per incident id; later duplicates are dropped with a warning."""
    seen: dict[str, Incident] = {}
    for incident in incidents:
        if incident.incident_id in seen:
            logger.warning(
                "Duplicate incident %s (%s) ignored", incident.incident_id, incident.source_ref
            )
            continue
        seen[incident.incident_id] = incident
    return list(seen.values())
