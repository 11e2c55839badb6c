"""Search coordinator: one remote grep per (incident, live session)."""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
from typing import TYPE_CHECKING

from sentinel_collector import config
from sentinel_collector.correlation import aggregate
from sentinel_collector.errors import CommandError
from sentinel_collector.timewindow import filter_by_windows

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sentinel_collector.config import CollectorSettings
    from sentinel_collector.models import (
        CollectionResult,
        ExtractedIdentifiers,
        Incident,
        LogEntry,
    )
    from sentinel_collector.parser import OutputParser
    from sentinel_collector.session import Session, SessionRegistry

logger = logging.getLogger(__name__)

_ERE_SPECIAL = re.compile(r"([.\[\]()*+?{}|^$\\])")
_SAFE_PATH = re.compile(r"^[\w./*?\[\]{}@%+=:,-]+$")

# grep exits 2 when any path is missing or unreadable, even if others matched
_GREP_TROUBLE = 2


def _ere_escape(term: str) -> str:
    return _ERE_SPECIAL.sub(r"\\\1", term)


def _shell_path(path: str) -> str:
    # Glob characters must reach the remote shell unquoted to expand
    return path if _SAFE_PATH.match(path) else shlex.quote(path)


def build_search_command(terms: Iterable[str], log_paths: Iterable[str]) -> str | None:
    """Compose the remote grep for an alternation of ``terms``.

    Output lines are prefixed with the source path (``-H``). grep's own
    complaints (missing path, permission denied) stay on stderr. Returns
    ``None`` when there is nothing to search for.
    """
    unique = [t for t in dict.fromkeys(terms) if t]
    if not unique:
        return None
    pattern = "|".join(_ere_escape(t) for t in unique)
    paths = " ".join(_shell_path(p) for p in log_paths)
    return f"grep -r -H -E -e {shlex.quote(pattern)} -- {paths}"


class SearchCoordinator:
    """Runs each incident's search on every live session.

    Different sessions are searched concurrently; a session runs its
    commands one at a time. A failed command only costs that server's
    entries for that incident.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        parser: OutputParser,
        settings: CollectorSettings | None = None,
    ) -> None:
        self.registry = registry
        self.parser = parser
        self.settings = settings or config.settings

    async def search_all(
        self,
        incidents: Sequence[tuple[Incident, ExtractedIdentifiers]],
    ) -> dict[str, CollectionResult]:
        """Search every incident, in input order."""
        results: dict[str, CollectionResult] = {}
        for incident, identifiers in incidents:
            logger.info("Searching logs for incident %s...", incident.incident_id)
            results[incident.incident_id] = await self.search_incident(incident, identifiers)
        return results

    async def search_incident(
        self,
        incident: Incident,
        identifiers: ExtractedIdentifiers,
    ) -> CollectionResult:
        sessions = self.registry.live()
        command = build_search_command(identifiers.search_terms, self.settings.log_paths)

        if command is None:
            logger.info("Incident %s: no identifiers extracted, nothing to search", incident.incident_id)
            return aggregate(incident, {s.id: [] for s in sessions}, identifiers)

        outcomes = await asyncio.gather(
            *(self._search_session(s, command, incident, identifiers) for s in sessions),
            return_exceptions=True,
        )

        per_server: dict[str, list[LogEntry]] = {}
        failed: list[str] = []
        for session, outcome in zip(sessions, outcomes, strict=True):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning(
                    "Server %s: search failed for incident %s - %s",
                    session.id,
                    incident.incident_id,
                    outcome,
                )
                per_server[session.id] = []
                failed.append(session.id)
                continue
            per_server[session.id] = outcome
            logger.info("Server %s: %d entries found", session.id, len(outcome))

        result = aggregate(incident, per_server, identifiers, failed)
        logger.info(
            "Incident %s: total %d log entries found", incident.incident_id, result.total_entries
        )
        return result

    async def _search_session(
        self,
        session: Session,
        command: str,
        incident: Incident,
        identifiers: ExtractedIdentifiers,
    ) -> list[LogEntry]:
        output = await session.run(command, self.settings.command_timeout)

        detail = output.stderr.strip()
        if output.exit_status not in self.settings.search_ok_exit_statuses:
            if output.exit_status != _GREP_TROUBLE or not output.stdout.strip():
                raise CommandError(
                    f"exit status {output.exit_status}" + (f": {detail}" if detail else ""),
                    exit_status=output.exit_status,
                    stderr=output.stderr,
                )
            logger.warning(
                "Server %s: grep exited with %d but returned matches, keeping them%s",
                session.id,
                output.exit_status,
                f" ({detail})" if detail else "",
            )
        elif detail:
            logger.debug("Server %s stderr: %s", session.id, detail)
        logger.debug("Server %s raw output length: %d", session.id, len(output.stdout))

        entries = self.parser.parse(output.stdout, session.id, incident.incident_id)
        if self.settings.time_filter_enabled and identifiers.time_windows:
            before = len(entries)
            entries = filter_by_windows(
                entries, identifiers.time_windows, self.settings.timestamp_timezone
            )
            if len(entries) != before:
                logger.info(
                    "Server %s: time filter kept %d of %d entries", session.id, len(entries), before
                )
        return entries

