"""Combines per-server log entries into one result per incident."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sentinel_collector.models import CollectionResult, SearchTerms

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from sentinel_collector.models import ExtractedIdentifiers, Incident, LogEntry


def aggregate(
    incident: Incident,
    per_session_entries: Mapping[str, Sequence[LogEntry]],
    identifiers: ExtractedIdentifiers | None = None,
    failed_servers: Iterable[str] = (),
) -> CollectionResult:
    """Concatenate entries from every server in server order.

    Identical lines seen on two hosts stay two entries: they are separate
    evidence. Every server gets a count, zero included.
    """
    entries: list[LogEntry] = []
    counts: dict[str, int] = {}
    for server_id, server_entries in per_session_entries.items():
        counts[server_id] = len(server_entries)
        entries.extend(server_entries)

    return CollectionResult(
        incident_id=incident.incident_id,
        search_terms=(
            SearchTerms.from_identifiers(identifiers) if identifiers is not None else SearchTerms()
        ),
        entries=entries,
        per_server_counts=counts,
        failed_servers=list(failed_servers),
    )


def summarize(results: Iterable[CollectionResult]) -> dict[str, int]:
    """Run totals: incidents, entries, incidents with at least one entry."""
    results = list(results)
    return {
        "incidents": len(results),
        "entries": sum(r.total_entries for r in results),
        "incidents_with_entries": sum(1 for r in results if r.entries),
    }
