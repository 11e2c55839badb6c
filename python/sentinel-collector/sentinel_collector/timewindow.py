"""Timestamp parsing and time-window narrowing."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta, tzinfo
from functools import lru_cache
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sentinel_collector.models import TimeWindow

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sentinel_collector.models import LogEntry

logger = logging.getLogger(__name__)


@lru_cache(maxsize=16)
def _zone(name: str) -> tzinfo:
    if name.upper() in ("UTC", "Z"):
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, treating naive timestamps as UTC", name)
        return UTC


def parse_timestamp(value: str | None, tz: str = "UTC") -> datetime | None:
    """Parse a log or incident timestamp into an aware UTC datetime.

    Accepts ISO-8601 with ``T`` or space separator, optional fraction and
    ``Z``/offset suffix, and the ``YYYY/MM/DD HH:MM:SS`` form common in
    tracking sheets. Naive values are read in ``tz``. Returns ``None`` when
    the value cannot be parsed.
    """
    if not value:
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    if len(text) >= 10 and text[4] == "/" and text[7] == "/":
        text = f"{text[:4]}-{text[5:7]}-{text[8:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_zone(tz))
    return parsed.astimezone(UTC)


def format_utc(moment: datetime) -> str:
    """Render as ``YYYY-MM-DDTHH:MM:SSZ``."""
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def compute_window(
    anchor: datetime,
    before: float,
    after: float,
    original: str = "",
) -> TimeWindow:
    """Window from ``anchor - before`` to ``anchor + after`` (seconds)."""
    return TimeWindow(
        anchor=anchor,
        start=anchor - timedelta(seconds=before),
        end=anchor + timedelta(seconds=after),
        original=original,
    )


def filter_by_windows(
    entries: Sequence[LogEntry],
    windows: Iterable[TimeWindow],
    tz: str = "UTC",
) -> list[LogEntry]:
    """Keep entries that fall inside at least one window.

    Fails open: with no windows, or when no entry carries a parseable
    timestamp, the entries are returned unchanged. Entries without a
    parseable timestamp are kept.
    """
    windows = list(windows)
    if not windows:
        return list(entries)

    parsed = [(entry, entry.parsed_timestamp(tz)) for entry in entries]
    if all(moment is None for _, moment in parsed):
        logger.debug("No entry has a parseable timestamp, skipping time filter")
        return list(entries)

    return [
        entry
        for entry, moment in parsed
        if moment is None or any(window.contains(moment) for window in windows)
    ]
