"""Connection manager: concurrent fan-out to all targets with isolated failures."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Self

from sentinel_collector import config
from sentinel_collector.errors import CommandError, CredentialsError, NoLiveSessionsError
from sentinel_collector.models import SessionState, TargetOutcome
from sentinel_collector.retry import with_retry
from sentinel_collector.session import AsyncSshConnector, Session, SessionRegistry

if TYPE_CHECKING:
    from types import TracebackType

    from sentinel_collector.config import CollectorSettings
    from sentinel_collector.credentials import SshCredentials
    from sentinel_collector.models import ServerTarget
    from sentinel_collector.session import Connector, RemoteChannel

logger = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, TimeoutError):
        return "connection timed out"
    text = str(exc).strip()
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class ConnectionManager:
    """Owns every session of a run.

    Usage::

        async with ConnectionManager(credentials, settings=settings) as manager:
            await manager.connect_all(targets)
            coordinator = SearchCoordinator(manager.registry, parser, settings)
            ...

    Leaving the ``async with`` block closes all sessions, whether the block
    finished normally, raised, or was cancelled.
    """

    def __init__(
        self,
        credentials: SshCredentials,
        *,
        connector: Connector | None = None,
        settings: CollectorSettings | None = None,
    ) -> None:
        self.credentials = credentials
        self.connector = connector or AsyncSshConnector()
        self.settings = settings or config.settings
        self.registry = SessionRegistry()
        self._skipped: list[ServerTarget] = []

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close_all()

    @property
    def outcomes(self) -> list[TargetOutcome]:
        """Per-target outcome: skipped, failed (with reason), ready or closed."""
        outcomes = [
            TargetOutcome(target=s.target, state=s.state, reason=s.reason)
            for s in self.registry
        ]
        outcomes.extend(
            TargetOutcome(target=t, state=SessionState.SKIPPED, reason="host not configured")
            for t in self._skipped
        )
        return outcomes

    async def connect_all(self, targets: list[ServerTarget]) -> dict[str, Session | TargetOutcome]:
        """Connect to every enabled target concurrently.

        Returns:
            Target id -> ready ``Session`` or failed ``TargetOutcome``.

        Raises:
            NoLiveSessionsError: If no target reached ``ready``. Every
                session opened along the way is closed first.
        """
        attempted = [t for t in targets if t.enabled]
        for target in targets:
            if not target.enabled:
                logger.info("Skipping %s: host not configured", target.id)
                self._skipped.append(target)

        logger.info("Connecting to %d servers...", len(attempted))
        sessions = [Session(target) for target in attempted]

        try:
            results = await asyncio.gather(
                *(self._connect_one(session) for session in sessions),
                return_exceptions=True,
            )
        except BaseException:
            for session in sessions:
                if session.id not in self.registry:
                    self.registry.add(session)
            await self.close_all()
            raise

        for session, result in zip(sessions, results, strict=True):
            if isinstance(result, BaseException) and session.state == SessionState.PENDING:
                session.mark_failed(_describe(result))
            self.registry.add(session)

        outcome: dict[str, Session | TargetOutcome] = {}
        failures: list[TargetOutcome] = []
        for session in sessions:
            if session.is_ready:
                outcome[session.id] = session
                logger.info("Connected to %s (%s)", session.id, session.target.address)
            else:
                failed = TargetOutcome(
                    target=session.target, state=SessionState.FAILED, reason=session.reason
                )
                outcome[session.id] = failed
                failures.append(failed)
                logger.warning("Failed to connect to %s: %s", session.id, session.reason)

        ready = len(attempted) - len(failures)
        if ready == 0:
            logger.error(
                "SSH connection failed for all %d targets: %s",
                len(attempted),
                "; ".join(f"{f.target.id}: {f.reason}" for f in failures) or "no targets configured",
            )
            await self.close_all()
            raise NoLiveSessionsError(failures)

        if failures:
            logger.warning(
                "Partial connectivity: %d/%d servers connected, failed: %s",
                ready,
                len(attempted),
                ", ".join(f.target.id for f in failures),
            )
        logger.info("Successfully connected to %d/%d servers", ready, len(attempted))
        return outcome

    async def close_all(self) -> None:
        """Close every open session. Idempotent."""
        if len(self.registry):
            await self.registry.close_all()
            logger.info("All SSH connections closed")

    # ── Private helpers ──────────────────────────────────────────

    async def _connect_one(self, session: Session) -> None:
        """Resolve one target's attempt; never leaves an open channel behind on failure."""
        target = session.target
        timeout = self.settings.connect_timeout

        async def attempt() -> RemoteChannel:
            return await asyncio.wait_for(
                self.connector.connect(target, self.credentials, timeout), timeout
            )

        try:
            channel = await with_retry(
                attempt,
                max_attempts=self.settings.connect_attempts,
                base_delay=self.settings.connect_retry_delay,
                fatal_exceptions=(CredentialsError,),
                description=f"connect to {target.id}",
            )
        except Exception as exc:
            session.mark_failed(_describe(exc))
            return

        try:
            await self._probe(channel)
        except BaseException as exc:
            await _close_quietly(channel, target.id)
            if isinstance(exc, Exception):
                session.mark_failed(_describe(exc))
                return
            raise

        session.mark_ready(channel)

    async def _probe(self, channel: RemoteChannel) -> None:
        command = self.settings.connect_probe_command
        if not command:
            return
        timeout = self.settings.command_timeout
        output = await asyncio.wait_for(channel.run(command, timeout), timeout)
        if output.exit_status != 0:
            raise CommandError(
                f"probe command exited with {output.exit_status}",
                exit_status=output.exit_status,
                stderr=output.stderr,
            )


async def _close_quietly(channel: RemoteChannel, target_id: str) -> None:
    try:
        await channel.close()
    except Exception:
        logger.warning("Error while closing channel to %s", target_id, exc_info=True)


async def connect_all(
    targets: list[ServerTarget],
    credentials: SshCredentials,
    *,
    connector: Connector | None = None,
    settings: CollectorSettings | None = None,
) -> tuple[ConnectionManager, dict[str, Session | TargetOutcome]]:
    """Create a manager and connect it; the caller owns closing the manager."""
    manager = ConnectionManager(credentials, connector=connector, settings=settings)
    return manager, await manager.connect_all(targets)
