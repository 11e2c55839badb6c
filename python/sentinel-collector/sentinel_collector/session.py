"""Remote sessions: channel protocols, the asyncssh transport, and the registry.

A ``Session`` wraps one connected channel for one target. It moves
``pending -> ready -> closed`` or ``pending -> failed`` and is never used
again once it leaves ``ready``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import asyncssh

from sentinel_collector.errors import (
    CommandError,
    CredentialsError,
    DuplicateSessionError,
    SessionClosedError,
)
from sentinel_collector.models import CommandOutput, SessionState

if TYPE_CHECKING:
    from collections.abc import Iterator

    from sentinel_collector.credentials import SshCredentials
    from sentinel_collector.models import ServerTarget

logger = logging.getLogger(__name__)

# ── Protocols ────────────────────────────────────────────────────


@runtime_checkable
class RemoteChannel(Protocol):
    """One logical command channel to a connected host."""

    async def run(self, command: str, timeout: float) -> CommandOutput: ...

    async def close(self) -> None: ...


@runtime_checkable
class Connector(Protocol):
    """Opens a ``RemoteChannel`` to a target.

    ``AsyncSshConnector`` is the production implementation; tests supply
    in-memory fakes with the same shape.
    """

    async def connect(
        self,
        target: ServerTarget,
        credentials: SshCredentials,
        timeout: float,
    ) -> RemoteChannel: ...


# ── asyncssh transport ───────────────────────────────────────────


class AsyncSshChannel:
    """``RemoteChannel`` over an ``asyncssh`` client connection."""

    def __init__(self, conn: asyncssh.SSHClientConnection) -> None:
        self._conn = conn

    async def run(self, command: str, timeout: float) -> CommandOutput:
        try:
            result = await self._conn.run(command, check=False, timeout=timeout)
        except asyncssh.TimeoutError as exc:
            raise CommandError(f"command timed out after {timeout}s") from exc
        except (asyncssh.Error, OSError) as exc:
            raise CommandError(f"command failed: {exc}") from exc

        return CommandOutput(
            stdout=_as_text(result.stdout),
            stderr=_as_text(result.stderr),
            exit_status=result.exit_status,
        )

    async def close(self) -> None:
        self._conn.close()
        await self._conn.wait_closed()


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class AsyncSshConnector:
    """Connects with public-key auth using ``asyncssh``.

    The private key is read once per key path, in a worker thread, and
    shared by every target. A key that cannot be read fails each target
    with ``CredentialsError`` without touching the disk again.
    """

    def __init__(self) -> None:
        self._keys: dict[str, asyncssh.SSHKey | CredentialsError] = {}
        self._key_lock = asyncio.Lock()

    async def load_key(self, credentials: SshCredentials) -> asyncssh.SSHKey:
        async with self._key_lock:
            cached = self._keys.get(credentials.key_path)
            if cached is None:
                try:
                    cached = await asyncio.to_thread(
                        asyncssh.read_private_key, credentials.key_path, credentials.passphrase
                    )
                except (OSError, asyncssh.KeyImportError) as exc:
                    logger.error("SSH key not readable: %s (%s)", credentials.key_path, exc)
                    cached = CredentialsError(
                        f"SSH key not readable: {credentials.key_path} ({exc})"
                    )
                self._keys[credentials.key_path] = cached
        if isinstance(cached, CredentialsError):
            raise CredentialsError(str(cached))
        return cached

    async def connect(
        self,
        target: ServerTarget,
        credentials: SshCredentials,
        timeout: float,
    ) -> RemoteChannel:
        key = await self.load_key(credentials)

        logger.info("Connecting to %s (%s) as %s", target.id, target.address, target.user)
        conn = await asyncssh.connect(
            target.host,
            port=target.port,
            username=target.user,
            client_keys=[key],
            known_hosts=credentials.known_hosts,
            connect_timeout=timeout,
        )
        return AsyncSshChannel(conn)


# ── Session ──────────────────────────────────────────────────────


class Session:
    """A target's connection for the lifetime of one run.

    Commands are serialized with a lock: one request/response at a time
    over the single logical channel.
    """

    def __init__(self, target: ServerTarget) -> None:
        self.target = target
        self.state = SessionState.PENDING
        self.reason = ""
        self._channel: RemoteChannel | None = None
        self._lock = asyncio.Lock()

    @property
    def id(self) -> str:
        return self.target.id

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    def mark_ready(self, channel: RemoteChannel) -> None:
        if self.state != SessionState.PENDING:
            raise SessionClosedError(f"Session {self.id} is {self.state}, cannot become ready")
        self._channel = channel
        self.state = SessionState.READY

    def mark_failed(self, reason: str) -> None:
        if self.state != SessionState.PENDING:
            raise SessionClosedError(f"Session {self.id} is {self.state}, cannot fail")
        self.state = SessionState.FAILED
        self.reason = reason

    async def run(self, command: str, timeout: float) -> CommandOutput:
        """Run one command, bounded by ``timeout`` seconds.

        Raises:
            SessionClosedError: If the session is not ready.
            CommandError: On timeout or transport failure.
        """
        async with self._lock:
            if self.state != SessionState.READY or self._channel is None:
                raise SessionClosedError(f"Session {self.id} is {self.state}")
            try:
                return await asyncio.wait_for(self._channel.run(command, timeout), timeout)
            except TimeoutError as exc:
                raise CommandError(f"command timed out after {timeout}s") from exc
            except OSError as exc:
                raise CommandError(f"stream error: {exc}") from exc

    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        if self.state != SessionState.READY:
            return
        self.state = SessionState.CLOSED
        channel, self._channel = self._channel, None
        if channel is None:
            return
        try:
            await channel.close()
        except Exception:
            logger.warning("Error while closing session %s", self.id, exc_info=True)
        logger.debug("Session %s closed", self.id)


class SessionRegistry:
    """Sessions of one run keyed by target id.

    Each key is written exactly once, after that target's connection
    attempt resolved; afterwards the registry is read-only.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def add(self, session: Session) -> None:
        if session.id in self._sessions:
            raise DuplicateSessionError(f"Session for {session.id} already registered")
        self._sessions[session.id] = session

    def get(self, target_id: str) -> Session | None:
        return self._sessions.get(target_id)

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)

    def live(self) -> list[Session]:
        """Sessions currently in ``ready``, in registration order."""
        return [s for s in self._sessions.values() if s.is_ready]

    async def close_all(self) -> None:
        await asyncio.gather(*(s.close() for s in self._sessions.values()))
