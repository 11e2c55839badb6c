"""In-memory channel and connector doubles shared by the collector tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from sentinel_collector.credentials import SshCredentials
from sentinel_collector.models import CommandOutput, ServerTarget

HANG = "hang"


class FakeChannel:
    """Records commands and replies with a fixed or computed ``CommandOutput``."""

    def __init__(
        self,
        reply: CommandOutput | BaseException | Callable[[str], CommandOutput] | None = None,
        *,
        delay: float = 0.0,
        close_error: BaseException | None = None,
    ) -> None:
        self.reply = reply if reply is not None else CommandOutput()
        self.delay = delay
        self.close_error = close_error
        self.commands: list[str] = []
        self.close_calls = 0
        self.active = 0
        self.max_active = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def run(self, command: str, timeout: float) -> CommandOutput:
        if self.closed:
            raise OSError("channel closed")
        self.commands.append(command)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(self.reply, BaseException):
                raise self.reply
            if callable(self.reply):
                return self.reply(command)
            return self.reply
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


class FakeConnector:
    """Connector whose behaviour is scripted per target id.

    A behaviour is a ``FakeChannel`` to hand out, an exception to raise,
    or ``HANG`` to block until cancelled. Targets without a script get a
    fresh ``FakeChannel``.
    """

    def __init__(self, behaviours: dict[str, Any] | None = None) -> None:
        self.behaviours = behaviours or {}
        self.attempts: list[str] = []
        self.channels: dict[str, FakeChannel] = {}

    async def connect(
        self,
        target: ServerTarget,
        credentials: SshCredentials,
        timeout: float,
    ) -> FakeChannel:
        self.attempts.append(target.id)
        behaviour = self.behaviours.get(target.id)
        if isinstance(behaviour, BaseException):
            raise behaviour
        if behaviour == HANG:
            await asyncio.sleep(3600)
        channel = behaviour if isinstance(behaviour, FakeChannel) else FakeChannel()
        self.channels[target.id] = channel
        return channel


def make_target(n: int, host: str | None = None) -> ServerTarget:
    return ServerTarget(id=f"server{n}", host=f"10.0.0.{n}" if host is None else host)


def make_credentials() -> SshCredentials:
    return SshCredentials(key_path="/nonexistent/test_key")


def grep_output(*lines: str, path: str = "/var/log/app/application.log") -> CommandOutput:
    stdout = "".join(f"{path}:{line}\n" for line in lines)
    return CommandOutput(stdout=stdout, exit_status=0 if lines else 1)
