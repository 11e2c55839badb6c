"""Exception hierarchy for the log collector.

Only ``NoLiveSessionsError`` is run-fatal. Everything else is raised and
absorbed inside the component that detects it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sentinel_collector.models import TargetOutcome


_TROUBLESHOOTING_TIPS = (
    "Verify SSH_KEY_PATH is set and the key file is readable",
    "Check SSH_HOST_*, SSH_PORT_*, SSH_USER environment variables",
    "Test SSH connectivity: ssh -i <SSH_KEY_PATH> -p <port> <user>@<host>",
    "Verify network connectivity to target servers",
)


class CollectorError(Exception):
    """Base class for log collector errors."""


class SessionClosedError(CollectorError):
    """Raised when a session is used after it left the ``ready`` state."""


class DuplicateSessionError(CollectorError):
    """Raised when a target is registered twice in one run."""


class CredentialsError(CollectorError):
    """Raised when the SSH private key cannot be loaded. Retrying does not help."""


class CommandError(CollectorError):
    """Raised when a remote command fails, times out, or its stream breaks."""

    def __init__(self, message: str, *, exit_status: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_status = exit_status
        self.stderr = stderr


class NoLiveSessionsError(CollectorError):
    """Raised when no target reached ``ready``. Aborts the whole run."""

    def __init__(self, failures: list[TargetOutcome]) -> None:
        self.failures = list(failures)
        super().__init__(self._render())

    def _render(self) -> str:
        lines = [
            f"Failed to connect to any servers via SSH. "
            f"{len(self.failures)} connection attempts failed."
        ]
        for outcome in self.failures:
            lines.append(
                f"  - {outcome.target.id} ({outcome.target.address}): {outcome.reason}"
            )
        lines.append("Troubleshooting tips:")
        lines.extend(f"  {i}. {tip}" for i, tip in enumerate(_TROUBLESHOOTING_TIPS, start=1))
        return "\n".join(lines)
