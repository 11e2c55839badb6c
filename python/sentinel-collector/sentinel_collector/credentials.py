"""SSH credentials and target list, read from environment variables.

Never hardcodes key material; only the key's file path is configured.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from sentinel_collector.models import ServerTarget

logger = logging.getLogger(__name__)

DEFAULT_SSH_USER = "logcollector"
DEFAULT_SSH_PORT = 22


@dataclass(frozen=True)
class SshCredentials:
    """Private key used for every target in a run."""

    key_path: str
    passphrase: str | None = None
    known_hosts: str | None = None

    @classmethod
    def from_env(cls) -> SshCredentials:
        """Load SSH credentials from environment variables.

        ``SSH_KNOWN_HOSTS`` unset means host keys are not verified, which
        matches how the collection containers are provisioned.
        """
        return cls(
            key_path=os.environ.get("SSH_KEY_PATH", "/app/.ssh/container_key"),
            passphrase=os.environ.get("SSH_KEY_PASSPHRASE"),
            known_hosts=os.environ.get("SSH_KNOWN_HOSTS"),
        )


def _parse_port(raw: str | None, target_id: str) -> int:
    if not raw:
        return DEFAULT_SSH_PORT
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid port %r for %s, using %d", raw, target_id, DEFAULT_SSH_PORT)
        return DEFAULT_SSH_PORT


def targets_from_env(max_targets: int = 3) -> list[ServerTarget]:
    """Build the target list from ``SSH_HOST_<n>`` / ``SSH_PORT_<n>`` / ``SSH_USER[_<n>]``.

    Targets whose host is unset are returned too; the connection manager
    skips them without counting a failure.
    """
    shared_user = os.environ.get("SSH_USER") or DEFAULT_SSH_USER
    targets: list[ServerTarget] = []
    for n in range(1, max_targets + 1):
        target_id = f"server{n}"
        targets.append(
            ServerTarget(
                id=target_id,
                host=os.environ.get(f"SSH_HOST_{n}", "").strip(),
                port=_parse_port(os.environ.get(f"SSH_PORT_{n}"), target_id),
                user=os.environ.get(f"SSH_USER_{n}") or shared_user,
            )
        )
    return targets
