"""Collector settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings

DEFAULT_LOG_PATHS = [
    "/var/log/application.log",
    "/var/log/app/*.log",
    "/tmp/logs/*.log",
]


class CollectorSettings(BaseSettings):
    """Sentinel Collector configuration.

    Every field can be overridden by the environment variable of the same
    name (e.g. ``CONNECT_TIMEOUT=10``). List fields take JSON values
    (``LOG_PATHS='["/var/log/*.log"]'``). SSH targets and key material are
    read separately, see ``sentinel_collector.credentials``.
    """

    # Incident selection
    target_status: str = "情報収集中"

    # Pattern configuration
    input_folder: str | None = None
    log_pattern_file: str | None = None

    # Remote search
    log_paths: list[str] = DEFAULT_LOG_PATHS
    search_ok_exit_statuses: list[int] = [0, 1]
    time_filter_enabled: bool = True
    timestamp_timezone: str = "UTC"

    # Connections
    connect_timeout: float = 30.0
    command_timeout: float = 30.0
    connect_attempts: int = 1
    connect_retry_delay: float = 1.0
    connect_probe_command: str | None = None

    @property
    def pattern_file_path(self) -> str:
        """Resolved pattern file location."""
        if self.log_pattern_file:
            return self.log_pattern_file
        if self.input_folder:
            return f"{self.input_folder}/log-patterns.json"
        return "./examples/log-patterns.json"

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = CollectorSettings()
