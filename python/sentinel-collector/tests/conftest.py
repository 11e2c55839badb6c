"""Shared fixtures for the collector tests."""

from __future__ import annotations

import pytest
from sentinel_collector.config import CollectorSettings
from sentinel_collector.credentials import SshCredentials
from sentinel_collector.patterns import default_rule_set

from collector_fakes import make_credentials


@pytest.fixture
def settings() -> CollectorSettings:
    """Short timeouts so failure paths resolve quickly."""
    return CollectorSettings(
        connect_timeout=0.2,
        command_timeout=0.2,
        connect_retry_delay=0.01,
        log_pattern_file="/nonexistent/log-patterns.json",
    )


@pytest.fixture
def credentials() -> SshCredentials:
    return make_credentials()


@pytest.fixture
def rule_set():
    return default_rule_set()
