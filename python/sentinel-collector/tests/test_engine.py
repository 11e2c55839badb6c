"""End-to-end tests for the collection engine with in-memory servers."""

from __future__ import annotations

import logging

import pytest
from sentinel_collector.config import CollectorSettings
from sentinel_collector.engine import LogCollectionEngine
from sentinel_collector.errors import NoLiveSessionsError
from sentinel_collector.models import CollectionResult, Incident, SessionState

from collector_fakes import FakeChannel, FakeConnector, grep_output, make_target

_MATCH = "2025-01-11 10:00:01 ERROR [AUTH101] TrackID: ABC123 authentication failed"


def _make_incident(
    incident_id: str = "INC001",
    description: str = "INC001: auth failure TrackID: ABC123",
    status: str = "情報収集中",
    **kwargs,
) -> Incident:
    return Incident(incident_id=incident_id, description=description, status=status, **kwargs)


def _make_engine(settings, credentials, rule_set, connector: FakeConnector) -> LogCollectionEngine:
    return LogCollectionEngine(
        settings, rule_set=rule_set, connector=connector, credentials=credentials
    )


class ListSource:
    def __init__(self, incidents: list[Incident]) -> None:
        self._incidents = incidents

    def incidents(self) -> list[Incident]:
        return list(self._incidents)


class ListSink:
    def __init__(self) -> None:
        self.results: list[CollectionResult] = []

    def emit(self, result: CollectionResult) -> None:
        self.results.append(result)


# ── Happy path ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_one_entry_per_server(settings, credentials, rule_set) -> None:
    channels = {
        "server1": FakeChannel(grep_output(_MATCH)),
        "server2": FakeChannel(grep_output(_MATCH)),
    }
    engine = _make_engine(settings, credentials, rule_set, FakeConnector(dict(channels)))

    run = await engine.run([_make_incident()], [make_target(1), make_target(2)])

    (result,) = run.results
    assert result.incident_id == "INC001"
    assert result.total_entries == 2
    assert sorted(e.server_id for e in result.entries) == ["server1", "server2"]
    assert {e.track_id for e in result.entries} == {"ABC123"}
    assert result.search_terms.track_ids == ["ABC123"]
    assert run.tasks_processed == 1
    assert run.log_entries_found == 2
    assert run.connected == ["server1", "server2"]
    assert run.completed_at is not None
    # every session is closed once the run returns
    assert all(c.closed for c in channels.values())


@pytest.mark.asyncio
async def test_partial_fleet_still_collects(settings, credentials, rule_set) -> None:
    connector = FakeConnector(
        {
            "server1": FakeChannel(grep_output(_MATCH)),
            "server2": ConnectionRefusedError("Connection refused"),
            "server3": FakeChannel(grep_output()),
        }
    )
    engine = _make_engine(settings, credentials, rule_set, connector)

    run = await engine.run([_make_incident()], [make_target(1), make_target(2), make_target(3)])

    (result,) = run.results
    assert result.per_server_counts == {"server1": 1, "server3": 0}
    assert [o.target.id for o in run.failed] == ["server2"]
    assert run.connected == ["server1", "server3"]


@pytest.mark.asyncio
async def test_total_failure_aborts_run(settings, credentials, rule_set) -> None:
    connector = FakeConnector(
        {
            "server1": ConnectionRefusedError("Connection refused"),
            "server2": OSError("Host is unreachable"),
        }
    )
    engine = _make_engine(settings, credentials, rule_set, connector)

    with pytest.raises(NoLiveSessionsError) as excinfo:
        await engine.run([_make_incident()], [make_target(1), make_target(2)])
    assert len(excinfo.value.failures) == 2


# ── Incident selection ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_only_target_status_is_processed(settings, credentials, rule_set) -> None:
    channel = FakeChannel(grep_output(_MATCH))
    engine = _make_engine(settings, credentials, rule_set, FakeConnector({"server1": channel}))
    incidents = [
        _make_incident(),
        _make_incident("INC002", "TrackID: XYZ456", status="完了"),
    ]

    run = await engine.run(incidents, [make_target(1)])

    assert [r.incident_id for r in run.results] == ["INC001"]
    assert len(channel.commands) == 1
    assert "XYZ456" not in channel.commands[0]


@pytest.mark.asyncio
async def test_no_matching_incidents_skips_connecting(settings, credentials, rule_set, caplog) -> None:
    connector = FakeConnector()
    engine = _make_engine(settings, credentials, rule_set, connector)

    with caplog.at_level(logging.WARNING, logger="sentinel_collector"):
        run = await engine.run([_make_incident(status="完了")], [make_target(1)])

    assert run.results == []
    assert connector.attempts == []
    assert "nothing to collect" in caplog.text


@pytest.mark.asyncio
async def test_duplicate_incident_ids_processed_once(settings, credentials, rule_set, caplog) -> None:
    engine = _make_engine(settings, credentials, rule_set, FakeConnector())
    incidents = [_make_incident(source_ref="row 2"), _make_incident(source_ref="row 7")]

    with caplog.at_level(logging.WARNING, logger="sentinel_collector"):
        run = await engine.run(incidents, [make_target(1)])

    assert [r.incident_id for r in run.results] == ["INC001"]
    assert "Duplicate incident INC001 (row 7) ignored" in caplog.text


@pytest.mark.asyncio
async def test_incident_without_identifiers_yields_empty_result(settings, credentials, rule_set) -> None:
    channel = FakeChannel(grep_output(_MATCH))
    engine = _make_engine(settings, credentials, rule_set, FakeConnector({"server1": channel}))

    run = await engine.run([_make_incident(description="the printer is on fire")], [make_target(1)])

    (result,) = run.results
    assert result.entries == []
    assert result.per_server_counts == {"server1": 0}
    assert channel.commands == []


# ── Targets, patterns and collaborators ──────────────────────────


@pytest.mark.asyncio
async def test_targets_default_to_environment(settings, credentials, rule_set, monkeypatch) -> None:
    monkeypatch.setenv("SSH_HOST_1", "10.1.1.1")
    monkeypatch.setenv("SSH_PORT_1", "2222")
    monkeypatch.delenv("SSH_HOST_2", raising=False)
    monkeypatch.delenv("SSH_HOST_3", raising=False)
    connector = FakeConnector()
    engine = _make_engine(settings, credentials, rule_set, connector)

    run = await engine.run([_make_incident()])

    assert connector.attempts == ["server1"]
    states = {o.target.id: o.state for o in run.outcomes}
    assert states == {
        "server1": SessionState.CLOSED,
        "server2": SessionState.SKIPPED,
        "server3": SessionState.SKIPPED,
    }
    assert run.failed == []


def test_rule_set_falls_back_to_defaults(settings, credentials) -> None:
    engine = LogCollectionEngine(settings, connector=FakeConnector(), credentials=credentials)
    assert engine.rule_set.source == "defaults"
    assert engine.rule_set is engine.rule_set


def test_rule_set_loaded_from_input_folder(tmp_path, credentials) -> None:
    (tmp_path / "log-patterns.json").write_text(
        '{"patterns": {"ticketRef": {"kind": "trackId", "pattern": "REF-([0-9]{4})"}}}',
        encoding="utf-8",
    )
    engine = LogCollectionEngine(
        CollectorSettings(input_folder=str(tmp_path), log_pattern_file=None),
        connector=FakeConnector(),
        credentials=credentials,
    )
    assert engine.rule_set.source == f"{tmp_path}/log-patterns.json"
    assert "ticketRef" in [r.name for r in engine.rule_set.rules]


@pytest.mark.asyncio
async def test_collect_emits_to_sink(settings, credentials, rule_set) -> None:
    engine = _make_engine(
        settings, credentials, rule_set, FakeConnector({"server1": FakeChannel(grep_output(_MATCH))})
    )
    source = ListSource([_make_incident(), _make_incident("INC003", "trackId=QRS999")])
    sink = ListSink()

    run = await engine.collect(source, sink, [make_target(1)])

    assert [r.incident_id for r in sink.results] == ["INC001", "INC003"]
    assert sink.results == run.results
