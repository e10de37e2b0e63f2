import json
import logging
from typing import Callable

import pytest

from duckbridge.errors import CommandTimeoutError, SpawnError
from duckbridge.execution.client import Client
from duckbridge.execution.connection import ConnectionSettings
from duckbridge.execution.observability import (
    ExecutionEvent,
    InMemoryMetricsAdapter,
    ObservabilitySettings,
    compose_event_observers,
    execution_event_to_dict,
    make_json_event_logger,
)
from duckbridge.execution.protocol import ConnectionProtocol


def _event(name: str, **kwargs: object) -> ExecutionEvent:
    values: dict = {
        "timestamp": "2026-02-28T00:00:00+00:00",
        "event": name,
        "connection_id": "c1",
        "success": True,
        "metadata": {"service": "unit"},
    }
    values.update(kwargs)
    return ExecutionEvent(**values)


def test_execution_event_to_dict_shapes_payload() -> None:
    payload = execution_event_to_dict(
        _event("connection.disconnect", state="disconnected", worker_pid=123, exit_code=0, duration_ms=1.2)
    )
    assert payload["event"] == "connection.disconnect"
    assert payload["connection_id"] == "c1"
    assert payload["metadata"]["service"] == "unit"
    assert payload["worker_pid"] == 123
    assert payload["exit_code"] == 0
    assert payload["duration_ms"] == 1.2
    assert payload["fatal"] is None


def test_make_json_event_logger_emits_json_line(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("duckbridge.observability.test")
    event_logger = make_json_event_logger(logger=logger, level=logging.INFO)

    with caplog.at_level(logging.INFO, logger=logger.name):
        event_logger(_event("txn.commit", operation="commit", duration_ms=3.4))

    assert len(caplog.records) == 1
    decoded = json.loads(caplog.records[0].message)
    assert decoded["event"] == "txn.commit"
    assert decoded["operation"] == "commit"
    assert decoded["metadata"]["service"] == "unit"


def test_in_memory_metrics_adapter_records_counters_and_histograms() -> None:
    metrics = InMemoryMetricsAdapter()
    metrics(_event("command.end", operation="execute", duration_ms=2.0))
    metrics(
        _event(
            "command.end",
            operation="execute",
            success=False,
            duration_ms=5.0,
            error_type="CommandTimeoutError",
            fatal=True,
        )
    )
    metrics(_event("worker.spawn", duration_ms=30.0))
    metrics(_event("connection.errored", success=False, operation="execute", error_type="CommandTimeoutError"))
    metrics(_event("txn.commit", operation=None, duration_ms=7.0))

    ok_labels = {"operation": "execute", "event": "command.end", "error_type": "none"}
    timeout_labels = {"operation": "execute", "event": "command.end", "error_type": "CommandTimeoutError"}

    assert metrics.counter_value("duckbridge_commands_total", ok_labels) == 1
    assert metrics.counter_value("duckbridge_commands_total", timeout_labels) == 1
    assert metrics.counter_total("duckbridge_commands_total") == 2
    assert metrics.counter_total("duckbridge_command_failures_total") == 1
    assert metrics.counter_total("duckbridge_command_timeouts_total") == 1
    assert metrics.counter_total("duckbridge_worker_spawns_total") == 1
    assert metrics.counter_total("duckbridge_connection_errors_total") == 1
    assert metrics.histogram_values("duckbridge_command_duration_ms", ok_labels) == [2.0]
    assert metrics.histogram_values(
        "duckbridge_txn_duration_ms",
        {"operation": "unknown", "event": "txn.commit", "error_type": "none"},
    ) == [7.0]

    names = {point.name for point in metrics.counters()}
    assert "duckbridge_worker_spawns_total" in names


def test_in_memory_metrics_adapter_counts_worker_exits() -> None:
    metrics = InMemoryMetricsAdapter()
    metrics(_event("worker.exit", success=False, operation="read", exit_code=-9, error_type="WorkerExitedError"))

    labels = {"operation": "read", "event": "worker.exit", "error_type": "WorkerExitedError"}
    assert metrics.counter_value("duckbridge_worker_exits_total", labels) == 1
    assert metrics.counter_total("duckbridge_connection_errors_total") == 0


def test_compose_event_observers_dispatches_to_all() -> None:
    sink1: list[str] = []
    sink2: list[str] = []
    observer = compose_event_observers(
        lambda event: sink1.append(event.event),
        lambda event: sink2.append(event.event),
    )
    observer(_event("connection.checkout"))
    assert sink1 == ["connection.checkout"]
    assert sink2 == ["connection.checkout"]


def test_client_emits_transaction_and_checkout_events(fake_settings: Callable[..., ConnectionSettings]) -> None:
    events: list[ExecutionEvent] = []
    with Client(fake_settings(), observability_settings=ObservabilitySettings(event_observer=events.append)) as db:
        db.transaction(lambda tx: tx.query("SELECT 1"))

    names = [event.event for event in events]
    for expected in ("worker.spawn", "connection.checkout", "txn.begin", "txn.commit", "connection.checkin"):
        assert expected in names
    assert names.index("txn.begin") < names.index("txn.commit") < names.index("connection.checkin")
    assert names[-1] == "connection.disconnect"

    commit = next(event for event in events if event.event == "txn.commit")
    assert commit.duration_ms is not None and commit.duration_ms >= 0


def test_timeout_is_counted_and_marks_connection(fake_settings: Callable[..., ConnectionSettings]) -> None:
    metrics = InMemoryMetricsAdapter()
    seen: list[ExecutionEvent] = []
    observer = compose_event_observers(metrics, seen.append)
    conn = ConnectionProtocol.connect(
        fake_settings(),
        observability_settings=ObservabilitySettings(event_observer=observer),
    )
    try:
        query = conn.prepare("FAKE SLEEP 0.5")
        with pytest.raises(CommandTimeoutError):
            conn.execute(query, timeout=0.05)
    finally:
        conn.disconnect()

    assert metrics.counter_total("duckbridge_command_timeouts_total") == 1
    assert metrics.counter_total("duckbridge_connection_errors_total") == 1
    errored = [event for event in seen if event.event == "connection.errored"]
    assert errored[0].fatal is True
    assert errored[0].operation == "execute"


def test_worker_stderr_goes_to_worker_logger(
    caplog: pytest.LogCaptureFixture,
    fake_settings: Callable[..., ConnectionSettings],
) -> None:
    with caplog.at_level(logging.DEBUG, logger="duckbridge.worker"):
        with pytest.raises(SpawnError):
            ConnectionProtocol.connect(fake_settings("--exit-on-start", "4"))

    messages = [record.getMessage() for record in caplog.records if record.name == "duckbridge.worker"]
    assert any("refusing to start" in message for message in messages)
