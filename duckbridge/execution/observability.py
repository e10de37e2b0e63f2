from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
from typing import Any, Callable, Mapping

# ==================================================
# Observability Types
# ==================================================

QueryObserveHook = Callable[["QueryObservation"], None]
EventObserveHook = Callable[["ExecutionEvent"], None]
LabelMap = Mapping[str, str]


@dataclass(frozen=True)
class ObservabilitySettings:
    """
    Connection observability settings.
    """

    query_observer: QueryObserveHook | None = None
    event_observer: EventObserveHook | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QueryObservation:
    """
    One observed command round trip.
    """

    connection_id: str
    operation: str
    command: str
    sql: str | None
    param_count: int
    duration_ms: float
    succeeded: bool
    in_transaction: bool
    metadata: Mapping[str, Any] = field(default_factory=dict)
    error_type: str | None = None
    error_message: str | None = None
    fatal: bool | None = None


@dataclass(frozen=True)
class ExecutionEvent:
    """
    Structured connection lifecycle event payload.
    """

    timestamp: str
    event: str
    connection_id: str
    success: bool
    metadata: Mapping[str, Any] = field(default_factory=dict)
    operation: str | None = None
    state: str | None = None
    worker_pid: int | None = None
    exit_code: int | None = None
    duration_ms: float | None = None
    error_type: str | None = None
    error_message: str | None = None
    fatal: bool | None = None


def now_iso_utc() -> str:
    return datetime.now(timezone.utc).isoformat()


def execution_event_to_dict(event: ExecutionEvent) -> dict[str, Any]:
    """
    Converts an ExecutionEvent into a JSON-safe dictionary.
    """

    return {
        "timestamp": event.timestamp,
        "event": event.event,
        "connection_id": event.connection_id,
        "success": event.success,
        "metadata": dict(event.metadata),
        "operation": event.operation,
        "state": event.state,
        "worker_pid": event.worker_pid,
        "exit_code": event.exit_code,
        "duration_ms": event.duration_ms,
        "error_type": event.error_type,
        "error_message": event.error_message,
        "fatal": event.fatal,
    }


def make_json_event_logger(
    *,
    logger: logging.Logger,
    level: int = logging.INFO,
) -> EventObserveHook:
    """
    Builds an EventObserveHook that emits one JSON log line per ExecutionEvent.
    """

    def _log_event(event: ExecutionEvent) -> None:
        payload = execution_event_to_dict(event)
        logger.log(level, json.dumps(payload, separators=(",", ":"), sort_keys=True))

    return _log_event


def compose_event_observers(*observers: EventObserveHook) -> EventObserveHook:
    """
    Composes multiple event observers into a single observer.
    """

    def _composed(event: ExecutionEvent) -> None:
        for observer in observers:
            observer(event)

    return _composed


# ==================================================
# In-Memory Metrics
# ==================================================


def _event_labels(event: ExecutionEvent) -> dict[str, str]:
    operation = (event.operation or "").strip() or "unknown"
    return {
        "operation": operation,
        "event": event.event,
        "error_type": event.error_type or "none",
    }


def _labels_key(labels: LabelMap) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((str(key), str(value)) for key, value in labels.items()))


@dataclass(frozen=True)
class MetricPoint:
    name: str
    labels: Mapping[str, str]
    value: int | float


class InMemoryMetricsAdapter:
    """
    Event observer that keeps counters and duration samples in memory.
    """

    def __init__(self) -> None:
        self._counters: dict[tuple[str, tuple[tuple[str, str], ...]], int] = {}
        self._histograms: dict[tuple[str, tuple[tuple[str, str], ...]], list[float]] = {}

    def __call__(self, event: ExecutionEvent) -> None:
        labels = _event_labels(event)
        if event.event == "command.end":
            self._inc("duckbridge_commands_total", labels, 1)
            if not event.success:
                self._inc("duckbridge_command_failures_total", labels, 1)
            if event.error_type == "CommandTimeoutError":
                self._inc("duckbridge_command_timeouts_total", labels, 1)
            if event.duration_ms is not None:
                self._observe("duckbridge_command_duration_ms", labels, event.duration_ms)
            return

        if event.event == "worker.spawn":
            self._inc("duckbridge_worker_spawns_total", labels, 1)
            if event.duration_ms is not None:
                self._observe("duckbridge_connect_duration_ms", labels, event.duration_ms)
            return

        if event.event == "worker.exit":
            self._inc("duckbridge_worker_exits_total", labels, 1)
            return

        if event.event == "connection.errored":
            self._inc("duckbridge_connection_errors_total", labels, 1)
            return

        if event.event in {"txn.commit", "txn.rollback"} and event.duration_ms is not None:
            self._observe("duckbridge_txn_duration_ms", labels, event.duration_ms)

    def _inc(self, metric: str, labels: LabelMap, delta: int) -> None:
        key = (metric, _labels_key(labels))
        self._counters[key] = self._counters.get(key, 0) + delta

    def _observe(self, metric: str, labels: LabelMap, value: float) -> None:
        key = (metric, _labels_key(labels))
        self._histograms.setdefault(key, []).append(value)

    def counter_value(self, metric: str, labels: LabelMap) -> int:
        return self._counters.get((metric, _labels_key(labels)), 0)

    def counter_total(self, metric: str) -> int:
        return sum(value for (name, _), value in self._counters.items() if name == metric)

    def histogram_values(self, metric: str, labels: LabelMap) -> list[float]:
        return list(self._histograms.get((metric, _labels_key(labels)), []))

    def counters(self) -> list[MetricPoint]:
        return [
            MetricPoint(name=name, labels=dict(label_key), value=value)
            for (name, label_key), value in self._counters.items()
        ]
