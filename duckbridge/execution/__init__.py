from duckbridge.execution.client import Client, Transaction
from duckbridge.execution.connection import AttachSpec, ConnectionSettings, SecretSpec
from duckbridge.execution.observability import (
    ExecutionEvent,
    InMemoryMetricsAdapter,
    MetricPoint,
    ObservabilitySettings,
    QueryObservation,
    compose_event_observers,
    execution_event_to_dict,
    make_json_event_logger,
)
from duckbridge.execution.protocol import ConnectionProtocol, ConnectionState, TransactionStatus
from duckbridge.execution.query import Cursor, Query
from duckbridge.execution.result import Result, ResultDecoder, decode_row

__all__ = [
    "Client",
    "Transaction",
    "AttachSpec",
    "ConnectionSettings",
    "SecretSpec",
    "ExecutionEvent",
    "InMemoryMetricsAdapter",
    "MetricPoint",
    "ObservabilitySettings",
    "QueryObservation",
    "compose_event_observers",
    "execution_event_to_dict",
    "make_json_event_logger",
    "ConnectionProtocol",
    "ConnectionState",
    "TransactionStatus",
    "Cursor",
    "Query",
    "Result",
    "ResultDecoder",
    "decode_row",
]
