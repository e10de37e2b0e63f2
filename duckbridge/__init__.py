from duckbridge.errors import (
    BusyError,
    CommandTimeoutError,
    DecodeError,
    DuckbridgeError,
    FramingError,
    ProtocolInvariantViolation,
    RollbackError,
    SpawnError,
    SQLError,
    TransportError,
    WorkerExitedError,
    WriteError,
)
from duckbridge.execution import (
    AttachSpec,
    Client,
    ConnectionProtocol,
    ConnectionSettings,
    ConnectionState,
    Cursor,
    ExecutionEvent,
    InMemoryMetricsAdapter,
    ObservabilitySettings,
    Query,
    QueryObservation,
    Result,
    ResultDecoder,
    SecretSpec,
    Transaction,
    TransactionStatus,
    make_json_event_logger,
)
from duckbridge.transport.messages import ColumnDescriptor, Command, Failure, Success

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "BusyError",
    "CommandTimeoutError",
    "DecodeError",
    "DuckbridgeError",
    "FramingError",
    "ProtocolInvariantViolation",
    "RollbackError",
    "SpawnError",
    "SQLError",
    "TransportError",
    "WorkerExitedError",
    "WriteError",
    "AttachSpec",
    "Client",
    "ConnectionProtocol",
    "ConnectionSettings",
    "ConnectionState",
    "Cursor",
    "ExecutionEvent",
    "InMemoryMetricsAdapter",
    "ObservabilitySettings",
    "Query",
    "QueryObservation",
    "Result",
    "ResultDecoder",
    "SecretSpec",
    "Transaction",
    "TransactionStatus",
    "make_json_event_logger",
    "ColumnDescriptor",
    "Command",
    "Failure",
    "Success",
]
