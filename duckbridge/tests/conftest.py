import sys
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from duckbridge.execution.client import Client
from duckbridge.execution.connection import ConnectionSettings
from duckbridge.execution.protocol import ConnectionProtocol

FAKE_WORKER = Path(__file__).with_name("fake_worker.py")


def _fake_settings(*worker_args: str, **overrides: Any) -> ConnectionSettings:
    values: dict[str, Any] = {
        "executable": sys.executable,
        "args": ("-u", str(FAKE_WORKER), *worker_args),
        "timeout_seconds": 5.0,
        "terminate_grace_seconds": 2.0,
    }
    values.update(overrides)
    return ConnectionSettings(**values)


@pytest.fixture
def fake_settings() -> Callable[..., ConnectionSettings]:
    """
    Factory for settings that spawn the scripted fake worker.
    """
    return _fake_settings


@pytest.fixture
def connection() -> Iterator[ConnectionProtocol]:
    conn = ConnectionProtocol.connect(_fake_settings())
    try:
        yield conn
    finally:
        conn.disconnect()


@pytest.fixture
def client() -> Iterator[Client]:
    with Client(_fake_settings()) as db:
        yield db
