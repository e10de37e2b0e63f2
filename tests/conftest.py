import os
import shutil

import pytest
from dotenv import load_dotenv

from duckbridge.execution.client import Client
from duckbridge.execution.connection import DEFAULT_WORKER_NAME, ConnectionSettings
from duckbridge.execution.protocol import ConnectionProtocol

# Integration tests talk to a real duckex worker. Point DUCKBRIDGE_WORKER at
# the binary (a .env file in the project root works too), or put `duckex` on PATH.
load_dotenv()

WORKER_PATH = os.getenv("DUCKBRIDGE_WORKER") or shutil.which(DEFAULT_WORKER_NAME)
WORKER_TIMEOUT = float(os.getenv("DUCKBRIDGE_TIMEOUT", "15"))


@pytest.fixture
def worker_settings():
    """
    Settings for the real worker, read from the environment.
    """
    if not WORKER_PATH:
        pytest.skip("no duckex worker configured (set DUCKBRIDGE_WORKER)")
    return ConnectionSettings.from_env(executable=WORKER_PATH, timeout_seconds=WORKER_TIMEOUT)


@pytest.fixture
def worker_connection(worker_settings):
    """
    Yields a connected ConnectionProtocol with a fresh in-memory database.
    """
    conn = ConnectionProtocol.connect(worker_settings)
    try:
        yield conn
    finally:
        conn.disconnect()


@pytest.fixture
def db(worker_settings):
    """
    Yields a Client owning its own worker.
    """
    with Client(worker_settings) as client:
        yield client


@pytest.fixture
def people(db):
    db.query("CREATE TABLE person (name TEXT, data INTEGER)")
    db.query("INSERT INTO person (name, data) VALUES (?, ?), (?, ?)", ["Foo", 1, "Bar", 2])
    return db
