from __future__ import annotations

from dataclasses import dataclass, field
import os
import shlex
import shutil
from typing import Any, Callable, Mapping, Sequence

from duckbridge.errors import SpawnError
from duckbridge.transport.framer import DEFAULT_MAX_LINE_BYTES

# ==================================================
# Connection Management Types
# ==================================================

ConnectionAcquireHook = Callable[[], Any]
ConnectionReleaseHook = Callable[[Any], None]

DEFAULT_WORKER_NAME = "duckex"
ENV_PREFIX = "DUCKBRIDGE_"


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _render_option_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return _quote_literal(str(value))


def _render_options(options: Sequence[tuple[str, Any]]) -> str:
    parts: list[str] = []
    for key, value in options:
        if value is True:
            parts.append(key.upper())
        else:
            parts.append(f"{key.upper()} {_render_option_value(value)}")
    return ", ".join(parts)


@dataclass(frozen=True)
class AttachSpec:
    """
    A database to ATTACH right after connecting.

    `connection_options` are appended to the path as `key=value` pairs, which
    is how catalog-backed attachments (e.g. `ducklake:postgres:`) take their
    connection string.
    """

    path: str
    alias: str | None = None
    options: Mapping[str, Any] = field(default_factory=dict)
    connection_options: Mapping[str, Any] = field(default_factory=dict)

    def to_sql(self) -> str:
        target = self.path
        if self.connection_options:
            conn_str = " ".join(f"{key}={value}" for key, value in self.connection_options.items())
            separator = "" if target.endswith(":") or not target else " "
            target = f"{target}{separator}{conn_str}"

        sql = f"ATTACH {_quote_literal(target)}"
        if self.alias:
            sql += f" AS {_quote_identifier(self.alias)}"
        if self.options:
            sql += f" ({_render_options(list(self.options.items()))})"
        return sql


@dataclass(frozen=True)
class SecretSpec:
    name: str
    options: Sequence[tuple[str, Any]] = ()

    def to_sql(self) -> str:
        if not self.options:
            raise ValueError(f"Secret {self.name!r} needs at least a TYPE option")
        return f"CREATE SECRET {_quote_identifier(self.name)} ({_render_options(list(self.options))})"


@dataclass(frozen=True)
class ConnectionSettings:
    """
    Everything needed to start and talk to one worker process.
    """

    executable: str | None = None
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: str | None = None
    timeout_seconds: float | None = 15.0
    connect_timeout_seconds: float | None = None
    terminate_grace_seconds: float = 5.0
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    extensions: tuple[str, ...] = ()
    attachments: tuple[AttachSpec, ...] = ()
    secrets: tuple[SecretSpec, ...] = ()
    acquire_connection: ConnectionAcquireHook | None = None
    release_connection: ConnectionReleaseHook | None = None

    def __post_init__(self) -> None:
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.connect_timeout_seconds is not None and self.connect_timeout_seconds <= 0:
            raise ValueError("connect_timeout_seconds must be > 0")
        if self.terminate_grace_seconds < 0:
            raise ValueError("terminate_grace_seconds must be >= 0")
        for name in ("args", "extensions", "attachments", "secrets"):
            value = getattr(self, name)
            if not isinstance(value, tuple):
                object.__setattr__(self, name, tuple(value))

    @property
    def handshake_timeout_seconds(self) -> float | None:
        if self.connect_timeout_seconds is not None:
            return self.connect_timeout_seconds
        return self.timeout_seconds

    def resolve_executable(self) -> str:
        if self.executable:
            return self.executable
        found = shutil.which(DEFAULT_WORKER_NAME)
        if found is None:
            raise SpawnError(
                f"No worker executable configured and {DEFAULT_WORKER_NAME!r} is not on PATH. "
                f"Set {ENV_PREFIX}WORKER or pass executable=.",
                operation="connect",
            )
        return found

    def setup_statements(self) -> list[str]:
        statements: list[str] = []
        for extension in self.extensions:
            statements.append(f"INSTALL {extension}")
            statements.append(f"LOAD {extension}")
        statements.extend(secret.to_sql() for secret in self.secrets)
        statements.extend(attachment.to_sql() for attachment in self.attachments)
        return statements

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "ConnectionSettings":
        """
        Builds settings from `DUCKBRIDGE_*` variables; keyword overrides win.
        """
        source = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        executable = source.get(f"{ENV_PREFIX}WORKER")
        if executable:
            values["executable"] = executable
        args = source.get(f"{ENV_PREFIX}WORKER_ARGS")
        if args:
            values["args"] = tuple(shlex.split(args))
        timeout = source.get(f"{ENV_PREFIX}TIMEOUT")
        if timeout:
            values["timeout_seconds"] = float(timeout)
        connect_timeout = source.get(f"{ENV_PREFIX}CONNECT_TIMEOUT")
        if connect_timeout:
            values["connect_timeout_seconds"] = float(connect_timeout)
        grace = source.get(f"{ENV_PREFIX}TERMINATE_GRACE")
        if grace:
            values["terminate_grace_seconds"] = float(grace)
        max_line = source.get(f"{ENV_PREFIX}MAX_LINE_BYTES")
        if max_line:
            values["max_line_bytes"] = int(max_line)
        extensions = source.get(f"{ENV_PREFIX}EXTENSIONS")
        if extensions:
            values["extensions"] = tuple(name.strip() for name in extensions.split(",") if name.strip())

        values.update(overrides)
        return cls(**values)
