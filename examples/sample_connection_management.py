import os

from dotenv import load_dotenv

from duckbridge import AttachSpec, Client, ConnectionProtocol, ConnectionSettings, SecretSpec


def main() -> None:
    load_dotenv()

    # Extensions, secrets and attachments run right after the worker handshake.
    settings = ConnectionSettings.from_env(
        connect_timeout_seconds=30.0,
        attachments=(AttachSpec(path="static/duckbridge-example.duckdb", alias="local"),),
    )
    if os.getenv("S3_KEY_ID"):
        settings = ConnectionSettings.from_env(
            extensions=("httpfs",),
            secrets=(
                SecretSpec(
                    name="lake",
                    options=[
                        ("type", "s3"),
                        ("key_id", os.getenv("S3_KEY_ID")),
                        ("secret", os.getenv("S3_SECRET", "")),
                        ("endpoint", os.getenv("S3_ENDPOINT", "localhost:9000")),
                        ("use_ssl", False),
                        ("url_style", "path"),
                    ],
                ),
            ),
            attachments=settings.attachments,
        )

    os.makedirs("static", exist_ok=True)

    # Lifecycle control with context manager.
    with Client(settings) as db:
        db.query("CREATE TABLE IF NOT EXISTS local.users (id INTEGER PRIMARY KEY, name TEXT)")
        db.query("INSERT OR REPLACE INTO local.users VALUES (?, ?)", [1, "Alice"])
        print("context-managed rows:", db.query("SELECT id, name FROM local.users").rows)

    # Pool hooks: external acquire/release wiring.
    pool = [ConnectionProtocol.connect(settings)]

    def acquire_connection() -> ConnectionProtocol:
        conn = pool.pop()
        if not conn.ping():
            conn.disconnect()
            conn = ConnectionProtocol.connect(settings)
        return conn

    def release_connection(conn: ConnectionProtocol) -> None:
        pool.append(conn)

    with Client(acquire_connection=acquire_connection, release_connection=release_connection) as pooled:
        print("pooled rows:", pooled.query("SELECT id, name FROM local.users").rows)

    for conn in pool:
        conn.disconnect()


if __name__ == "__main__":
    main()
