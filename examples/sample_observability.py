import logging

from dotenv import load_dotenv

from duckbridge import Client, ConnectionSettings, InMemoryMetricsAdapter, ObservabilitySettings, QueryObservation
from duckbridge.execution import compose_event_observers, make_json_event_logger


def log_query(event: QueryObservation) -> None:
    print(
        f"[{event.connection_id[:8]}] op={event.operation} success={event.succeeded} "
        f"duration_ms={event.duration_ms:.2f} params={event.param_count} metadata={dict(event.metadata)}"
    )


logging.basicConfig(level=logging.INFO)
load_dotenv()

metrics = InMemoryMetricsAdapter()
event_observer = compose_event_observers(
    make_json_event_logger(logger=logging.getLogger("duckbridge.events")),
    metrics,
)

with Client(
    ConnectionSettings.from_env(),
    observability_settings=ObservabilitySettings(
        query_observer=log_query,
        event_observer=event_observer,
        metadata={"service": "duckbridge-sample"},
    ),
) as db:
    db.query("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
    db.query("INSERT INTO users (id, name) VALUES (?, ?)", [1, "Alice"])
    print(db.query("SELECT id, name FROM users ORDER BY id").rows)

for point in metrics.counters():
    print(point.name, dict(point.labels), point.value)
