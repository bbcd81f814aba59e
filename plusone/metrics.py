"""Prometheus metrics for the order ledger."""

from prometheus_client import Counter, Gauge, Info

# Application info
app_info = Info("plusone_ledger", "PlusOne ledger application info")
app_info.info({"version": "0.1.0", "name": "plusone-ledger"})

# Screen monitor metrics
monitor_frames_total = Counter(
    "monitor_frames_total",
    "Frames captured by the screen monitor",
    ["outcome"],  # analyzed, unchanged, empty
)

monitor_change_score = Gauge(
    "monitor_change_score_percent",
    "Change score of the most recent captured frame",
)

monitor_running = Gauge(
    "monitor_running",
    "Whether the screen monitor is currently running",
)

# Extraction metrics
oracle_calls_total = Counter(
    "oracle_calls_total",
    "Extraction oracle calls",
    ["input_kind", "status"],
)

candidates_total = Counter(
    "candidates_total",
    "Candidates seen by the reconciler",
    ["kind", "outcome"],  # kind: order/product/interaction; outcome: accepted/dropped/merged
)

# Ledger metrics
ledger_entities = Gauge(
    "ledger_entities",
    "Number of entities currently held in the ledger",
    ["collection"],
)

# Remote sync metrics
remote_writes_total = Counter(
    "remote_writes_total",
    "Write-through calls to the remote service",
    ["collection", "op", "status"],
)

remote_events_total = Counter(
    "remote_events_total",
    "Realtime change events merged into the ledger",
    ["collection", "type"],
)


def record_frame(outcome: str, score: float | None = None):
    """Record one captured frame."""
    monitor_frames_total.labels(outcome=outcome).inc()
    if score is not None:
        monitor_change_score.set(score)


def record_oracle_call(input_kind: str, success: bool):
    """Record an extraction oracle call."""
    status = "success" if success else "error"
    oracle_calls_total.labels(input_kind=input_kind, status=status).inc()


def record_candidates(kind: str, outcome: str, count: int = 1):
    if count:
        candidates_total.labels(kind=kind, outcome=outcome).inc(count)


def update_ledger_size(collection: str, size: int):
    ledger_entities.labels(collection=collection).set(size)


def record_remote_write(collection: str, op: str, success: bool):
    status = "success" if success else "error"
    remote_writes_total.labels(collection=collection, op=op, status=status).inc()


def record_remote_event(collection: str, event_type: str):
    remote_events_total.labels(collection=collection, type=event_type).inc()
