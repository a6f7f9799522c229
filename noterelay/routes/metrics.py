"""
Prometheus metrics endpoint.

Exposes delivery pipeline and HTTP metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Note Metrics
# ============================================

notes_created = Counter(
    'notes_created_total',
    'Total notes created'
)

notes_replayed = Counter(
    'notes_replayed_total',
    'Total notes reset for redelivery'
)

notes_claimed = Counter(
    'notes_claimed_total',
    'Total notes claimed by a worker'
)

stale_locks_reaped = Counter(
    'notes_stale_locks_reaped_total',
    'Total notes released from a stale processing lock'
)

# ============================================
# Delivery Metrics
# ============================================

deliveries_total = Counter(
    'note_deliveries_total',
    'Total delivery attempts by outcome',
    ['outcome']
)

delivery_duration = Histogram(
    'note_delivery_duration_seconds',
    'Webhook call duration in seconds',
    ['outcome'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# ============================================
# Sink Metrics
# ============================================

sink_received = Counter(
    'sink_received_total',
    'Total deliveries received by the sink',
    ['result']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_note_created():
    """Record a note being created."""
    notes_created.inc()


def track_note_replayed():
    """Record a note being replayed."""
    notes_replayed.inc()


def track_note_claimed():
    """Record a successful claim."""
    notes_claimed.inc()


def track_stale_locks_reaped(count: int):
    """Record notes released by the stale-lock reaper."""
    stale_locks_reaped.inc(count)


def track_delivery(outcome: str, duration_seconds: float):
    """Record one delivery attempt (delivered, retry or dead)."""
    deliveries_total.labels(outcome=outcome).inc()
    delivery_duration.labels(outcome=outcome).observe(duration_seconds)


def track_sink_received(result: str):
    """Record a sink receipt (processed, duplicate or failed)."""
    sink_received.labels(result=result).inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
