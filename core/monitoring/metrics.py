"""
Prometheus Metrics

Delivery, circuit breaker, dead-letter and two-phase commit metrics for
the broker. Exposed on GET /metrics and, when METRICS_PORT is set, on a
standalone exporter.
"""

from prometheus_client import Counter, Histogram, start_http_server


def start_metrics_server(port: int):
    """Start Prometheus metrics server"""
    start_http_server(port)


# ============================================================================
# DELIVERY METRICS
# ============================================================================

# One per outbound HTTP attempt
delivery_attempts_total = Counter(
    'broker_delivery_attempts_total',
    'Outbound delivery attempts',
    ['service', 'outcome']  # outcome: success/failure
)

# Whole fan-out of one published message
fanout_duration_seconds = Histogram(
    'broker_fanout_duration_seconds',
    'Time to deliver a published message to every subscriber',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Subscribers reached per fan-out
fanout_deliveries_total = Counter(
    'broker_fanout_deliveries_total',
    'Per-subscriber fan-out results',
    ['topic', 'status']  # status: delivered/failed
)


# ============================================================================
# CIRCUIT BREAKER METRICS
# ============================================================================

circuit_trips_total = Counter(
    'broker_circuit_trips_total',
    'Circuit breaker CLOSED -> OPEN transitions',
    ['instance']
)


# ============================================================================
# DEAD LETTER METRICS
# ============================================================================

dead_letters_total = Counter(
    'broker_dead_letters_total',
    'Payloads written to the dead-letter log',
    ['reason']  # error code of the failure that produced it
)


# ============================================================================
# TWO-PHASE COMMIT METRICS
# ============================================================================

transactions_total = Counter(
    'broker_transactions_total',
    'Two-phase commit outcomes',
    ['status']  # committed/aborted/error
)


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def track_delivery_attempt(service: str, success: bool):
    """Track one outbound attempt"""
    delivery_attempts_total.labels(
        service=service,
        outcome="success" if success else "failure"
    ).inc()


def track_fanout(topic: str, delivered: int, failed: int, duration: float):
    """Track a finished fan-out"""
    fanout_duration_seconds.observe(duration)
    if delivered:
        fanout_deliveries_total.labels(topic=topic, status="delivered").inc(delivered)
    if failed:
        fanout_deliveries_total.labels(topic=topic, status="failed").inc(failed)
