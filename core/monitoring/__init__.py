# Monitoring module
from .metrics import (
    start_metrics_server,
    track_delivery_attempt,
    track_fanout,
)

__all__ = [
    'start_metrics_server',
    'track_delivery_attempt',
    'track_fanout',
]
