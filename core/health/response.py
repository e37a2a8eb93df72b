"""
Standardized Health Check Response

Schema returned by the broker's /health endpoint.
"""
from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime
from core.utils.timezone import get_utc_now


class HealthResponse(BaseModel):
    """Standard health check response"""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "service": "mesh-broker",
                "version": "1.0.0",
                "timestamp": "2024-01-15T10:30:00+00:00",
                "uptime_seconds": 3600,
                "durable_log": "connected",
                "details": {"services": 2, "instances": 3, "healthy_instances": 3, "subscribed_topics": 1}
            }
        }
    )

    status: str  # "healthy", "degraded", "unhealthy"
    service: str
    version: str = "1.0.0"
    timestamp: datetime
    uptime_seconds: Optional[float] = None

    # Component health
    durable_log: Optional[str] = None  # "connected", "disconnected", "error"

    details: Optional[Dict[str, Any]] = None


def create_health_response(
    service: str,
    version: str = "1.0.0",
    durable_log: str = None,
    uptime_seconds: float = None,
    details: Dict[str, Any] = None
) -> HealthResponse:
    """Factory function to create standardized health response"""

    if durable_log is None or durable_log == "connected":
        status = "healthy"
    elif durable_log == "error":
        status = "unhealthy"
    else:
        status = "degraded"

    return HealthResponse(
        status=status,
        service=service,
        version=version,
        timestamp=get_utc_now(),
        uptime_seconds=uptime_seconds,
        durable_log=durable_log,
        details=details
    )
