"""
Health Check Response

Standardized health payload for the broker.
"""

from core.health.response import HealthResponse, create_health_response

__all__ = [
    "HealthResponse",
    "create_health_response"
]
