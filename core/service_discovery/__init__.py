"""
Service Discovery and Registration

Instance pools, health state and topic subscriptions.
"""

from core.service_discovery.registry import (
    ServiceInstance,
    ServicePool,
    ServiceRegistry,
    Subscription
)

__all__ = [
    "ServiceInstance",
    "ServicePool",
    "ServiceRegistry",
    "Subscription"
]
