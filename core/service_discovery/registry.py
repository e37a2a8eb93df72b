"""
Service Registry for Instance Health and Topic Subscriptions

Owns every service pool (instances + round-robin cursor) and the topic
subscription table. The dispatch engine selects instances and reports
call outcomes through this object; it keeps no routing state of its own.

A single ServiceRegistry is shared by every request handler in the
process. All operations are synchronous and run under one lock, so the
read-modify-write on an instance's failure counter and on a pool cursor
never interleave.
"""

from typing import Dict, List, Optional
from dataclasses import dataclass, field
import threading
import time
import structlog

from core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    Clock,
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_FAILURE_THRESHOLD,
)

logger = structlog.get_logger("service-registry")


@dataclass
class ServiceInstance:
    """One network endpoint of a logical service"""
    service_name: str
    url: str
    breaker: CircuitBreaker
    health_check_url: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.breaker.is_closed

    @property
    def consecutive_failures(self) -> int:
        return self.breaker.failure_count

    @property
    def cooldown_until(self) -> Optional[float]:
        """Monotonic deadline, only set while unhealthy"""
        return self.breaker.open_until

    def to_dict(self) -> dict:
        circuit = self.breaker.get_state()
        return {
            "url": self.url,
            "health_check_url": self.health_check_url,
            "healthy": circuit["state"] == CircuitState.CLOSED.value,
            "consecutive_failures": circuit["failure_count"],
            "cooldown_remaining": circuit["time_until_reset"],
        }


@dataclass
class ServicePool:
    """Ordered instances of one service plus the round-robin cursor"""
    instances: List[ServiceInstance] = field(default_factory=list)
    cursor: int = 0

    def find(self, url: str) -> Optional[ServiceInstance]:
        for instance in self.instances:
            if instance.url == url:
                return instance
        return None


@dataclass(frozen=True)
class Subscription:
    """A service endpoint bound to a topic"""
    topic: str
    service_name: str
    endpoint: str

    def to_dict(self) -> dict:
        return {
            "topic": self.topic,
            "service_name": self.service_name,
            "endpoint": self.endpoint,
        }


class ServiceRegistry:
    """
    Instance bookkeeping, circuit breaking and subscriptions.

    Usage:
        registry = ServiceRegistry()
        registry.register("orders", "http://orders-1:9000")
        registry.subscribe("orders", "order.created", "/events")

        instance = registry.select_instance("orders")
        if instance is not None:
            ...
            registry.report_success(instance)
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Clock = time.monotonic
    ):
        """
        Args:
            failure_threshold: Consecutive failures that trip an instance
            cooldown: Seconds a tripped instance is skipped
            clock: Monotonic time source, injectable for tests
        """
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self.clock = clock

        self.services: Dict[str, ServicePool] = {}
        self.subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        service_name: str,
        url: str,
        health_check_url: Optional[str] = None
    ) -> ServiceInstance:
        """Register an instance; re-registering a known url is a no-op"""
        with self._lock:
            pool = self.services.setdefault(service_name, ServicePool())
            existing = pool.find(url)
            if existing is not None:
                return existing

            instance = ServiceInstance(
                service_name=service_name,
                url=url,
                health_check_url=health_check_url,
                breaker=CircuitBreaker(
                    failure_threshold=self.failure_threshold,
                    cooldown=self.cooldown,
                    clock=self.clock,
                    name=url
                )
            )
            pool.instances.append(instance)

        logger.info("Registered service instance", service=service_name, url=url)
        return instance

    def subscribe(self, service_name: str, topic: str, endpoint: str) -> Subscription:
        """Bind a service endpoint to a topic (idempotent)"""
        subscription = Subscription(topic=topic, service_name=service_name, endpoint=endpoint)
        with self._lock:
            subscribers = self.subscriptions.setdefault(topic, [])
            if subscription in subscribers:
                return subscription
            subscribers.append(subscription)

        logger.info(
            "Service subscribed to topic",
            service=service_name,
            topic=topic,
            endpoint=endpoint
        )
        return subscription

    def get_subscribers(self, topic: str) -> List[Subscription]:
        """Subscriptions for a topic in subscription order"""
        with self._lock:
            return list(self.subscriptions.get(topic, []))

    # ------------------------------------------------------------------
    # Selection and health feedback
    # ------------------------------------------------------------------

    def select_instance(self, service_name: str) -> Optional[ServiceInstance]:
        """
        Pick the next usable instance round-robin.

        Scans at most one full lap from the cursor. Healthy instances are
        taken as-is; a tripped instance whose cooldown has elapsed is
        closed again and taken. Instances still cooling down are skipped
        without moving the cursor.

        Returns:
            The selected instance, or None when nothing is usable
        """
        with self._lock:
            pool = self.services.get(service_name)
            if pool is None or not pool.instances:
                return None

            size = len(pool.instances)
            start = pool.cursor % size
            for offset in range(size):
                index = (start + offset) % size
                instance = pool.instances[index]
                if not instance.breaker.allow_request():
                    continue
                pool.cursor = (index + 1) % size
                return instance

        logger.warning("No usable instance", service=service_name, pool_size=size)
        return None

    def report_success(self, instance: ServiceInstance) -> None:
        with self._lock:
            instance.breaker.record_success()

    def report_failure(self, instance: ServiceInstance) -> None:
        with self._lock:
            instance.breaker.record_failure()

    # ------------------------------------------------------------------
    # Administrative reads
    # ------------------------------------------------------------------

    def get_instances(self, service_name: str) -> List[ServiceInstance]:
        with self._lock:
            pool = self.services.get(service_name)
            return list(pool.instances) if pool else []

    def snapshot(self) -> dict:
        """Pools, cursors and breaker state for the admin API"""
        with self._lock:
            return {
                "services": {
                    name: {
                        "cursor": pool.cursor,
                        "instances": [inst.to_dict() for inst in pool.instances],
                    }
                    for name, pool in self.services.items()
                },
                "subscriptions": {
                    topic: [sub.to_dict() for sub in subs]
                    for topic, subs in self.subscriptions.items()
                },
            }
