"""
Dispatch Engine

Retrying point-to-point delivery, topic fan-out and two-phase commit
on top of the service registry and the durable log. The engine keeps
no routing state: instance choice and health live in the registry,
and every attempt outcome is reported back to it.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from core.config.settings import Settings, get_settings
from core.exceptions import BrokerException, DeliveryFailed, ServiceUnavailable
from core.http.client import ServiceHttpClient, build_url
from core.logging.logger import get_logger
from core.monitoring.metrics import (
    dead_letters_total,
    track_delivery_attempt,
    track_fanout,
    transactions_total,
)
from core.persistence.base import DurableLog
from core.resilience.retry import RetryPolicy
from core.service_discovery.registry import ServiceRegistry, Subscription
from services.broker.envelope import MessageEnvelope
from services.broker.requests import DirectSend, DispatchRequest, TopicPublish, TransactionRequest
from services.broker.transaction import TransactionCoordinator, TransactionResult

logger = get_logger("broker")

# Failures of a single outbound call; anything else is a bug and propagates.
DELIVERY_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


@dataclass
class DeliveryOutcome:
    """Result of delivering one published message to one subscriber"""
    service_name: str
    endpoint: str
    delivered: bool
    value: Any = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "service": self.service_name,
            "endpoint": self.endpoint,
            "status": "delivered" if self.delivered else "failed",
        }
        if self.delivered:
            result["value"] = self.value
        else:
            result["reason"] = self.reason
        return result


def is_partial_failure(outcomes: List[DeliveryOutcome]) -> bool:
    """True when a fan-out reached some but not all subscribers"""
    return any(o.delivered for o in outcomes) and not all(o.delivered for o in outcomes)


class Broker:
    """
    Usage:
        broker = Broker(registry, durable_log, ServiceHttpClient(timeout=5.0))
        body = await broker.send_to_service("orders", {"id": 1}, "/orders")
        outcomes = await broker.publish_to_topic("order.created", envelope)
        result = await broker.two_phase_commit(["orders", "billing"], data)
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        durable_log: DurableLog,
        http_client: ServiceHttpClient,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.registry = registry
        self.durable_log = durable_log
        self.http_client = http_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.coordinator = TransactionCoordinator(self.send_to_service)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        registry: Optional[ServiceRegistry] = None,
        durable_log: Optional[DurableLog] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "Broker":
        from core.persistence import build_durable_log

        settings = settings or get_settings()
        return cls(
            registry=registry or ServiceRegistry(
                failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
                cooldown=settings.CIRCUIT_COOLDOWN_SECONDS,
            ),
            durable_log=durable_log or build_durable_log(settings),
            http_client=ServiceHttpClient(
                timeout=settings.BROKER_REQUEST_TIMEOUT,
                transport=transport,
            ),
            retry_policy=RetryPolicy(
                max_attempts=settings.BROKER_MAX_ATTEMPTS,
                base_delay=settings.BROKER_RETRY_BASE_DELAY,
            ),
        )

    async def start(self) -> None:
        await self.http_client.start()

    async def close(self) -> None:
        await self.http_client.close()
        await self.durable_log.close()

    # ------------------------------------------------------------------
    # Point-to-point
    # ------------------------------------------------------------------

    async def send_to_service(self, service_name: str, payload: Any, path: Optional[str] = None) -> Any:
        """
        Deliver a payload to one instance of a service.

        Each attempt re-selects an instance, so a retry may land on a
        different instance than the one that just failed.

        Raises:
            ServiceUnavailable: no instance was selectable (not retried)
            DeliveryFailed: every attempt failed
        """
        max_attempts = self.retry_policy.max_attempts
        last_error: Optional[BaseException] = None

        for attempt in self.retry_policy.attempts():
            instance = self.registry.select_instance(service_name)
            if instance is None:
                error = ServiceUnavailable(service_name)
                logger.error("No healthy instance", service=service_name, attempt=attempt)
                await self._dead_letter(payload, error)
                raise error

            url = build_url(instance.url, path)
            try:
                result = await self.http_client.post_json(url, payload)
            except DELIVERY_ERRORS as e:
                last_error = e
                self.registry.report_failure(instance)
                track_delivery_attempt(service_name, success=False)
                logger.warning(
                    "Delivery attempt failed",
                    service=service_name,
                    url=url,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e) or type(e).__name__,
                )
                if attempt < max_attempts:
                    await self.retry_policy.sleep(attempt)
                continue

            self.registry.report_success(instance)
            track_delivery_attempt(service_name, success=True)
            return result

        error = DeliveryFailed(service_name, max_attempts, last_error)
        await self._dead_letter(payload, error)
        raise error from last_error

    async def _dead_letter(self, payload: Any, error: BrokerException) -> None:
        reason = error.message
        dead_letters_total.labels(reason=error.error_code).inc()
        try:
            await self.durable_log.append_dead_letter(payload, reason)
            logger.info("Dead-lettered payload", reason=reason)
        except Exception as e:
            # The caller's error stands even if the record is lost.
            logger.error("Dead letter write failed", reason=reason, error=str(e))

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def publish_to_topic(self, topic: str, envelope: MessageEnvelope) -> List[DeliveryOutcome]:
        """
        Persist a message, then deliver it to every subscriber.

        Deliveries run concurrently and independently; one subscriber
        exhausting its retries never affects the others.
        """
        wire = envelope.to_wire()
        await self.durable_log.append_to_topic(topic, wire)

        subscribers = self.registry.get_subscribers(topic)
        if not subscribers:
            logger.info("No subscribers for topic", topic=topic)
            return []

        logger.info(
            "Forwarding to subscribers",
            topic=topic,
            subscribers=len(subscribers),
            correlation_id=envelope.correlation_id,
        )
        started = time.perf_counter()
        results = await asyncio.gather(
            *(self.send_to_service(sub.service_name, wire, sub.endpoint) for sub in subscribers),
            return_exceptions=True,
        )
        outcomes = [self._outcome(sub, result) for sub, result in zip(subscribers, results)]
        delivered = sum(1 for o in outcomes if o.delivered)
        track_fanout(topic, delivered, len(outcomes) - delivered, time.perf_counter() - started)

        if is_partial_failure(outcomes):
            logger.warning(
                "Partial fan-out",
                topic=topic,
                failed=[o.service_name for o in outcomes if not o.delivered],
            )
        return outcomes

    @staticmethod
    def _outcome(sub: Subscription, result: Any) -> DeliveryOutcome:
        if isinstance(result, BaseException):
            reason = result.message if isinstance(result, BrokerException) else str(result)
            return DeliveryOutcome(sub.service_name, sub.endpoint, delivered=False, reason=reason)
        return DeliveryOutcome(sub.service_name, sub.endpoint, delivered=True, value=result)

    # ------------------------------------------------------------------
    # Two-phase commit
    # ------------------------------------------------------------------

    async def two_phase_commit(self, services: List[str], data: Any) -> TransactionResult:
        result = await self.coordinator.run(services, data)
        transactions_total.labels(status=result.status.value).inc()
        return result

    # ------------------------------------------------------------------
    # Normalized entry point
    # ------------------------------------------------------------------

    async def dispatch(self, request: DispatchRequest) -> Any:
        """Run a request already normalized by a transport adapter"""
        if isinstance(request, DirectSend):
            return await self.send_to_service(request.service, request.payload, request.path)
        if isinstance(request, TopicPublish):
            return await self.publish_to_topic(request.topic, request.envelope)
        if isinstance(request, TransactionRequest):
            return await self.two_phase_commit(request.services, request.data)
        raise TypeError(f"unsupported dispatch request: {type(request).__name__}")
