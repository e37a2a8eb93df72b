"""
Admin Router

Registration, subscriptions and read-only views of registry and
durable log state.
"""
from fastapi import APIRouter, Depends
import structlog

from core.persistence.base import DurableLog
from core.service_discovery.registry import ServiceRegistry
from services.broker.dependencies import get_durable_log, get_registry
from services.broker.models import RegisterRequest, SubscribeRequest

logger = structlog.get_logger("broker-admin")

router = APIRouter()


@router.post("/register")
async def register_service(
    body: RegisterRequest,
    registry: ServiceRegistry = Depends(get_registry)
):
    """Add an instance to a service pool"""
    instance = registry.register(body.service_name, body.url, body.health_url)
    return {"status": "Registered", "instance": instance.to_dict()}


@router.post("/subscribe/{topic}")
async def subscribe(
    topic: str,
    body: SubscribeRequest,
    registry: ServiceRegistry = Depends(get_registry)
):
    subscription = registry.subscribe(body.service, topic, body.endpoint)
    return {"status": "Subscribed", "subscription": subscription.to_dict()}


@router.get("/services")
async def list_services(registry: ServiceRegistry = Depends(get_registry)):
    """Pools, round-robin cursors and breaker state"""
    return registry.snapshot()


@router.get("/topics")
async def list_topics(durable_log: DurableLog = Depends(get_durable_log)):
    """Every topic with its persisted messages, in append order"""
    topics = {}
    for topic in await durable_log.list_topics():
        topics[topic] = await durable_log.get_topic_messages(topic)
    return {"topics": topics}


@router.get("/dlc")
async def list_dead_letters(durable_log: DurableLog = Depends(get_durable_log)):
    records = await durable_log.list_dead_letters()
    return {
        "count": len(records),
        "dead_letters": [record.to_dict() for record in records]
    }
