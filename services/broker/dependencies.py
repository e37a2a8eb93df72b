from fastapi import Request

from core.persistence.base import DurableLog
from core.service_discovery.registry import ServiceRegistry
from services.broker.dispatcher import Broker


def get_broker(request: Request) -> Broker:
    return request.app.state.broker


def get_registry(request: Request) -> ServiceRegistry:
    return request.app.state.broker.registry


def get_durable_log(request: Request) -> DurableLog:
    return request.app.state.broker.durable_log
