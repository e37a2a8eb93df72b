import json
from typing import Callable, Dict, List

import httpx
import pytest

from core.http.client import ServiceHttpClient
from core.persistence.file_log import FileDurableLog
from core.resilience.retry import RetryPolicy
from core.service_discovery.registry import ServiceRegistry
from services.broker.dispatcher import Broker


class FakeClock:
    """Monotonic clock that only moves when told to"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


Responder = Callable[[httpx.Request], httpx.Response]


class StubMesh:
    """
    Outbound traffic stand-in, routed by host.

    Hosts without a responder refuse the connection.
    """

    def __init__(self):
        self.responders: Dict[str, Responder] = {}
        self.requests: List[httpx.Request] = []

    def ok(self, host: str, body=None) -> None:
        payload = {"ok": True} if body is None else body
        self.responders[host] = lambda request: httpx.Response(200, json=payload)

    def error(self, host: str, status_code: int = 500) -> None:
        self.responders[host] = lambda request: httpx.Response(status_code, json={"error": "boom"})

    def refuse(self, host: str) -> None:
        self.responders.pop(host, None)

    def route(self, host: str, responder: Responder) -> None:
        self.responders[host] = responder

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.responders.get(request.url.host)
        if responder is None:
            raise httpx.ConnectError("connection refused", request=request)
        return responder(request)

    def calls_to(self, host: str, path: str = None) -> List[dict]:
        """JSON bodies sent to a host (optionally a single path), in order"""
        return [
            json.loads(r.content) if r.content else None
            for r in self.requests
            if r.url.host == host and (path is None or r.url.path == path)
        ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return ServiceRegistry(failure_threshold=3, cooldown=10.0, clock=clock)


@pytest.fixture
def durable_log(tmp_path):
    return FileDurableLog(str(tmp_path / "storage.jsonl"))


@pytest.fixture
def mesh():
    return StubMesh()


@pytest.fixture
def broker(registry, durable_log, mesh):
    return Broker(
        registry=registry,
        durable_log=durable_log,
        http_client=ServiceHttpClient(timeout=1.0, transport=mesh.transport()),
        retry_policy=RetryPolicy(max_attempts=3),
    )
