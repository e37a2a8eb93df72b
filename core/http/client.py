"""
HTTP Client for Broker Deliveries

Pooled httpx client used for every outbound call to a service
instance. One fixed timeout bounds each call end to end, including
transports that ignore httpx timeouts; failures surface as httpx
exceptions (timeouts, connection errors, non-2xx responses) for
the dispatch engine to translate.
"""

import asyncio

import httpx
from typing import Any, Optional
import structlog

logger = structlog.get_logger("http-client")


# Connection limits
DEFAULT_LIMITS = httpx.Limits(
    max_keepalive_connections=20,
    max_connections=100,
    keepalive_expiry=30.0
)


def build_url(base_url: str, path: Optional[str] = None) -> str:
    """
    Join an instance base url and a request path.

    The base loses trailing slashes and the path gets exactly one
    leading slash; an empty path adds nothing.
    """
    base = base_url.rstrip("/")
    if not path:
        return base
    return f"{base}/{path.lstrip('/')}"


def decode_body(response: httpx.Response) -> Any:
    """JSON when the service sent JSON, text otherwise, None when empty"""
    if not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            pass
    return response.text


class ServiceHttpClient:
    """
    HTTP client with a fixed per-call timeout and connection pooling.

    Usage:
        client = ServiceHttpClient(timeout=5.0)
        async with client:
            body = await client.post_json("http://orders-1:9000/events", {...})
    """

    def __init__(
        self,
        timeout: float = 5.0,
        limits: Optional[httpx.Limits] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = timeout
        self.limits = limits or DEFAULT_LIMITS
        self.transport = transport

        self.client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry"""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def start(self):
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=self.limits,
                transport=self.transport,
            )
            logger.info("HTTP client started", timeout=self.timeout)

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("HTTP client closed")

    async def post_json(self, url: str, payload: Any) -> Any:
        """
        POST a JSON payload and return the decoded response body.

        Raises:
            httpx.TimeoutException: call exceeded the timeout
            httpx.TransportError: connection-level failure
            httpx.HTTPStatusError: non-2xx response
        """
        if self.client is None:
            await self.start()

        try:
            response = await asyncio.wait_for(self.client.post(url, json=payload), self.timeout)
        except asyncio.TimeoutError as e:
            raise httpx.TimeoutException(f"no response from {url} within {self.timeout}s") from e
        response.raise_for_status()
        return decode_body(response)
