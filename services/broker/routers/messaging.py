"""
Messaging Router

Transport adapter for the dispatch engine: every handler normalizes its
request into a dispatch variant and hands it to the shared Broker.
"""
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import JSONResponse
import structlog

from core.logging.correlation import get_supplied_correlation_id
from services.broker.codec import classify_body, to_envelope
from services.broker.dependencies import get_broker
from services.broker.dispatcher import Broker
from services.broker.models import TransactionBody
from services.broker.requests import DirectSend, TopicPublish, TransactionRequest
from services.broker.transaction import TransactionStatus

logger = structlog.get_logger("broker-messaging")

router = APIRouter()

TRANSACTION_STATUS_CODES = {
    TransactionStatus.COMMITTED: 200,
    TransactionStatus.ABORTED: 409,
    TransactionStatus.ERROR: 500,
}


@router.post("/publish/{topic}")
async def publish(topic: str, request: Request, broker: Broker = Depends(get_broker)):
    """
    Publish a JSON or Protobuf message to a topic.

    The message is persisted before any subscriber is contacted, so it
    is recorded even when every delivery fails.
    """
    raw = await request.body()
    body = classify_body(request.headers.get("content-type"), raw)
    envelope = to_envelope(body, fallback_correlation_id=get_supplied_correlation_id(request))

    logger.info("Publishing", topic=topic, format=body.format, correlation_id=envelope.correlation_id)
    outcomes = await broker.dispatch(TopicPublish(topic=topic, envelope=envelope))

    return {
        "status": "Published",
        "format": body.format,
        "correlation_id": envelope.correlation_id,
        "details": [outcome.to_dict() for outcome in outcomes],
    }


@router.post("/send/{service}")
async def send(
    service: str,
    payload: Any = Body(default=None),
    path: Optional[str] = Query(default=None, description="Path appended to the instance url"),
    broker: Broker = Depends(get_broker)
):
    """Point-to-point delivery with retries across the service pool"""
    response = await broker.dispatch(DirectSend(service=service, payload=payload, path=path))
    return {"status": "Delivered", "service": service, "response": response}


@router.post("/transaction")
async def transaction(body: TransactionBody, broker: Broker = Depends(get_broker)):
    result = await broker.dispatch(TransactionRequest(services=list(body.services), data=body.data))
    return JSONResponse(
        status_code=TRANSACTION_STATUS_CODES[result.status],
        content=result.to_dict(),
    )
