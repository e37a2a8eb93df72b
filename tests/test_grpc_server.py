"""
gRPC MessageBroker tests over a real grpc.aio channel.
"""
import asyncio
from unittest.mock import AsyncMock

import grpc
import pytest
import pytest_asyncio

from core.exceptions import DurableLogException
from services.broker.codec import (
    EnvelopeProto,
    PublishRequestProto,
    PublishResponseProto,
    SubscribeRequestProto,
)
from services.broker.grpc_server import PUBLISH_ACK, MessageBrokerServicer, build_server


@pytest_asyncio.fixture
async def grpc_broker(broker):
    servicer = MessageBrokerServicer(broker)
    server, port = build_server(servicer, "127.0.0.1:0")
    await server.start()
    channel = grpc.aio.insecure_channel(f"127.0.0.1:{port}")

    yield servicer, channel

    await channel.close()
    await server.stop(grace=None)


def publish_rpc(channel):
    return channel.unary_unary(
        "/broker.MessageBroker/Publish",
        request_serializer=PublishRequestProto.SerializeToString,
        response_deserializer=PublishResponseProto.FromString,
    )


def subscribe_rpc(channel):
    return channel.unary_stream(
        "/broker.MessageBroker/Subscribe",
        request_serializer=SubscribeRequestProto.SerializeToString,
        response_deserializer=EnvelopeProto.FromString,
    )


async def eventually(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "condition not reached"
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_publish_persists_and_acks(grpc_broker, durable_log):
    servicer, channel = grpc_broker

    response = await publish_rpc(channel)(
        PublishRequestProto(topic="orders", envelope=EnvelopeProto(msg="hi", correlation_id="g-1"))
    )

    assert response.success
    assert response.message == PUBLISH_ACK
    messages = await durable_log.get_topic_messages("orders")
    assert messages[0]["correlationId"] == "g-1"
    assert messages[0]["msg"] == "hi"


@pytest.mark.asyncio
async def test_subscribe_stream_receives_published_envelope(grpc_broker):
    servicer, channel = grpc_broker
    call = subscribe_rpc(channel)(SubscribeRequestProto(service_name="audit", topic="orders"))
    await eventually(lambda: servicer.stream_count("orders") == 1)

    await publish_rpc(channel)(
        PublishRequestProto(topic="orders", envelope=EnvelopeProto(msg="m-1", correlation_id="g-2"))
    )
    received = await asyncio.wait_for(call.read(), 2.0)

    assert received.correlation_id == "g-2"
    assert received.msg == "m-1"
    assert received.method == "POST"

    call.cancel()
    await eventually(lambda: servicer.stream_count("orders") == 0)
    assert "orders" not in servicer.subscribers


@pytest.mark.asyncio
async def test_publish_also_fans_out_to_http_subscribers(grpc_broker, registry, mesh):
    servicer, channel = grpc_broker
    registry.register("billing", "http://billing:9000")
    registry.subscribe("billing", "orders", "/events")
    mesh.ok("billing")

    await publish_rpc(channel)(PublishRequestProto(topic="orders", envelope=EnvelopeProto(msg="x")))

    calls = mesh.calls_to("billing", "/events")
    assert len(calls) == 1
    assert calls[0]["msg"] == "x"


@pytest.mark.asyncio
async def test_publish_without_topic_is_invalid_argument(grpc_broker):
    servicer, channel = grpc_broker

    with pytest.raises(grpc.aio.AioRpcError) as exc_info:
        await publish_rpc(channel)(PublishRequestProto(envelope=EnvelopeProto(msg="x")))

    assert exc_info.value.code() == grpc.StatusCode.INVALID_ARGUMENT


@pytest.mark.asyncio
async def test_failed_persist_is_internal_and_not_streamed(grpc_broker, durable_log):
    servicer, channel = grpc_broker
    durable_log.append_to_topic = AsyncMock(side_effect=DurableLogException("disk full"))
    call = subscribe_rpc(channel)(SubscribeRequestProto(service_name="audit", topic="orders"))
    await eventually(lambda: servicer.stream_count("orders") == 1)

    with pytest.raises(grpc.aio.AioRpcError) as exc_info:
        await publish_rpc(channel)(PublishRequestProto(topic="orders", envelope=EnvelopeProto(msg="x")))

    assert exc_info.value.code() == grpc.StatusCode.INTERNAL
    assert exc_info.value.details() == "disk full"
    assert servicer.subscribers["orders"][0].empty()
    call.cancel()
