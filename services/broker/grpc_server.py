"""
gRPC Server for the Broker

MessageBroker service alongside the HTTP API:

- Publish (unary): persist and fan out through the Broker exactly like
  POST /publish/{topic}, then push the envelope to every live stream
  on the topic.
- Subscribe (server streaming): one live stream per call; envelopes
  published after the call starts are pushed as broker.MessageEnvelope.

Live streams are in-memory only. A cancelled stream is dropped from
its topic and never replayed.
"""

import asyncio
from typing import AsyncIterator, Dict, List, Tuple

import grpc
import structlog

from core.exceptions import BrokerException
from services.broker.codec import (
    PublishRequestProto,
    PublishResponseProto,
    SubscribeRequestProto,
    encode_protobuf,
    from_proto,
)
from services.broker.dispatcher import Broker
from services.broker.envelope import MessageEnvelope

logger = structlog.get_logger("broker-grpc")

SERVICE_NAME = "broker.MessageBroker"
PUBLISH_ACK = "Message processed via gRPC"

SERVER_OPTIONS = [
    ('grpc.max_concurrent_streams', 1000),
    ('grpc.http2.max_pings_without_data', 0),
    ('grpc.keepalive_time_ms', 10000),
    ('grpc.keepalive_timeout_ms', 5000),
]


class MessageBrokerServicer:
    """
    Usage:
        servicer = MessageBrokerServicer(broker)
        server, port = build_server(servicer, "0.0.0.0:50051")
        await server.start()
    """

    def __init__(self, broker: Broker):
        self.broker = broker
        self.subscribers: Dict[str, List[asyncio.Queue]] = {}

    async def Publish(self, request, context: grpc.aio.ServicerContext):
        """Persist-then-deliver, same as the HTTP publish route"""
        if not request.topic:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details("topic is required")
            return PublishResponseProto(success=False, message="topic is required")

        envelope = from_proto(request.envelope)
        try:
            outcomes = await self.broker.publish_to_topic(request.topic, envelope)
        except BrokerException as e:
            logger.error("gRPC publish failed", topic=request.topic, error=e.message)
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details(e.message)
            return PublishResponseProto(success=False, message=e.message)

        streams = self.broadcast(request.topic, envelope)
        logger.info(
            "Published via gRPC",
            topic=request.topic,
            correlation_id=envelope.correlation_id,
            http_subscribers=len(outcomes),
            streams=streams,
        )
        return PublishResponseProto(success=True, message=PUBLISH_ACK)

    async def Subscribe(self, request, context: grpc.aio.ServicerContext) -> AsyncIterator[MessageEnvelope]:
        """Stream envelopes published to a topic until the caller cancels"""
        if not request.topic:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details("topic is required")
            return

        queue: asyncio.Queue = asyncio.Queue()
        self.subscribers.setdefault(request.topic, []).append(queue)
        logger.info("gRPC stream attached", service=request.service_name, topic=request.topic)

        try:
            while True:
                yield await queue.get()
        except asyncio.CancelledError:
            logger.info("gRPC stream cancelled", service=request.service_name, topic=request.topic)
            raise
        finally:
            self._detach(request.topic, queue)

    def broadcast(self, topic: str, envelope: MessageEnvelope) -> int:
        """Queue an envelope on every live stream of a topic"""
        streams = list(self.subscribers.get(topic, []))
        for queue in streams:
            queue.put_nowait(envelope)
        return len(streams)

    def stream_count(self, topic: str) -> int:
        return len(self.subscribers.get(topic, []))

    def _detach(self, topic: str, queue: asyncio.Queue) -> None:
        streams = self.subscribers.get(topic)
        if streams is None:
            return
        if queue in streams:
            streams.remove(queue)
        if not streams:
            del self.subscribers[topic]


def rpc_handler(servicer: MessageBrokerServicer) -> grpc.GenericRpcHandler:
    """Method table for broker.MessageBroker, using the runtime-built messages"""
    return grpc.method_handlers_generic_handler(SERVICE_NAME, {
        "Publish": grpc.unary_unary_rpc_method_handler(
            servicer.Publish,
            request_deserializer=PublishRequestProto.FromString,
            response_serializer=PublishResponseProto.SerializeToString,
        ),
        "Subscribe": grpc.unary_stream_rpc_method_handler(
            servicer.Subscribe,
            request_deserializer=SubscribeRequestProto.FromString,
            response_serializer=encode_protobuf,
        ),
    })


def build_server(servicer: MessageBrokerServicer, address: str) -> Tuple[grpc.aio.Server, int]:
    """Create an unstarted server bound to `address`; returns it and the bound port"""
    server = grpc.aio.server(options=SERVER_OPTIONS)
    server.add_generic_rpc_handlers((rpc_handler(servicer),))
    port = server.add_insecure_port(address)
    return server, port


async def start_grpc_server(broker: Broker, host: str, port: int) -> grpc.aio.Server:
    """Start gRPC server"""
    server, bound_port = build_server(MessageBrokerServicer(broker), f"{host}:{port}")
    await server.start()
    logger.info("✓ gRPC server started", port=bound_port)
    return server
