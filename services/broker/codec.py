"""
Ingress decoding for published messages.

The inbound body is classified once by content type into a tagged
variant, JsonBody or ProtobufBody, and then normalized into a
MessageEnvelope. Nothing downstream of this module knows which wire
format a message arrived in.

The protobuf schema (package `broker`) is built at import time and also
carries the request/response messages of the gRPC MessageBroker service.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError

from core.exceptions import EnvelopeDecodeException
from services.broker.envelope import MessageEnvelope, new_correlation_id

PROTOBUF_CONTENT_TYPE = "application/x-protobuf"

# broker.MessageEnvelope, field numbers in declaration order
ENVELOPE_FIELDS = ("url", "method", "msg", "reply_to", "correlation_id")

_STRING = descriptor_pb2.FieldDescriptorProto.TYPE_STRING
_BOOL = descriptor_pb2.FieldDescriptorProto.TYPE_BOOL
_MESSAGE = descriptor_pb2.FieldDescriptorProto.TYPE_MESSAGE


def _add_message(file_proto, name, fields):
    message_proto = file_proto.message_type.add()
    message_proto.name = name
    for number, (field_name, field_type) in enumerate(fields, start=1):
        field = message_proto.field.add()
        field.name = field_name
        field.number = number
        field.label = descriptor_pb2.FieldDescriptorProto.LABEL_OPTIONAL
        if isinstance(field_type, str):
            field.type = _MESSAGE
            field.type_name = field_type
        else:
            field.type = field_type


def _build_broker_pool() -> descriptor_pool.DescriptorPool:
    file_proto = descriptor_pb2.FileDescriptorProto()
    file_proto.name = "broker/broker.proto"
    file_proto.package = "broker"
    file_proto.syntax = "proto3"

    _add_message(file_proto, "MessageEnvelope", [(name, _STRING) for name in ENVELOPE_FIELDS])
    _add_message(file_proto, "PublishRequest", [("topic", _STRING), ("envelope", ".broker.MessageEnvelope")])
    _add_message(file_proto, "PublishResponse", [("success", _BOOL), ("message", _STRING)])
    _add_message(file_proto, "SubscribeRequest", [("service_name", _STRING), ("topic", _STRING)])

    pool = descriptor_pool.DescriptorPool()
    pool.AddSerializedFile(file_proto.SerializeToString())
    return pool


_pool = _build_broker_pool()


def _message_class(name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"broker.{name}"))


EnvelopeProto = _message_class("MessageEnvelope")
PublishRequestProto = _message_class("PublishRequest")
PublishResponseProto = _message_class("PublishResponse")
SubscribeRequestProto = _message_class("SubscribeRequest")


@dataclass(frozen=True)
class JsonBody:
    data: Dict[str, Any]
    format: str = "JSON"


@dataclass(frozen=True)
class ProtobufBody:
    raw: bytes
    format: str = "Protobuf"


InboundBody = Union[JsonBody, ProtobufBody]


def is_protobuf(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.split(";")[0].strip().lower() == PROTOBUF_CONTENT_TYPE


def classify_body(content_type: Optional[str], raw: bytes) -> InboundBody:
    """Pick the wire variant from the Content-Type header"""
    if is_protobuf(content_type):
        return ProtobufBody(raw=raw)

    if not raw.strip():
        return JsonBody(data={})
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise EnvelopeDecodeException(f"Invalid JSON body: {e}", "JSON") from e
    if not isinstance(data, dict):
        raise EnvelopeDecodeException("JSON body must be an object", "JSON")
    return JsonBody(data=data)


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value:
            return value
    return None


def _from_json(data: Dict[str, Any]) -> Dict[str, Any]:
    msg = data.get("msg")
    if isinstance(msg, (dict, list)):
        msg = json.dumps(msg)
    return {
        "url": data.get("url") or "",
        "method": data.get("method") or "POST",
        "msg": msg or "",
        "reply_to": _first(data, "reply_to", "replyTo") or "",
        "correlation_id": _first(data, "correlation_id", "correlationId"),
    }


def _from_protobuf(raw: bytes) -> Dict[str, Any]:
    if not raw:
        raise EnvelopeDecodeException("Empty or invalid buffer received", "Protobuf")
    message = EnvelopeProto()
    try:
        message.ParseFromString(raw)
    except DecodeError as e:
        raise EnvelopeDecodeException(f"Invalid Protobuf format: {e}", "Protobuf") from e
    return _proto_fields(message)


def _proto_fields(message) -> Dict[str, Any]:
    fields = {name: getattr(message, name) for name in ENVELOPE_FIELDS}
    fields["method"] = fields["method"] or "POST"
    return fields


def to_envelope(body: InboundBody, fallback_correlation_id: Optional[str] = None) -> MessageEnvelope:
    """
    Normalize an inbound body into the canonical envelope.

    A missing correlation id is taken from `fallback_correlation_id`
    (the request's own id) or generated.
    """
    if isinstance(body, ProtobufBody):
        fields = _from_protobuf(body.raw)
    else:
        fields = _from_json(body.data)

    if not fields.get("correlation_id"):
        fields["correlation_id"] = fallback_correlation_id or new_correlation_id()

    return MessageEnvelope(**fields)


def from_proto(message, fallback_correlation_id: Optional[str] = None) -> MessageEnvelope:
    """Envelope from an already-parsed broker.MessageEnvelope (gRPC ingress)"""
    fields = _proto_fields(message)
    if not fields["correlation_id"]:
        fields["correlation_id"] = fallback_correlation_id or new_correlation_id()
    return MessageEnvelope(**fields)


def encode_protobuf(envelope: MessageEnvelope) -> bytes:
    """Serialize an envelope for protobuf-speaking clients"""
    msg = envelope.msg if isinstance(envelope.msg, str) else json.dumps(envelope.msg)
    return EnvelopeProto(
        url=envelope.url,
        method=envelope.method,
        msg=msg,
        reply_to=envelope.reply_to,
        correlation_id=envelope.correlation_id,
    ).SerializeToString()
