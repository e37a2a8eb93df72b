import json

import pytest
from pydantic import ValidationError

from core.exceptions import EnvelopeDecodeException
from services.broker.codec import (
    EnvelopeProto,
    JsonBody,
    PROTOBUF_CONTENT_TYPE,
    ProtobufBody,
    PublishRequestProto,
    classify_body,
    encode_protobuf,
    from_proto,
    is_protobuf,
    to_envelope,
)
from services.broker.envelope import MessageEnvelope


def test_content_type_selects_variant():
    assert isinstance(classify_body("application/json", b'{"msg": "hi"}'), JsonBody)
    assert isinstance(classify_body(PROTOBUF_CONTENT_TYPE, b"\x0a\x01a"), ProtobufBody)
    assert isinstance(classify_body(None, b"{}"), JsonBody)
    assert is_protobuf("Application/X-Protobuf; charset=binary")
    assert not is_protobuf("application/json")


def test_json_defaults():
    envelope = to_envelope(JsonBody(data={}))

    assert envelope.url == ""
    assert envelope.method == "POST"
    assert envelope.msg == ""
    assert envelope.reply_to == ""
    assert envelope.correlation_id


def test_json_object_msg_is_stringified():
    envelope = to_envelope(JsonBody(data={"msg": {"id": 1}}))

    assert json.loads(envelope.msg) == {"id": 1}


@pytest.mark.parametrize("data", [
    {"replyTo": "audit", "correlationId": "c-1"},
    {"reply_to": "audit", "correlation_id": "c-1"},
])
def test_json_accepts_both_key_spellings(data):
    envelope = to_envelope(JsonBody(data=data))

    assert envelope.reply_to == "audit"
    assert envelope.correlation_id == "c-1"


def test_missing_correlation_id_uses_fallback():
    envelope = to_envelope(JsonBody(data={"msg": "hi"}), fallback_correlation_id="from-header")

    assert envelope.correlation_id == "from-header"


def test_generated_correlation_ids_are_unique():
    first = to_envelope(JsonBody(data={}))
    second = to_envelope(JsonBody(data={}))

    assert first.correlation_id != second.correlation_id


def test_invalid_json_is_rejected():
    with pytest.raises(EnvelopeDecodeException) as exc_info:
        classify_body("application/json", b"{not json")

    assert exc_info.value.wire_format == "JSON"


def test_non_object_json_is_rejected():
    with pytest.raises(EnvelopeDecodeException):
        classify_body("application/json", b"[1, 2]")


def test_protobuf_decodes_all_fields():
    raw = EnvelopeProto(
        url="/orders",
        method="PUT",
        msg="payload",
        reply_to="audit",
        correlation_id="c-9",
    ).SerializeToString()

    envelope = to_envelope(classify_body(PROTOBUF_CONTENT_TYPE, raw))

    assert envelope == MessageEnvelope(
        correlation_id="c-9", url="/orders", method="PUT", msg="payload", reply_to="audit"
    )


def test_protobuf_missing_method_defaults_to_post():
    raw = EnvelopeProto(msg="hi").SerializeToString()

    envelope = to_envelope(ProtobufBody(raw=raw))

    assert envelope.method == "POST"
    assert envelope.correlation_id


def test_empty_protobuf_body_is_rejected():
    with pytest.raises(EnvelopeDecodeException) as exc_info:
        to_envelope(ProtobufBody(raw=b""))

    assert exc_info.value.message == "Empty or invalid buffer received"
    assert exc_info.value.wire_format == "Protobuf"


def test_garbage_protobuf_body_is_rejected():
    with pytest.raises(EnvelopeDecodeException):
        to_envelope(ProtobufBody(raw=b"\xff\xff\xff\xff"))


def test_encode_protobuf_matches_decoder():
    envelope = MessageEnvelope(correlation_id="c-2", url="/x", msg="m", reply_to="r")

    assert to_envelope(ProtobufBody(raw=encode_protobuf(envelope))) == envelope


def test_envelope_is_immutable():
    envelope = MessageEnvelope(msg="hi")

    with pytest.raises(ValidationError):
        envelope.msg = "changed"


def test_envelope_wire_shape():
    envelope = MessageEnvelope(correlation_id="c-1", msg="hi")

    assert envelope.to_wire() == {
        "correlationId": "c-1",
        "url": "",
        "method": "POST",
        "msg": "hi",
        "replyTo": "",
    }


def test_publish_request_nests_the_envelope_message():
    request = PublishRequestProto(topic="t", envelope=EnvelopeProto(msg="hi", correlation_id="g-1"))

    parsed = PublishRequestProto.FromString(request.SerializeToString())
    envelope = from_proto(parsed.envelope)

    assert parsed.topic == "t"
    assert envelope.msg == "hi"
    assert envelope.correlation_id == "g-1"
    assert envelope.method == "POST"


def test_from_proto_generates_missing_correlation_id():
    envelope = from_proto(EnvelopeProto())

    assert envelope.correlation_id
    assert envelope.msg == ""
