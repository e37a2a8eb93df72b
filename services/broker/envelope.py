"""MessageEnvelope: immutable unit of routed payload."""

from __future__ import annotations

import uuid
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


def new_correlation_id() -> str:
    return str(uuid.uuid4())


class MessageEnvelope(BaseModel):
    """Canonical message handed to the dispatch engine.

    Built once at ingress, whatever the inbound wire format was; the
    correlation id is assigned there and never changes afterwards.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    correlation_id: str = Field(default_factory=new_correlation_id, alias="correlationId")
    url: str = ""
    method: str = "POST"
    msg: Any = ""
    reply_to: str = Field(default="", alias="replyTo")

    def to_wire(self) -> Dict[str, Any]:
        """Normalized wire shape: {correlationId, url, method, msg, replyTo}"""
        return self.model_dump(by_alias=True)
