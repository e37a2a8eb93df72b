from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from services.broker.envelope import MessageEnvelope


@dataclass(frozen=True)
class DirectSend:
    service: str
    payload: Any
    path: Optional[str] = None


@dataclass(frozen=True)
class TopicPublish:
    topic: str
    envelope: MessageEnvelope


@dataclass(frozen=True)
class TransactionRequest:
    services: List[str] = field(default_factory=list)
    data: Any = None


DispatchRequest = Union[DirectSend, TopicPublish, TransactionRequest]
