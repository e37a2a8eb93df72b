"""
Durable Log Contract

Append-only storage for published topic messages and dead letters.
Every append is durable before the coroutine returns. Backends must
never rebuild and rewrite the whole store on append: concurrent
dispatches append at the same time and none of them may be lost.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List

from core.utils.timezone import get_utc_now


@dataclass(frozen=True)
class DeadLetterRecord:
    """A payload the broker gave up on, with the reason"""
    original_payload: Any
    failure_reason: str
    timestamp: datetime

    @classmethod
    def create(cls, payload: Any, reason: str) -> "DeadLetterRecord":
        return cls(original_payload=payload, failure_reason=reason, timestamp=get_utc_now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_payload": self.original_payload,
            "failure_reason": self.failure_reason,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeadLetterRecord":
        return cls(
            original_payload=data.get("original_payload"),
            failure_reason=str(data.get("failure_reason", "")),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


class DurableLog(ABC):
    @abstractmethod
    async def append_to_topic(self, topic: str, envelope: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def append_dead_letter(self, payload: Any, reason: str) -> DeadLetterRecord:
        pass

    @abstractmethod
    async def list_topics(self) -> List[str]:
        pass

    @abstractmethod
    async def list_dead_letters(self) -> List[DeadLetterRecord]:
        pass

    @abstractmethod
    async def get_topic_messages(self, topic: str) -> List[Dict[str, Any]]:
        pass

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
