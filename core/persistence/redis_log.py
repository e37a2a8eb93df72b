"""
Redis-backed durable log.

Topic messages are RPUSHed onto one list per topic and the topic name
is SADDed to an index set; dead letters go onto a single list. Both
are single server-side operations, so concurrent appends never
overwrite each other.
"""
import json
from typing import Any, Dict, List, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.exceptions import DurableLogException
from core.logging.logger import get_logger
from core.persistence.base import DeadLetterRecord, DurableLog

logger = get_logger("durable-log.redis")


class RedisDurableLog(DurableLog):

    def __init__(
        self,
        client: Optional[aioredis.Redis] = None,
        url: str = "redis://localhost:6379/0",
        prefix: str = "broker",
        max_connections: int = 50
    ):
        if client is None:
            client = aioredis.from_url(
                url,
                encoding="utf-8",
                decode_responses=True,
                max_connections=max_connections,
            )
        self.client = client
        self.prefix = prefix

    def _topic_key(self, topic: str) -> str:
        return f"{self.prefix}:topic:{topic}"

    @property
    def _topics_key(self) -> str:
        return f"{self.prefix}:topics"

    @property
    def _dead_letter_key(self) -> str:
        return f"{self.prefix}:dead_letters"

    async def append_to_topic(self, topic: str, envelope: Dict[str, Any]) -> None:
        payload = json.dumps(envelope, separators=(",", ":"), default=str)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.rpush(self._topic_key(topic), payload)
            pipe.sadd(self._topics_key, topic)
            await pipe.execute()
        except RedisError as e:
            logger.error("Topic append failed", topic=topic, error=str(e))
            raise DurableLogException(f"append to topic {topic} failed: {e}") from e

    async def append_dead_letter(self, payload: Any, reason: str) -> DeadLetterRecord:
        record = DeadLetterRecord.create(payload, reason)
        try:
            await self.client.rpush(
                self._dead_letter_key,
                json.dumps(record.to_dict(), separators=(",", ":"), default=str),
            )
        except RedisError as e:
            logger.error("Dead letter append failed", reason=reason, error=str(e))
            raise DurableLogException(f"dead letter append failed: {e}") from e
        return record

    async def list_topics(self) -> List[str]:
        return sorted(await self.client.smembers(self._topics_key))

    async def list_dead_letters(self) -> List[DeadLetterRecord]:
        raw = await self.client.lrange(self._dead_letter_key, 0, -1)
        return [DeadLetterRecord.from_dict(json.loads(item)) for item in raw]

    async def get_topic_messages(self, topic: str) -> List[Dict[str, Any]]:
        raw = await self.client.lrange(self._topic_key(topic), 0, -1)
        return [json.loads(item) for item in raw]

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self.client.aclose()
