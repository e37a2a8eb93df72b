import asyncio
import json
from datetime import datetime

import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError

from core.config.settings import Settings
from core.exceptions import DurableLogException
from core.persistence import FileDurableLog, RedisDurableLog, build_durable_log
from core.persistence.base import DeadLetterRecord


# ============================================================================
# File backend
# ============================================================================

@pytest.mark.asyncio
async def test_topic_appends_preserve_order(durable_log):
    await durable_log.append_to_topic("orders", {"correlationId": "1"})
    await durable_log.append_to_topic("billing", {"correlationId": "2"})
    await durable_log.append_to_topic("orders", {"correlationId": "3"})

    assert await durable_log.list_topics() == ["orders", "billing"]
    assert await durable_log.get_topic_messages("orders") == [
        {"correlationId": "1"},
        {"correlationId": "3"},
    ]
    assert await durable_log.get_topic_messages("missing") == []


@pytest.mark.asyncio
async def test_dead_letter_record_round_trips(durable_log):
    record = await durable_log.append_dead_letter({"id": 1}, "max retries reached for orders")

    stored = await durable_log.list_dead_letters()

    assert stored == [record]
    assert stored[0].timestamp.tzinfo is not None


@pytest.mark.asyncio
async def test_concurrent_appends_are_not_lost(durable_log):
    """Appends racing each other all land in the log"""
    await asyncio.gather(*(
        durable_log.append_to_topic("orders", {"n": i}) for i in range(50)
    ))
    await asyncio.gather(*(
        durable_log.append_dead_letter({"n": i}, "boom") for i in range(20)
    ))

    messages = await durable_log.get_topic_messages("orders")
    assert sorted(m["n"] for m in messages) == list(range(50))
    assert len(await durable_log.list_dead_letters()) == 20


@pytest.mark.asyncio
async def test_log_survives_reopen(tmp_path):
    path = str(tmp_path / "nested" / "storage.jsonl")
    first = FileDurableLog(path)
    await first.append_to_topic("orders", {"n": 1})
    await first.append_dead_letter("raw", "no healthy instances for orders")

    second = FileDurableLog(path)

    assert await second.get_topic_messages("orders") == [{"n": 1}]
    assert (await second.list_dead_letters())[0].original_payload == "raw"


@pytest.mark.asyncio
async def test_corrupt_trailing_line_is_skipped(tmp_path, durable_log):
    await durable_log.append_to_topic("orders", {"n": 1})
    with open(durable_log.path, "ab") as fh:
        fh.write(b'{"kind": "topic", "topic": "ord')

    assert await durable_log.get_topic_messages("orders") == [{"n": 1}]


@pytest.mark.asyncio
async def test_append_failure_raises_durable_log_exception(tmp_path):
    log = FileDurableLog(str(tmp_path / "storage.jsonl"))
    log.path = tmp_path  # a directory cannot be opened for append

    with pytest.raises(DurableLogException):
        await log.append_to_topic("orders", {})


def test_dead_letter_record_dict_shape():
    record = DeadLetterRecord.create({"id": 1}, "boom")
    data = record.to_dict()

    assert data["original_payload"] == {"id": 1}
    assert data["failure_reason"] == "boom"
    assert datetime.fromisoformat(data["timestamp"]) == record.timestamp
    assert DeadLetterRecord.from_dict(data) == record


# ============================================================================
# Redis backend
# ============================================================================

@pytest.fixture
def redis_client():
    client = MagicMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, 1])
    client.pipeline.return_value = pipe
    client.rpush = AsyncMock(return_value=1)
    client.smembers = AsyncMock(return_value={"orders", "billing"})
    client.lrange = AsyncMock(return_value=[])
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_redis_topic_append_is_one_transaction(redis_client):
    log = RedisDurableLog(client=redis_client, prefix="mesh")

    await log.append_to_topic("orders", {"correlationId": "1"})

    redis_client.pipeline.assert_called_once_with(transaction=True)
    pipe = redis_client.pipeline.return_value
    pipe.rpush.assert_called_once_with("mesh:topic:orders", '{"correlationId":"1"}')
    pipe.sadd.assert_called_once_with("mesh:topics", "orders")
    pipe.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_dead_letter_append(redis_client):
    log = RedisDurableLog(client=redis_client, prefix="mesh")

    record = await log.append_dead_letter({"id": 1}, "boom")

    key, raw = redis_client.rpush.call_args.args
    assert key == "mesh:dead_letters"
    assert json.loads(raw) == record.to_dict()


@pytest.mark.asyncio
async def test_redis_reads(redis_client):
    stored = DeadLetterRecord.create("raw", "boom")
    redis_client.lrange = AsyncMock(side_effect=[
        ['{"n":1}', '{"n":2}'],
        [json.dumps(stored.to_dict())],
    ])
    log = RedisDurableLog(client=redis_client)

    assert await log.list_topics() == ["billing", "orders"]
    assert await log.get_topic_messages("orders") == [{"n": 1}, {"n": 2}]
    assert await log.list_dead_letters() == [stored]


@pytest.mark.asyncio
async def test_redis_errors_are_wrapped(redis_client):
    redis_client.pipeline.return_value.execute = AsyncMock(side_effect=RedisConnectionError("down"))
    redis_client.rpush = AsyncMock(side_effect=RedisConnectionError("down"))
    log = RedisDurableLog(client=redis_client)

    with pytest.raises(DurableLogException):
        await log.append_to_topic("orders", {})
    with pytest.raises(DurableLogException):
        await log.append_dead_letter({}, "boom")


@pytest.mark.asyncio
async def test_redis_ping_and_close(redis_client):
    log = RedisDurableLog(client=redis_client)

    assert await log.ping() is True
    redis_client.ping = AsyncMock(side_effect=RedisConnectionError("down"))
    assert await log.ping() is False

    await log.close()
    redis_client.aclose.assert_awaited_once()


# ============================================================================
# Backend selection
# ============================================================================

def test_build_durable_log_file(tmp_path):
    settings = Settings(DURABLE_LOG_BACKEND="file", DURABLE_LOG_PATH=str(tmp_path / "log.jsonl"))

    assert isinstance(build_durable_log(settings), FileDurableLog)


def test_build_durable_log_redis():
    settings = Settings(DURABLE_LOG_BACKEND="REDIS", REDIS_URL="redis://cache:6379/1")

    log = build_durable_log(settings)

    assert isinstance(log, RedisDurableLog)
    assert log.prefix == settings.REDIS_KEY_PREFIX
