"""
File-backed durable log.

One JSON-lines file, appended by a single writer at a time. Each line
is either a topic message or a dead letter:

    {"kind": "topic", "topic": "orders", "envelope": {...}}
    {"kind": "dead_letter", "record": {...}}

Appends are flushed and fsynced before returning. Reads scan the file.
"""
import asyncio
import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List

import orjson

from core.exceptions import DurableLogException
from core.logging.logger import get_logger
from core.persistence.base import DeadLetterRecord, DurableLog

logger = get_logger("durable-log.file")

KIND_TOPIC = "topic"
KIND_DEAD_LETTER = "dead_letter"


class FileDurableLog(DurableLog):
    """Append-only JSON-lines log guarded by a process-wide lock"""

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)
        self._lock = threading.Lock()

    async def append_to_topic(self, topic: str, envelope: Dict[str, Any]) -> None:
        await asyncio.to_thread(
            self._append, {"kind": KIND_TOPIC, "topic": topic, "envelope": envelope}
        )

    async def append_dead_letter(self, payload: Any, reason: str) -> DeadLetterRecord:
        record = DeadLetterRecord.create(payload, reason)
        await asyncio.to_thread(
            self._append, {"kind": KIND_DEAD_LETTER, "record": record.to_dict()}
        )
        return record

    async def list_topics(self) -> List[str]:
        entries = await asyncio.to_thread(self._read_all)
        # dict preserves first-seen order
        topics = {e["topic"]: None for e in entries if e.get("kind") == KIND_TOPIC}
        return list(topics)

    async def list_dead_letters(self) -> List[DeadLetterRecord]:
        entries = await asyncio.to_thread(self._read_all)
        return [
            DeadLetterRecord.from_dict(e["record"])
            for e in entries
            if e.get("kind") == KIND_DEAD_LETTER
        ]

    async def get_topic_messages(self, topic: str) -> List[Dict[str, Any]]:
        entries = await asyncio.to_thread(self._read_all)
        return [
            e["envelope"]
            for e in entries
            if e.get("kind") == KIND_TOPIC and e.get("topic") == topic
        ]

    def _append(self, entry: Dict[str, Any]) -> None:
        line = orjson.dumps(entry, default=str) + b"\n"
        try:
            with self._lock:
                with open(self.path, "ab") as fh:
                    fh.write(line)
                    fh.flush()
                    os.fsync(fh.fileno())
        except OSError as e:
            logger.error("Durable log append failed", path=str(self.path), error=str(e))
            raise DurableLogException(f"append to {self.path} failed: {e}") from e

    def _read_all(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._iter_entries())

    def _iter_entries(self) -> Iterator[Dict[str, Any]]:
        try:
            with open(self.path, "rb") as fh:
                for lineno, raw in enumerate(fh, start=1):
                    raw = raw.strip()
                    if not raw:
                        continue
                    try:
                        yield orjson.loads(raw)
                    except orjson.JSONDecodeError:
                        # A torn last line from a crash mid-append
                        logger.warning("Skipping corrupt log line", path=str(self.path), line=lineno)
        except FileNotFoundError:
            return
