"""
Durable Log

Append-only storage for published messages and dead letters.
"""
from typing import Optional

from core.config.settings import Settings, get_settings
from core.persistence.base import DeadLetterRecord, DurableLog
from core.persistence.file_log import FileDurableLog
from core.persistence.redis_log import RedisDurableLog


def build_durable_log(settings: Optional[Settings] = None) -> DurableLog:
    """Create the backend selected by DURABLE_LOG_BACKEND"""
    settings = settings or get_settings()
    if settings.DURABLE_LOG_BACKEND == "redis":
        return RedisDurableLog(
            url=settings.REDIS_URL,
            prefix=settings.REDIS_KEY_PREFIX,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
    return FileDurableLog(settings.DURABLE_LOG_PATH)


__all__ = [
    "DeadLetterRecord",
    "DurableLog",
    "FileDurableLog",
    "RedisDurableLog",
    "build_durable_log"
]
