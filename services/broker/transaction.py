"""
Simplified two-phase commit coordinator.

Prepare and commit run sequentially over the service list in order.
A failed prepare aborts and broadcasts a best-effort rollback to every
listed service. A failed commit stops the phase and reports
"partial commit failure"; services that already committed are left
committed, since undoing a commit needs participant-specific logic.

Nothing is logged durably: a coordinator crash mid-transaction leaves
participants to reconcile on their own.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.exceptions import BrokerException
from core.logging.logger import get_logger

logger = get_logger("two-phase-commit")

PREPARE_PATH = "/2pc/prepare"
COMMIT_PATH = "/2pc/commit"
ROLLBACK_PATH = "/2pc/rollback"

PARTIAL_COMMIT_FAILURE = "partial commit failure"

SendFn = Callable[[str, Any, Optional[str]], Awaitable[Any]]


class TransactionPhase(str, Enum):
    PREPARE = "PREPARE"
    COMMIT = "COMMIT"
    ROLLBACK = "ROLLBACK"


class TransactionStatus(str, Enum):
    COMMITTED = "committed"
    ABORTED = "aborted"     # prepare failed, rollback broadcast
    ERROR = "error"         # commit failed partway, not rolled back


@dataclass
class TransactionResult:
    status: TransactionStatus
    transaction_id: str
    reason: Optional[str] = None
    prepared: List[str] = field(default_factory=list)
    committed: List[str] = field(default_factory=list)
    failed_service: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "status": self.status.value,
            "transaction_id": self.transaction_id,
        }
        if self.reason is not None:
            result["reason"] = self.reason
        if self.status is not TransactionStatus.COMMITTED:
            result["prepared"] = list(self.prepared)
            result["committed"] = list(self.committed)
            result["failed_service"] = self.failed_service
        return result


def phase_message(phase: TransactionPhase, data: Any, transaction_id: str) -> Dict[str, Any]:
    return {"type": phase.value, "data": data, "transaction_id": transaction_id}


class TransactionCoordinator:
    """Runs 2PC rounds through a point-to-point send function"""

    def __init__(self, send: SendFn):
        self._send = send

    async def run(self, services: List[str], data: Any) -> TransactionResult:
        transaction_id = str(uuid.uuid4())
        log = logger.bind(transaction_id=transaction_id, services=list(services))

        # Phase 1: prepare, stop at first failure
        log.info("2PC phase 1: prepare")
        prepared: List[str] = []
        prepare_msg = phase_message(TransactionPhase.PREPARE, data, transaction_id)
        for service in services:
            try:
                await self._send(service, prepare_msg, PREPARE_PATH)
            except BrokerException as e:
                log.warning("2PC prepare failed, rolling back", service=service, reason=e.message)
                await self._broadcast_rollback(services, data, transaction_id)
                return TransactionResult(
                    status=TransactionStatus.ABORTED,
                    transaction_id=transaction_id,
                    reason=e.message,
                    prepared=prepared,
                    failed_service=service,
                )
            prepared.append(service)

        # Phase 2: commit, no compensation on failure
        log.info("2PC phase 2: commit")
        committed: List[str] = []
        commit_msg = phase_message(TransactionPhase.COMMIT, data, transaction_id)
        for service in services:
            try:
                await self._send(service, commit_msg, COMMIT_PATH)
            except BrokerException as e:
                log.error(
                    "2PC commit failed, transaction left partially committed",
                    service=service,
                    committed=committed,
                    reason=e.message,
                )
                return TransactionResult(
                    status=TransactionStatus.ERROR,
                    transaction_id=transaction_id,
                    reason=PARTIAL_COMMIT_FAILURE,
                    prepared=prepared,
                    committed=committed,
                    failed_service=service,
                )
            committed.append(service)

        log.info("2PC committed")
        return TransactionResult(
            status=TransactionStatus.COMMITTED,
            transaction_id=transaction_id,
            prepared=prepared,
            committed=committed,
        )

    async def _broadcast_rollback(self, services: List[str], data: Any, transaction_id: str) -> None:
        rollback_msg = phase_message(TransactionPhase.ROLLBACK, data, transaction_id)
        for service in services:
            try:
                await self._send(service, rollback_msg, ROLLBACK_PATH)
            except BrokerException as e:
                # Best effort: a participant that misses the rollback reconciles itself.
                logger.warning(
                    "2PC rollback not delivered",
                    transaction_id=transaction_id,
                    service=service,
                    reason=e.message,
                )
