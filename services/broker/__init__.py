# Broker service
from .envelope import MessageEnvelope
from .dispatcher import Broker, DeliveryOutcome
from .transaction import TransactionCoordinator, TransactionResult, TransactionStatus

__all__ = [
    "MessageEnvelope",
    "Broker",
    "DeliveryOutcome",
    "TransactionCoordinator",
    "TransactionResult",
    "TransactionStatus",
]
