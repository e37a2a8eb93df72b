"""
Custom Exception Classes for the Broker

Provides a hierarchy of exceptions for dispatch failures.
Raw transport errors never leave the dispatch engine; they are wrapped
into one of these before reaching a caller.

Usage:
    from core.exceptions import (
        BrokerException,
        ServiceUnavailable,
        DeliveryFailed,
    )
"""
from typing import Optional, Dict, Any


class BrokerException(Exception):
    """Base exception for all broker errors"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code or "INTERNAL_ERROR"
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Dispatch Exceptions
# ============================================================================

class ServiceUnavailable(BrokerException):
    """No healthy instance of the target service could be selected"""

    def __init__(self, service: str):
        super().__init__(
            f"no healthy instances for {service}",
            "SERVICE_UNAVAILABLE",
            {"service": service}
        )
        self.service = service


class DeliveryFailed(BrokerException):
    """Every attempt to deliver to a service failed"""

    def __init__(
        self,
        service: str,
        attempts: int,
        last_error: Optional[BaseException] = None
    ):
        super().__init__(
            f"max retries reached for {service}",
            "DELIVERY_FAILED",
            {
                "service": service,
                "attempts": attempts,
                "last_error": str(last_error) if last_error else None,
            }
        )
        self.service = service
        self.attempts = attempts
        self.last_error = last_error


# ============================================================================
# Durable Log Exceptions
# ============================================================================

class DurableLogException(BrokerException):
    """Durable log read or append failed"""

    def __init__(self, message: str = "Durable log operation failed"):
        super().__init__(message, "DURABLE_LOG_ERROR")


# ============================================================================
# Ingress Exceptions
# ============================================================================

class EnvelopeDecodeException(BrokerException):
    """Inbound message body could not be normalized into an envelope"""

    def __init__(self, message: str, wire_format: str = "unknown"):
        super().__init__(message, "INVALID_ENVELOPE", {"format": wire_format})
        self.wire_format = wire_format
