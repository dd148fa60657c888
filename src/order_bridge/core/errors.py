"""Error taxonomy for the order sync engine.

Every error is caught at its component boundary and turned into a structured
result. Only process entry points let these escape.
"""

from typing import Any, List, Optional


class OrderBridgeError(Exception):
    """Base class for all sync engine errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        """Serializable form used in ledger entries and poll summaries."""
        data = {"type": type(self).__name__, "message": self.message}
        if self.status_code is not None:
            data["status"] = self.status_code
        if self.details is not None:
            data["details"] = self.details
        return data


class ConfigurationError(OrderBridgeError):
    """Required configuration is missing or invalid."""


class AuthError(OrderBridgeError):
    """Credential exchange was rejected by the identity provider.

    Fatal to the current cycle; the next scheduled cycle retries.
    """


class TransientNetworkError(OrderBridgeError):
    """Timeout, transport failure, HTTP 5xx or HTTP 429."""


class RequestError(OrderBridgeError):
    """Non-retryable HTTP 4xx response."""


class ValidationError(OrderBridgeError):
    """Order mapping or line-item resolution failed."""

    def __init__(self, message: str, errors: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or [message]


class CorrelationError(OrderBridgeError):
    """No source order id could be resolved for a downstream shipment."""


class DeliveryError(OrderBridgeError):
    """Downstream or source rejected a create/update."""
