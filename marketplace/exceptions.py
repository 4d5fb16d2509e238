"""
Error taxonomy for the settlement core.

Settlement errors carry the HTTP status the gateway or client should see;
the settlement engine converts them into outcomes at its boundary.
"""
from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base exception for settlement and admission failures."""

    status_code = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(MarketplaceError):
    """A correctness-critical setting is missing at startup."""

    def __init__(self, message: str):
        super().__init__("CONFIGURATION_ERROR", message)


class AuthenticationFailure(MarketplaceError):
    """
    Signature missing or not matching the recomputed HMAC.

    Missing header answers 400, mismatch answers 401.
    """

    def __init__(self, message: str, *, missing: bool = False, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "MISSING_SIGNATURE" if missing else "INVALID_SIGNATURE",
            message,
            details,
            status_code=400 if missing else 401,
        )
        self.missing = missing


class ReplayRejected(MarketplaceError):
    """Event timestamp is older than the replay window."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("EVENT_EXPIRED", message, details)


class MalformedEvent(MarketplaceError):
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("MALFORMED_EVENT", message, details)


class UnknownOrder(MarketplaceError):
    """No local transaction for the order reference; the sender may retry."""

    status_code = 404

    def __init__(self, order_id: str):
        super().__init__("ORDER_NOT_FOUND", "Order not found", {"orderId": order_id})


class AlreadyProcessed(MarketplaceError):
    """Idempotent no-op: the event or order was settled before."""

    status_code = 200

    def __init__(self, message: str = "Already processed", details: Optional[Dict[str, Any]] = None):
        super().__init__("ALREADY_PROCESSED", message, details)


class Forbidden(MarketplaceError):
    status_code = 403

    def __init__(self, message: str = "Unauthorized"):
        super().__init__("UNAUTHORIZED", message)


class VerificationFailed(MarketplaceError):
    """Client-submitted payment signature did not verify."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__("VERIFICATION_FAILED", message)


class SettlementFailure(MarketplaceError):
    """Atomic unit aborted and rolled back; safe for the sender to retry."""

    status_code = 500

    def __init__(self, message: str = "Processing failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SETTLEMENT_FAILED", message, details)


class QuotaExceeded(MarketplaceError):
    status_code = 429

    def __init__(self, retry_after: int, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "RATE_LIMIT_EXCEEDED",
            f"Too many requests. Retry after {retry_after} seconds.",
            details,
        )
        self.retry_after = retry_after
