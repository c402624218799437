"""
Error taxonomy for the settlement pipeline.

Services raise these; the application handler in main.py turns them
into JSON responses with the matching status code.
"""

from typing import Optional, Dict, Any


class BillingError(Exception):
    """Base class for all client-facing billing errors."""
    code = "ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BillingError):
    """Malformed input or a business rule the caller can fix."""
    code = "VALIDATION"
    status_code = 400


class NotFoundError(BillingError):
    """Vendor, plan, coupon or cashout request does not exist."""
    code = "NOT_FOUND"
    status_code = 404


class InvalidStateError(BillingError):
    """Transition not allowed from the record's current status."""
    code = "INVALID_STATE"
    status_code = 409


class InsufficientBalanceError(BillingError):
    """Wallet cannot cover the requested debit."""
    code = "INSUFFICIENT_BALANCE"
    status_code = 400


class AuthenticityError(BillingError):
    """Payment confirmation signature did not match. Never retryable."""
    code = "AUTHENTICITY"
    status_code = 400


class GatewayUnavailableError(BillingError):
    """Payment or email provider misconfigured or unreachable."""
    code = "GATEWAY_UNAVAILABLE"
    status_code = 500
