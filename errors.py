# errors.py
"""
Error taxonomy for reseller onboarding.

Every error carries an HTTP-ish ``status_code`` and a ``message`` that is safe
to show to the client. Anything that is not an ``OnboardingError`` is treated
as internal and answered with a generic 500 by the route layer.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class OnboardingError(Exception):
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def to_client(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message}


class ValidationError(OnboardingError):
    status_code = 400
    default_message = "Invalid input."


class DuplicateEmail(OnboardingError):
    status_code = 409
    default_message = "Email already registered."


class NotFound(OnboardingError):
    status_code = 404
    default_message = "Payment not found."


class InvalidState(OnboardingError):
    status_code = 409
    default_message = "Payment is no longer pending."


class LatePayment(InvalidState):
    """Paystack reported a charge as paid after the payment was closed locally."""

    default_message = "Payment arrived after this registration was closed. Support will follow up."


class InvalidPaymentType(OnboardingError):
    status_code = 422
    default_message = "Payment does not belong to this workflow."


class AllocationExhausted(OnboardingError):
    status_code = 503
    default_message = "Could not complete registration right now. Please contact support."


class PersistenceConflict(OnboardingError):
    status_code = 409
    default_message = "That record already exists."


class GatewayError(OnboardingError):
    status_code = 502
    default_message = "Payment processor is unavailable. Please try again."


def duplicate_key_fields(exc: Exception) -> Dict[str, Any]:
    """Return the ``keyValue`` map of a pymongo DuplicateKeyError (or {})."""
    try:
        details = getattr(exc, "details", None) or {}
        kv = details.get("keyValue") or {}
        return dict(kv) if isinstance(kv, dict) else {}
    except Exception:
        return {}
