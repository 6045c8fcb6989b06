# paystack.py - Paystack gateway capability
from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, Optional, Tuple

import requests

import config
from errors import GatewayError
from jlog import jlog
from models import OUTCOME_CANCEL, OUTCOME_FAILURE, OUTCOME_SUCCESS

# Paystack transaction status -> gateway outcome. Anything not listed
# (ongoing, pending, abandoned, queued) leaves the payment pending.
_STATUS_OUTCOMES = {
    "success": OUTCOME_SUCCESS,
    "failed": OUTCOME_FAILURE,
    "reversed": OUTCOME_FAILURE,
    "cancelled": OUTCOME_CANCEL,
}


def _paid_enough(paid_pesewas: int, expected_pesewas: int) -> bool:
    return int(paid_pesewas or 0) >= int(expected_pesewas or 0)


class PaystackGateway:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.secret_key = config.PAYSTACK_SECRET_KEY if secret_key is None else secret_key
        self.base_url = (base_url or config.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or config.GATEWAY_TIMEOUT_SECONDS

    @property
    def configured(self) -> bool:
        return config._is_sk(self.secret_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def initiate_charge(
        self,
        amount: int,
        currency: str,
        description: str,
        email: str,
        reference: str,
        callback_url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Open a hosted checkout. Returns {payment_handle, hosted_payment_url, access_code}.
        ``metadata`` is sent to Paystack, so it must never carry credentials.
        """
        if not self.configured:
            raise GatewayError("Payment processor not configured.")
        body = {
            "email": email,
            "amount": int(amount),
            "currency": currency,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": {**(metadata or {}), "description": description},
        }
        try:
            r = requests.post(
                f"{self.base_url}/transaction/initialize",
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
            result = r.json()
        except (requests.RequestException, ValueError) as e:
            jlog("gateway_error", op="initialize", reference=reference, error=str(e))
            raise GatewayError() from e

        data = result.get("data") or {}
        if not result.get("status") or not data.get("authorization_url"):
            jlog("gateway_error", op="initialize", reference=reference, message=result.get("message"))
            raise GatewayError()

        return {
            "payment_handle": data.get("reference") or reference,
            "hosted_payment_url": data["authorization_url"],
            "access_code": data.get("access_code"),
        }

    def verify(self, reference: str) -> Tuple[bool, Dict[str, Any], str]:
        if not self.configured:
            return (False, {}, "Payment processor not configured.")
        try:
            url = f"{self.base_url}/transaction/verify/{reference}"
            r = requests.get(url, headers=self._headers(), timeout=self.timeout)
            result = r.json()
            if not result.get("status"):
                return (False, result, result.get("message") or "Verification failed.")
            data = result.get("data") or {}
            ok = data.get("status") == "success"
            if not ok:
                return (False, data, data.get("gateway_response") or "Payment not successful.")
            return (True, data, "")
        except Exception as e:
            return (False, {}, f"Verify error: {str(e)}")

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not signature or not self.configured:
            return False
        expected = hmac.new(self.secret_key.encode("utf-8"), raw_body or b"", hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature.strip())


def outcome_from_transaction(
    data: Dict[str, Any],
    expected_amount: int,
    expected_currency: str,
) -> Tuple[Optional[str], str]:
    """
    Map a Paystack transaction record to (outcome, transaction_id).
    An underpaid or wrong-currency "success" is reported as a failure.
    """
    outcome = _STATUS_OUTCOMES.get(str(data.get("status") or "").lower())
    tx_id = str(data.get("id") or "")
    if outcome == OUTCOME_SUCCESS:
        currency = str(data.get("currency") or "").upper()
        if currency != expected_currency or not _paid_enough(data.get("amount"), expected_amount):
            jlog(
                "gateway_underpaid",
                reference=data.get("reference"),
                paid=data.get("amount"),
                expected=expected_amount,
                currency=currency,
            )
            return OUTCOME_FAILURE, tx_id
    return outcome, tx_id


def charge_status(data: Dict[str, Any]) -> Optional[str]:
    """
    Lowercased Paystack status of a verified charge.

    Returns "" when Paystack answered but holds no such charge (the API-level
    ``status`` is ``false``, e.g. an unknown reference), and None when Paystack
    could not be asked at all.
    """
    if not data:
        return None
    status = data.get("status")
    if isinstance(status, bool):
        return ""
    return str(status or "").lower()
