# payments.py
"""
Registration payment lifecycle: initiate, resolve status, apply gateway
outcomes, expire abandoned payments.
"""
from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import config
from errors import (
    DuplicateEmail,
    GatewayError,
    InvalidPaymentType,
    InvalidState,
    LatePayment,
    NotFound,
    OnboardingError,
    ValidationError,
)
from jlog import jlog
from models import (
    OUTCOME_SUCCESS,
    OUTCOME_TO_STATUS,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    TYPE_ORDER,
    TYPE_RESELLER_REGISTRATION,
    TYPE_WALLET_TOPUP,
    RegistrationMetadata,
    new_payment_doc,
    utcnow,
)
from paystack import charge_status, outcome_from_transaction
from registration import complete_registration
from stores import normalize_custom_domain

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Paystack statuses for a charge the customer may still complete
_GATEWAY_IN_FLIGHT = frozenset({"ongoing", "pending", "processing", "queued"})

# payment type -> handler(storage, payment_id, transaction_id, background_notify=...)
COMPLETION_HANDLERS: Dict[str, Callable[..., Any]] = {
    TYPE_RESELLER_REGISTRATION: complete_registration,
}


def _s(v: Any) -> str:
    return str(v).strip() if v is not None else ""


def new_payment_id(prefix: str = "REG") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:20].upper()}"


# ---------------------------------------------------------------------
# Initiate
# ---------------------------------------------------------------------
def initiate_registration(
    storage,
    gateway,
    email: Any,
    password: Any,
    name: Any,
    business_name: Any,
    domain: Any = None,
    callback_url: Optional[str] = None,
) -> Dict[str, str]:
    """
    Validate the form, stage it on a pending payment and open a hosted
    checkout. No account exists until the payment completes.
    """
    email = _s(email).lower()
    password = password if isinstance(password, str) else ""
    name = _s(name)
    business_name = _s(business_name)

    missing = [
        label
        for label, val in (
            ("Email", email),
            ("Password", password),
            ("Name", name),
            ("Business name", business_name),
        )
        if not val
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email address.")
    if len(password) < config.MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {config.MIN_PASSWORD_LENGTH} characters.")

    custom_domain = normalize_custom_domain(_s(domain) or None)

    # confirmed accounts only; abandoned payments never block a retry
    if storage.email_registered(email):
        raise DuplicateEmail()
    if custom_domain and storage.custom_domain_taken(custom_domain):
        raise ValidationError("Domain already in use.")

    payment_id = new_payment_id()
    meta = RegistrationMetadata(
        email=email,
        name=name,
        business_name=business_name,
        password=password,
        domain=custom_domain,
    )
    charge = gateway.initiate_charge(
        amount=config.REGISTRATION_FEE_PESEWAS,
        currency=config.CURRENCY,
        description=config.REGISTRATION_DESCRIPTION,
        email=email,
        reference=payment_id,
        callback_url=callback_url or f"{config.PUBLIC_BASE_URL}/payments/paystack/callback",
        metadata={"payment_id": payment_id, "type": TYPE_RESELLER_REGISTRATION, "business_name": business_name},
    )

    storage.insert_payment(new_payment_doc(
        payment_id,
        meta,
        amount=config.REGISTRATION_FEE_PESEWAS,
        currency=config.CURRENCY,
        description=config.REGISTRATION_DESCRIPTION,
        gateway={
            "provider": "paystack",
            "reference": charge["payment_handle"],
            "access_code": charge.get("access_code"),
            "authorization_url": charge["hosted_payment_url"],
        },
        ttl_minutes=config.PENDING_REGISTRATION_TTL_MINUTES,
    ))
    jlog("registration_initiated", payment_id=payment_id, email=email, business_name=business_name)
    return {"payment_id": payment_id, "redirect_url": charge["hosted_payment_url"]}


# ---------------------------------------------------------------------
# Status (pure read, safe to poll)
# ---------------------------------------------------------------------
def _success_redirect(payment: Dict[str, Any]) -> str:
    meta = payment.get("metadata") or {}
    ptype = payment.get("type") or meta.get("type")
    if ptype == TYPE_ORDER:
        order_id = meta.get("order_id") or payment.get("order_id")
        return config.REDIRECT_ORDER_SUCCESS.format(order_id=order_id) if order_id else config.REDIRECT_ERROR
    if ptype == TYPE_WALLET_TOPUP:
        return config.REDIRECT_WALLET_SUCCESS
    if ptype == TYPE_RESELLER_REGISTRATION:
        return config.REDIRECT_REGISTRATION_SUCCESS
    return config.REDIRECT_ERROR


def resolve_status(storage, payment_id: Any) -> Dict[str, Optional[str]]:
    payment_id = _s(payment_id)
    if not payment_id:
        raise ValidationError("Payment ID is required")
    payment = storage.find_payment(payment_id)
    if not payment:
        raise NotFound(payment_id=payment_id)

    status = payment.get("status") or STATUS_PENDING
    if status == STATUS_COMPLETED:
        target = _success_redirect(payment)
    elif status in (STATUS_FAILED, STATUS_CANCELLED):
        target = config.REDIRECT_ERROR
    else:
        target = (payment.get("gateway") or {}).get("authorization_url")
    return {"status": status, "redirect_target": target}


# ---------------------------------------------------------------------
# Gateway outcomes
# ---------------------------------------------------------------------
def settle_payment(storage, payment_id: str, status: str, reason: Optional[str] = None) -> str:
    """pending -> failed|cancelled, with no other side effects. Replays are no-ops."""
    if storage.settle_payment(payment_id, status, reason):
        jlog("payment_settled", payment_id=payment_id, status=status, reason=reason)
        return status
    payment = storage.find_payment(payment_id)
    if not payment:
        raise NotFound(payment_id=payment_id)
    current = payment.get("status")
    if current == status:
        return status
    raise InvalidState(payment_id=payment_id, status=current)


def apply_gateway_outcome(
    storage,
    payment_id: Any,
    transaction_id: Any,
    outcome: Any,
    background_notify: bool = True,
) -> Dict[str, Any]:
    payment_id = _s(payment_id)
    outcome = _s(outcome).lower()
    if not payment_id:
        raise ValidationError("Payment ID is required")

    if outcome == OUTCOME_SUCCESS:
        payment = storage.find_payment(payment_id)
        if not payment:
            raise NotFound(payment_id=payment_id)
        handler = COMPLETION_HANDLERS.get(payment.get("type"))
        if handler is None:
            raise InvalidPaymentType(payment_id=payment_id, type=payment.get("type"))
        try:
            user_id = handler(storage, payment_id, _s(transaction_id), background_notify=background_notify)
        except InvalidState as e:
            if storage.flag_late_payment(payment_id, _s(transaction_id)):
                jlog("payment_paid_after_cancel", level="alert", payment_id=payment_id, transaction_id=transaction_id)
                raise LatePayment(payment_id=payment_id) from e
            raise
        return {"status": STATUS_COMPLETED, "user_id": user_id}

    status = OUTCOME_TO_STATUS.get(outcome)
    if status is None:
        raise ValidationError("Unknown payment outcome.")
    return {"status": settle_payment(storage, payment_id, status, reason=f"gateway_{outcome}")}


def _close_unless_paid(
    storage,
    gateway,
    payment: Dict[str, Any],
    reason: str,
    background_notify: bool = True,
) -> Dict[str, Any]:
    """
    Ask Paystack about a pending payment before cancelling it locally.

    A charge Paystack reports as settled is applied as that outcome (a paid
    registration completes). A charge still in flight, or one Paystack could
    not be asked about, stays pending. Anything else is cancelled.
    """
    payment_id = payment["payment_id"]
    reference = (payment.get("gateway") or {}).get("reference") or payment_id
    _ok, data, msg = gateway.verify(reference)
    gw_status = charge_status(data)
    if gw_status is None:
        jlog("gateway_verify_failed", reference=reference, message=msg, op=reason)
        return {"status": STATUS_PENDING, "gateway_status": None}
    if gw_status in _GATEWAY_IN_FLIGHT:
        return {"status": STATUS_PENDING, "gateway_status": gw_status}

    outcome, tx_id = outcome_from_transaction(data, payment.get("amount"), payment.get("currency"))
    if outcome:
        result = apply_gateway_outcome(storage, payment_id, tx_id, outcome, background_notify=background_notify)
    else:
        result = {"status": settle_payment(storage, payment_id, STATUS_CANCELLED, reason=reason)}
    result["gateway_status"] = gw_status
    return result


def cancel_payment(storage, gateway, payment_id: Any, background_notify: bool = True) -> Dict[str, Any]:
    """Client-requested cancel. Paystack is asked first, so a paid checkout is never cancelled."""
    payment_id = _s(payment_id)
    if not payment_id:
        raise ValidationError("Payment ID is required")
    payment = storage.find_payment(payment_id)
    if not payment:
        raise NotFound(payment_id=payment_id)
    if payment.get("status") != STATUS_PENDING:
        return {"status": settle_payment(storage, payment_id, STATUS_CANCELLED, reason="client_cancel")}

    result = _close_unless_paid(storage, gateway, payment, "client_cancel", background_notify=background_notify)
    if result["gateway_status"] is None:
        raise GatewayError("Could not confirm the payment with Paystack. Please try again.")
    if result["status"] == STATUS_PENDING:
        raise InvalidState("Payment is still being processed.", payment_id=payment_id)
    return result


def expire_stale_payments(
    storage,
    gateway,
    now: Optional[datetime] = None,
    background_notify: bool = True,
) -> int:
    """
    Cancel pending payments past their TTL and drop their staged credentials.
    Payments Paystack reports as paid or still in flight are not cancelled.
    Returns how many were cancelled.
    """
    now = now or utcnow()
    expired = 0
    for payment in storage.find_expired_pending(now):
        payment_id = payment["payment_id"]
        try:
            result = _close_unless_paid(storage, gateway, payment, "expired", background_notify=background_notify)
        except OnboardingError as e:
            jlog("expire_skipped", payment_id=payment_id, error=type(e).__name__, message=e.message)
            continue
        if result["status"] == STATUS_CANCELLED:
            expired += 1
        else:
            jlog(
                "expire_not_cancelled",
                payment_id=payment_id,
                status=result["status"],
                gateway_status=result["gateway_status"],
            )
    if expired:
        jlog("payments_expired", count=expired)
    return expired
