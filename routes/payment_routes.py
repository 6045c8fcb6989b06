# routes/payment_routes.py
from __future__ import annotations

import json
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, redirect, request

import config
from errors import InvalidPaymentType, InvalidState, LatePayment, NotFound, OnboardingError
from jlog import jlog
from payments import apply_gateway_outcome, cancel_payment, resolve_status
from paystack import outcome_from_transaction

payment_routes_bp = Blueprint("payment_routes", __name__)


def _storage():
    return current_app.extensions["storage"]


def _gateway():
    return current_app.extensions["gateway"]


def _background() -> bool:
    return bool(current_app.config.get("NOTIFY_IN_BACKGROUND", True))


def _status_payload(result: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {"success": True, "status": result["status"]}
    if result["status"] == "pending":
        out["paymentUrl"] = result["redirect_target"]
    else:
        out["redirectUrl"] = result["redirect_target"]
    return out


# ============================================================================
# Status polling
# ============================================================================
@payment_routes_bp.route("/api/payments/<payment_id>/status", methods=["GET"])
def api_payment_status(payment_id: str):
    return jsonify(_status_payload(resolve_status(_storage(), payment_id)))


@payment_routes_bp.route("/api/checkout/verify", methods=["POST"])
def api_checkout_verify():
    body = request.get_json(silent=True) or {}
    return jsonify(_status_payload(resolve_status(_storage(), body.get("paymentId"))))


@payment_routes_bp.route("/api/payments/<payment_id>/cancel", methods=["POST"])
def api_payment_cancel(payment_id: str):
    result = cancel_payment(_storage(), _gateway(), payment_id, background_notify=_background())
    return jsonify({"success": True, "status": result["status"]})


# ============================================================================
# Paystack browser callback
# ============================================================================
@payment_routes_bp.route("/payments/paystack/callback", methods=["GET"])
def paystack_callback():
    reference = (request.args.get("reference") or request.args.get("trxref") or "").strip()
    if not reference:
        return redirect(config.REDIRECT_ERROR)

    storage = _storage()
    payment = storage.find_payment(reference)
    if not payment:
        return redirect(config.REDIRECT_ERROR)

    ok, data, msg = _gateway().verify(reference)
    if not ok:
        jlog("gateway_verify_failed", reference=reference, message=msg)

    outcome, tx_id = outcome_from_transaction(data, payment.get("amount"), payment.get("currency"))
    if outcome:
        try:
            apply_gateway_outcome(storage, reference, tx_id, outcome, background_notify=_background())
        except OnboardingError as e:
            # payment stays as it was; the status lookup below decides where the browser goes
            jlog("callback_outcome_rejected", reference=reference, error=type(e).__name__, message=e.message)

    result = resolve_status(storage, reference)
    return redirect(result["redirect_target"] or config.REDIRECT_ERROR)


# ============================================================================
# Paystack webhook
# ============================================================================
@payment_routes_bp.route("/webhooks/paystack", methods=["POST"])
def paystack_webhook():
    raw = request.get_data() or b""
    if not _gateway().verify_signature(raw, request.headers.get("x-paystack-signature")):
        jlog("webhook_rejected", reason="bad_signature", remote=request.remote_addr)
        return jsonify({"success": False, "message": "Invalid signature"}), 401

    try:
        event = json.loads(raw.decode("utf-8") or "{}")
    except ValueError:
        return jsonify({"success": False, "message": "Invalid payload"}), 400

    evt = str(event.get("event") or "")
    data = event.get("data") or {}
    reference = str(data.get("reference") or "").strip()
    if not evt.startswith("charge.") or not reference:
        return jsonify({"success": True, "ignored": "event"})

    storage = _storage()
    payment = storage.find_payment(reference)
    if not payment:
        return jsonify({"success": True, "ignored": "unknown_reference"})

    outcome, tx_id = outcome_from_transaction(data, payment.get("amount"), payment.get("currency"))
    if not outcome:
        return jsonify({"success": True, "ignored": "status"})

    # Other errors answer non-2xx so Paystack redelivers.
    try:
        result = apply_gateway_outcome(storage, reference, tx_id, outcome, background_notify=_background())
    except LatePayment:
        return jsonify({"success": True, "flagged": "paid_after_cancel"})
    except InvalidPaymentType:
        jlog("webhook_unhandled_type", reference=reference, type=payment.get("type"), outcome=outcome)
        return jsonify({"success": True, "ignored": "type"})
    except (NotFound, InvalidState) as e:
        jlog("webhook_stale", reference=reference, outcome=outcome, error=type(e).__name__)
        return jsonify({"success": True, "ignored": "stale"})

    jlog("webhook_processed", reference=reference, outcome=outcome, status=result["status"])
    return jsonify({"success": True, "status": result["status"]})
