# routes/reseller_register.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, url_for

import config
from payments import initiate_registration

reseller_register_bp = Blueprint("reseller_register", __name__)


@reseller_register_bp.route("/api/auth/reseller/register", methods=["POST"])
def api_register_reseller():
    """
    Stage the registration and hand back the Paystack checkout URL.
    The account is created only after the payment succeeds.
    """
    data = request.get_json(silent=True) or request.form.to_dict() or {}

    result = initiate_registration(
        current_app.extensions["storage"],
        current_app.extensions["gateway"],
        email=data.get("email"),
        password=data.get("password"),
        name=data.get("name"),
        business_name=data.get("businessName") or data.get("business_name"),
        domain=data.get("domain"),
        callback_url=f"{config.PUBLIC_BASE_URL}{url_for('payment_routes.paystack_callback')}",
    )
    return jsonify({
        "success": True,
        "message": "Registration initiated",
        "paymentId": result["payment_id"],
        "redirectUrl": result["redirect_url"],
    })
