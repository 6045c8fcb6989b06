# routes/store_lookup.py - which store does this host belong to?
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from stores import resolve_store_by_host

store_lookup_bp = Blueprint("store_lookup", __name__)

# never exposed on the public lookup
_PRIVATE_FIELDS = ("registration_payment_id", "analytics", "settings")


@store_lookup_bp.route("/api/stores/resolve", methods=["GET"])
def api_resolve_store():
    host = (request.args.get("host") or request.host or "").strip()
    store = resolve_store_by_host(current_app.extensions["storage"], host)
    if not store:
        return jsonify({"success": False, "message": "Store not found"}), 404
    for k in _PRIVATE_FIELDS:
        store.pop(k, None)
    return jsonify({"success": True, "store": store})
