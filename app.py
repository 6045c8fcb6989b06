from __future__ import annotations

import traceback
from typing import Any, Optional

import click
from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

# Load .env before config reads the environment (e.g., Paystack keys)
load_dotenv()

import config
from errors import OnboardingError
from jlog import jlog
from payments import expire_stale_payments
from paystack import PaystackGateway
from routes.payment_routes import payment_routes_bp
from routes.reseller_register import reseller_register_bp
from routes.store_lookup import store_lookup_bp
from storage import MongoStorage


def _default_storage() -> MongoStorage:
    from db import client, db  # required

    return MongoStorage(client, db)


def create_app(storage: Optional[Any] = None, gateway: Optional[Any] = None, **overrides: Any) -> Flask:
    app = Flask(__name__)
    app.secret_key = config.SECRET_KEY
    app.config["NOTIFY_IN_BACKGROUND"] = True
    app.config.update(overrides)

    app.extensions["storage"] = storage if storage is not None else _default_storage()
    app.extensions["gateway"] = gateway if gateway is not None else PaystackGateway()

    # --- Blueprints ---
    app.register_blueprint(reseller_register_bp)
    app.register_blueprint(payment_routes_bp)
    app.register_blueprint(store_lookup_bp)

    # --- Errors ---
    @app.errorhandler(OnboardingError)
    def _onboarding_error(e: OnboardingError):
        if e.status_code >= 500:
            jlog("onboarding_error", error=type(e).__name__, message=e.message, **e.context)
        return jsonify(e.to_client()), e.status_code

    @app.errorhandler(Exception)
    def _unhandled_error(e: Exception):
        if isinstance(e, HTTPException):
            return e
        traceback.print_exc()
        jlog("unhandled_error", error=type(e).__name__, detail=str(e)[:300])
        return jsonify({"success": False, "message": "Something went wrong. Please try again."}), 500

    # --- Maintenance commands ---
    @app.cli.command("ensure-indexes")
    def ensure_indexes_command():
        """Create the unique indexes onboarding relies on."""
        app.extensions["storage"].ensure_indexes()
        click.echo("indexes ok")

    @app.cli.command("expire-payments")
    def expire_payments_command():
        """Cancel pending payments past their TTL that Paystack does not report as paid."""
        count = expire_stale_payments(app.extensions["storage"], app.extensions["gateway"])
        click.echo(f"expired {count} payment(s)")

    # --- Utility routes ---
    @app.route("/healthz")
    def healthz():
        return "ok", 200

    return app


# Gunicorn entrypoint: `gunicorn "app:create_app()"`
if __name__ == "__main__":
    create_app().run(debug=True)
