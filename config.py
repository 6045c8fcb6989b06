# config.py
from __future__ import annotations

import os
from typing import Any, Dict, FrozenSet


# ---------------------------------------------------------------------
# Config (ENV)
# ---------------------------------------------------------------------
def _clean_key(v: Any) -> str:
    return (v or "").strip() if isinstance(v, str) else ""

def _is_pk(v: str) -> bool:
    return isinstance(v, str) and v.strip().lower().startswith("pk_")

def _is_sk(v: str) -> bool:
    return isinstance(v, str) and v.strip().lower().startswith("sk_")

def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, default)).strip())
    except Exception:
        return int(default)

def _env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, default)).strip())
    except Exception:
        return float(default)


SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me")

MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017/?replicaSet=rs0")
MONGO_DB_NAME: str = os.getenv("MONGO_DB_NAME", "reseller_platform")

# --- Paystack ---
_raw_pk = _clean_key(os.getenv("PAYSTACK_PUBLIC_KEY", "")) or _clean_key(os.getenv("PAYSTACK_PK", ""))
_raw_sk = _clean_key(os.getenv("PAYSTACK_SECRET_KEY", "")) or _clean_key(os.getenv("PAYSTACK_SK", ""))

# auto-fix swap if misconfigured
if _is_sk(_raw_pk) and _is_pk(_raw_sk):
    _raw_pk, _raw_sk = _raw_sk, _raw_pk

PAYSTACK_SECRET_KEY: str = _raw_sk

PAYSTACK_BASE_URL: str = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co").rstrip("/")
GATEWAY_TIMEOUT_SECONDS: float = _env_float("GATEWAY_TIMEOUT_SECONDS", 25.0)

# --- Public URLs ---
PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000").rstrip("/")
STORE_PUBLIC_HOST: str = os.getenv("STORE_PUBLIC_HOST", "nagmart.store").strip().lower()

# --- Registration ---
CURRENCY: str = os.getenv("CURRENCY", "GHS").strip().upper()
REGISTRATION_FEE_PESEWAS: int = _env_int("REGISTRATION_FEE_PESEWAS", 10000)  # GHS 100.00
REGISTRATION_DESCRIPTION: str = "Reseller Registration Fee"
PENDING_REGISTRATION_TTL_MINUTES: int = _env_int("PENDING_REGISTRATION_TTL_MINUTES", 60)
MIN_PASSWORD_LENGTH: int = _env_int("MIN_PASSWORD_LENGTH", 6)
PASSWORD_HASH_METHOD: str = os.getenv("PASSWORD_HASH_METHOD", "scrypt")

# --- Subdomains ---
SUBDOMAIN_MAX_LENGTH: int = _env_int("SUBDOMAIN_MAX_LENGTH", 20)
SUBDOMAIN_MAX_ATTEMPTS: int = _env_int("SUBDOMAIN_MAX_ATTEMPTS", 1000)
SUBDOMAIN_FALLBACK: str = os.getenv("SUBDOMAIN_FALLBACK", "store")
RESERVED_SUBDOMAINS: FrozenSet[str] = frozenset(
    s.strip().lower()
    for s in os.getenv(
        "RESERVED_SUBDOMAINS",
        "www,admin,api,app,mail,static,assets,reseller,auth,support",
    ).split(",")
    if s.strip()
)

# --- Store defaults (percent) ---
DEFAULT_STORE_SETTINGS: Dict[str, Any] = {
    "default_markup": 20.0,
    "minimum_markup": 10.0,
    "maximum_markup": 50.0,
    "auto_fulfillment": True,
    "low_balance_alert": 100.0,
}

DEFAULT_STORE_THEME: Dict[str, str] = {
    "primary_color": "#6366f1",
    "accent_color": "#4f46e5",
    "background_color": "#000000",
}

# --- Client redirect destinations ---
REDIRECT_ORDER_SUCCESS = "/orders/{order_id}/success"
REDIRECT_WALLET_SUCCESS = "/reseller/wallet?status=success"
REDIRECT_REGISTRATION_SUCCESS = "/auth/reseller/register/success"
REDIRECT_ERROR = "/orders/error"
