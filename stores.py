# stores.py - tenant store documents and host resolution
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from bson import ObjectId

import config
from errors import ValidationError
from models import ACCOUNT_PENDING, to_client, utcnow

_HOSTNAME_RE = re.compile(
    r"^(?=.{4,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"
)


def _to_float(val: Any, default: float = 0.0) -> float:
    try:
        return float(str(val).replace(",", "").strip())
    except Exception:
        return float(default)


def normalize_custom_domain(raw: Optional[str]) -> Optional[str]:
    """
    'https://www.Shop.Example.com/path' -> 'shop.example.com'.
    Returns None for blank input, raises ValidationError for a bad hostname.
    """
    s = (raw or "").strip().lower()
    if not s:
        return None
    s = re.sub(r"^[a-z][a-z0-9+.-]*://", "", s)
    s = s.split("/", 1)[0].split("?", 1)[0].split(":", 1)[0].strip(".")
    if s.startswith("www."):
        s = s[4:]
    if not _HOSTNAME_RE.match(s):
        raise ValidationError("Invalid domain name.")
    base = config.STORE_PUBLIC_HOST
    if base and (s == base or s.endswith("." + base)):
        raise ValidationError("Choose a domain outside the platform domain.")
    return s


def validate_pricing_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """
    Markups are percentages: all >= 0 and minimum <= default <= maximum.
    Returns the merged settings (defaults filled in).
    """
    merged = {**config.DEFAULT_STORE_SETTINGS, **(settings or {})}
    lo = _to_float(merged.get("minimum_markup"), -1)
    mid = _to_float(merged.get("default_markup"), -1)
    hi = _to_float(merged.get("maximum_markup"), -1)
    if min(lo, mid, hi) < 0:
        raise ValidationError("Markups cannot be negative.")
    if not (lo <= mid <= hi):
        raise ValidationError("Markups must satisfy minimum <= default <= maximum.")
    if _to_float(merged.get("low_balance_alert"), -1) < 0:
        raise ValidationError("Low balance alert cannot be negative.")
    merged.update(minimum_markup=lo, default_markup=mid, maximum_markup=hi)
    merged["auto_fulfillment"] = bool(merged.get("auto_fulfillment"))
    return merged


def new_store_doc(
    owner_id: ObjectId,
    name: str,
    subdomain: str,
    payment_id: str,
    custom_domain: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    domain_settings: Dict[str, Any] = {"subdomain": subdomain, "custom_domain_verified": False}
    # custom_domain stays absent (not null) so the partial unique index ignores it
    if custom_domain:
        domain_settings["custom_domain"] = custom_domain
    return {
        "owner_id": owner_id,
        "name": name,
        "description": "",
        "logo": "",
        "theme": dict(config.DEFAULT_STORE_THEME),
        "settings": validate_pricing_settings({}),
        "domain_settings": domain_settings,
        "status": ACCOUNT_PENDING,
        "analytics": {"total_orders": 0, "total_revenue": 0.0, "total_profit": 0.0},
        "registration_payment_id": payment_id,
        "created_at": now,
        "updated_at": now,
    }


def store_full_domain(store_doc: Dict[str, Any]) -> Optional[str]:
    ds = (store_doc or {}).get("domain_settings") or {}
    if ds.get("custom_domain") and ds.get("custom_domain_verified"):
        return ds["custom_domain"]
    if ds.get("subdomain"):
        return f"{ds['subdomain']}.{config.STORE_PUBLIC_HOST}"
    return None


def split_store_host(host: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Returns (subdomain, custom_domain) for a request host; at most one is set.
    """
    host_only = (host or "").split(":", 1)[0].strip().lower().rstrip(".")
    if host_only.startswith("www."):
        host_only = host_only[4:]
    base = config.STORE_PUBLIC_HOST
    if not host_only or host_only == base:
        return None, None
    if base and host_only.endswith("." + base):
        label = host_only[: -(len(base) + 1)]
        if label and "." not in label:
            return label, None
        return None, None
    return None, host_only


def resolve_store_by_host(storage, host: str) -> Optional[Dict[str, Any]]:
    subdomain, custom_domain = split_store_host(host)
    if subdomain:
        doc = storage.find_store_by_subdomain(subdomain)
    elif custom_domain:
        doc = storage.find_store_by_custom_domain(custom_domain)
        if doc and not (doc.get("domain_settings") or {}).get("custom_domain_verified"):
            doc = None
    else:
        doc = None
    if not doc:
        return None
    out = to_client(doc)
    out["full_domain"] = store_full_domain(doc)
    return out
