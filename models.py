# models.py
"""
Document shapes for payments and reseller users.

Payment metadata is a tagged union keyed by ``type``: each payment type has
its own frozen dataclass, and ``metadata_from_doc`` is the only way a stored
metadata blob is turned back into one.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId

import config

# ---------------------------------------------------------------------
# Payment types / statuses
# ---------------------------------------------------------------------
TYPE_ORDER = "order"
TYPE_WALLET_TOPUP = "wallet_topup"
TYPE_RESELLER_REGISTRATION = "reseller_registration"

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

# Gateway outcomes (verify/webhook)
OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"
OUTCOME_CANCEL = "cancel"
OUTCOME_TO_STATUS = {
    OUTCOME_FAILURE: STATUS_FAILED,
    OUTCOME_CANCEL: STATUS_CANCELLED,
}

# Reseller account states
ACCOUNT_PENDING = "pending"

ROLE_RESELLER = "reseller"
ROLE_ADMIN = "admin"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------
# Metadata (tagged union)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RegistrationMetadata:
    email: str
    name: str
    business_name: str
    password: Optional[str] = None  # staged plaintext; scrubbed once the payment settles
    domain: Optional[str] = None
    type: str = TYPE_RESELLER_REGISTRATION

    def __repr__(self) -> str:
        return (
            f"RegistrationMetadata(email={self.email!r}, name={self.name!r}, "
            f"business_name={self.business_name!r}, domain={self.domain!r})"
        )


@dataclass(frozen=True)
class OrderMetadata:
    order_id: Optional[str] = None
    user_id: Optional[str] = None
    type: str = TYPE_ORDER


@dataclass(frozen=True)
class WalletTopupMetadata:
    user_id: str = ""
    type: str = TYPE_WALLET_TOPUP


PaymentMetadata = Union[RegistrationMetadata, OrderMetadata, WalletTopupMetadata]

_METADATA_CLASSES = {
    TYPE_RESELLER_REGISTRATION: RegistrationMetadata,
    TYPE_ORDER: OrderMetadata,
    TYPE_WALLET_TOPUP: WalletTopupMetadata,
}


def metadata_to_doc(meta: PaymentMetadata) -> Dict[str, Any]:
    return {k: v for k, v in asdict(meta).items() if v is not None}


def metadata_from_doc(raw: Optional[Dict[str, Any]]) -> PaymentMetadata:
    """
    Rebuild the typed metadata for a stored payment.
    Raises KeyError for an unknown/missing type tag.
    """
    raw = dict(raw or {})
    cls = _METADATA_CLASSES[raw.get("type")]
    fields = cls.__dataclass_fields__
    return cls(**{k: v for k, v in raw.items() if k in fields})


# ---------------------------------------------------------------------
# Document builders
# ---------------------------------------------------------------------
def new_payment_doc(
    payment_id: str,
    meta: PaymentMetadata,
    amount: int,
    currency: str,
    description: str,
    gateway: Dict[str, Any],
    ttl_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        "payment_id": payment_id,
        "type": meta.type,
        "amount": int(amount),
        "currency": currency,
        "description": description,
        "status": STATUS_PENDING,
        "metadata": metadata_to_doc(meta),
        "transaction_id": None,
        "user_id": None,
        "gateway": gateway,
        "expires_at": (now + timedelta(minutes=ttl_minutes)) if ttl_minutes else None,
        "created_at": now,
        "updated_at": now,
    }


def new_reseller_doc(
    user_id: ObjectId,
    meta: RegistrationMetadata,
    password_hash: str,
    payment_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        "_id": user_id,
        "email": meta.email,
        "password": password_hash,
        "name": meta.name,
        "business_name": meta.business_name,
        "role": ROLE_RESELLER,
        "status": ACCOUNT_PENDING,
        "statistics": {
            "total_orders": 0,
            "total_revenue": 0.0,
            "total_profit": 0.0,
        },
        "preferences": {
            "language": "en",
            "currency": config.CURRENCY,
            "notifications": {
                "email": True,
                "push": True,
                "order_updates": True,
                "promotions": True,
            },
            "theme": "system",
        },
        "registration_payment_id": payment_id,
        "created_at": now,
        "updated_at": now,
    }


def new_balance_doc(user_id: ObjectId, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    return {
        "user_id": user_id,
        "amount": 0.00,
        "currency": config.CURRENCY,
        "created_at": now,
        "updated_at": now,
    }


# ---------- JSON-safe converter ----------
def to_client(doc: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not doc:
        return {}
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        elif isinstance(v, dict):
            out[k] = to_client(v)
        else:
            out[k] = v
    return out
