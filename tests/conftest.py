"""
Shared fixtures for the onboarding test suite.

``InMemoryStorage`` implements the ``MongoStorage`` surface over plain lists:
transactions snapshot every collection and restore it when the callback
raises, and the unique indexes raise pymongo's ``DuplicateKeyError`` with the
same ``keyValue`` details a server would send.
"""

import copy
import os
import re
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

os.environ.setdefault("STORE_PUBLIC_HOST", "nagmart.store")

import config  # noqa: E402
from models import ROLE_ADMIN, STATUS_PENDING, utcnow  # noqa: E402
from subdomain import taken_pattern  # noqa: E402


def _get(doc: Dict[str, Any], path: str) -> Any:
    cur: Any = doc
    for part in path.split("."):
        if not isinstance(cur, dict):
            return None
        cur = cur.get(part)
    return cur


class InMemoryStorage:
    UNIQUE = {
        "users": ["email"],
        "balances": ["user_id"],
        "stores": ["domain_settings.subdomain", "domain_settings.custom_domain", "owner_id"],
        "payments": ["payment_id"],
    }

    def __init__(self):
        self.collections: Dict[str, List[Dict[str, Any]]] = {
            name: [] for name in ("payments", "users", "balances", "stores", "notifications")
        }
        self.committed = 0
        self.aborted = 0
        self._session = object()

    # --- helpers used by tests ---
    def docs(self, name: str) -> List[Dict[str, Any]]:
        return copy.deepcopy(self.collections[name])

    def raw_payment(self, payment_id: str) -> Optional[Dict[str, Any]]:
        for d in self.collections["payments"]:
            if d.get("payment_id") == payment_id:
                return d
        return None

    def find_user(self, user_id):
        for u in self.collections["users"]:
            if u["_id"] == user_id:
                out = copy.deepcopy(u)
                out.pop("password", None)
                return out
        return None

    def add_admin(self, email: str = "admin@nagmart.store") -> ObjectId:
        oid = ObjectId()
        self._insert("users", {"_id": oid, "email": email, "role": ROLE_ADMIN, "status": "active"})
        return oid

    def _insert(self, name: str, doc: Dict[str, Any]) -> None:
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        for field in self.UNIQUE.get(name, []):
            val = _get(doc, field)
            if val is None:
                continue
            for other in self.collections[name]:
                if _get(other, field) == val:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {name} dup key: {{ {field}: {val!r} }}",
                        11000,
                        {"keyValue": {field: val}},
                    )
        self.collections[name].append(doc)

    # --- MongoStorage surface ---
    def ensure_indexes(self) -> None:
        pass

    def run_transaction(self, callback):
        snapshot = copy.deepcopy(self.collections)
        try:
            result = callback(self._session)
        except BaseException:
            self.collections = snapshot
            self.aborted += 1
            raise
        self.committed += 1
        return result

    def insert_payment(self, doc):
        self._insert("payments", doc)

    def find_payment(self, payment_id, session=None):
        return copy.deepcopy(self.raw_payment(payment_id))

    def claim_payment(self, payment_id, transaction_id, user_id, session=None):
        doc = self.raw_payment(payment_id)
        if not doc or doc.get("status") != STATUS_PENDING:
            return False
        now = utcnow()
        doc.update(
            status="completed",
            transaction_id=transaction_id,
            user_id=user_id,
            completed_at=now,
            updated_at=now,
        )
        (doc.get("metadata") or {}).pop("password", None)
        return True

    def settle_payment(self, payment_id, status, reason=None):
        doc = self.raw_payment(payment_id)
        if not doc or doc.get("status") != STATUS_PENDING:
            return None
        now = utcnow()
        doc.update(status=status, settle_reason=reason, settled_at=now, updated_at=now)
        (doc.get("metadata") or {}).pop("password", None)
        return copy.deepcopy(doc)

    def find_expired_pending(self, now, limit=500):
        due = [
            d for d in self.collections["payments"]
            if d.get("status") == STATUS_PENDING and d.get("expires_at") is not None and d["expires_at"] < now
        ]
        due.sort(key=lambda d: d["expires_at"])
        out = []
        for d in due[:limit]:
            d = copy.deepcopy(d)
            (d.get("metadata") or {}).pop("password", None)
            out.append(d)
        return out

    def flag_late_payment(self, payment_id, transaction_id):
        doc = self.raw_payment(payment_id)
        if not doc or doc.get("status") not in ("failed", "cancelled"):
            return False
        now = utcnow()
        doc.update(paid_after_cancel=True, late_transaction_id=transaction_id, late_paid_at=now, updated_at=now)
        return True

    def email_registered(self, email):
        return any(u.get("email") == email for u in self.collections["users"])

    def insert_user(self, doc, session=None):
        self._insert("users", doc)

    def insert_balance(self, doc, session=None):
        self._insert("balances", doc)

    def admin_ids(self):
        return [u["_id"] for u in self.collections["users"] if u.get("role") == ROLE_ADMIN]

    def taken_subdomains(self, base):
        pat = re.compile(taken_pattern(base))
        subs = (_get(s, "domain_settings.subdomain") or "" for s in self.collections["stores"])
        return {s for s in subs if pat.match(s)}

    def custom_domain_taken(self, domain):
        return any(_get(s, "domain_settings.custom_domain") == domain for s in self.collections["stores"])

    def insert_store(self, doc, session=None):
        self._insert("stores", doc)

    def find_store_by_owner(self, owner_id):
        for s in self.collections["stores"]:
            if s.get("owner_id") == owner_id:
                return copy.deepcopy(s)
        return None

    def find_store_by_subdomain(self, subdomain):
        for s in self.collections["stores"]:
            if _get(s, "domain_settings.subdomain") == subdomain and s.get("status") != "deleted":
                return copy.deepcopy(s)
        return None

    def find_store_by_custom_domain(self, domain):
        for s in self.collections["stores"]:
            if _get(s, "domain_settings.custom_domain") == domain and s.get("status") != "deleted":
                return copy.deepcopy(s)
        return None

    def insert_notification(self, doc):
        self._insert("notifications", doc)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def gateway():
    """Paystack stand-in: hosted checkout URL derived from the reference."""
    gw = MagicMock()
    gw.initiate_charge.side_effect = lambda **kw: {
        "payment_handle": kw["reference"],
        "hosted_payment_url": f"https://checkout.paystack.com/{kw['reference'].lower()}",
        "access_code": f"ac_{kw['reference'][-6:].lower()}",
    }
    gw.verify.return_value = (False, {}, "Payment processor not configured.")
    gw.verify_signature.return_value = False
    return gw


@pytest.fixture
def registration_form():
    return {
        "email": "a@b.com",
        "password": "s3cret-pass",
        "name": "Ama Mensah",
        "business_name": "Acme",
    }


@pytest.fixture
def start_registration(storage, gateway, registration_form):
    """Returns a callable that initiates a registration and gives back the payment id."""
    from payments import initiate_registration

    def _start(**overrides):
        form = {**registration_form, **overrides}
        return initiate_registration(storage, gateway, **form)["payment_id"]

    return _start


@pytest.fixture
def app(storage, gateway):
    from app import create_app

    flask_app = create_app(storage=storage, gateway=gateway, TESTING=True, NOTIFY_IN_BACKGROUND=False)
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def fee():
    return config.REGISTRATION_FEE_PESEWAS
