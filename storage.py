# storage.py
"""
MongoDB persistence for onboarding.

Unique indexes are the only concurrency control: email, subdomain, custom
domain, store owner and payment id. Payment status changes are conditional
updates guarded on ``status == "pending"``, so a payment leaves the pending
state exactly once no matter how many callbacks race for it.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, TypeVar

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.database import Database

from jlog import jlog
from models import ROLE_ADMIN, STATUS_CANCELLED, STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, utcnow
from subdomain import taken_pattern

T = TypeVar("T")

# Every settled payment drops its staged plaintext password.
_SCRUB = {"metadata.password": ""}


class MongoStorage:
    def __init__(self, client: MongoClient, database: Database):
        self.client = client
        self.db = database
        self.payments_col = database["payments"]
        self.users_col = database["users"]
        self.balances_col = database["balances"]
        self.stores_col = database["stores"]
        self.notifications_col = database["notifications"]

    # -----------------------------------------------------------------
    # Indexes (run from the CLI, never at import time)
    # -----------------------------------------------------------------
    def ensure_indexes(self) -> None:
        self.users_col.create_index([("email", ASCENDING)], unique=True, name="uniq_email")
        self.users_col.create_index([("role", ASCENDING)], name="role")
        self.balances_col.create_index([("user_id", ASCENDING)], unique=True, name="uniq_balance_user")
        self.stores_col.create_index(
            [("domain_settings.subdomain", ASCENDING)], unique=True, name="uniq_subdomain"
        )
        self.stores_col.create_index(
            [("domain_settings.custom_domain", ASCENDING)],
            unique=True,
            partialFilterExpression={"domain_settings.custom_domain": {"$type": "string"}},
            name="uniq_custom_domain",
        )
        self.stores_col.create_index([("owner_id", ASCENDING)], unique=True, name="uniq_store_owner")
        self.payments_col.create_index([("payment_id", ASCENDING)], unique=True, name="uniq_payment_id")
        self.payments_col.create_index(
            [("status", ASCENDING), ("expires_at", ASCENDING)], name="status_expires"
        )
        self.notifications_col.create_index(
            [("user_id", ASCENDING), ("created_at", DESCENDING)], name="user_recent"
        )
        jlog("indexes_ensured", db=self.db.name)

    # -----------------------------------------------------------------
    # Transactions
    # -----------------------------------------------------------------
    def run_transaction(self, callback: Callable[[Optional[ClientSession]], T]) -> T:
        """
        Run ``callback(session)`` inside one multi-document transaction.
        Transient errors are retried by pymongo; anything else aborts the
        transaction and propagates.
        """
        with self.client.start_session() as session:
            return session.with_transaction(callback)

    # -----------------------------------------------------------------
    # Payments
    # -----------------------------------------------------------------
    def insert_payment(self, doc: Dict[str, Any]) -> None:
        self.payments_col.insert_one(doc)

    def find_payment(self, payment_id: str, session: Optional[ClientSession] = None) -> Optional[Dict[str, Any]]:
        return self.payments_col.find_one({"payment_id": payment_id}, session=session)

    def claim_payment(
        self,
        payment_id: str,
        transaction_id: str,
        user_id: ObjectId,
        session: Optional[ClientSession] = None,
    ) -> bool:
        now = utcnow()
        res = self.payments_col.update_one(
            {"payment_id": payment_id, "status": STATUS_PENDING},
            {
                "$set": {
                    "status": STATUS_COMPLETED,
                    "transaction_id": transaction_id,
                    "user_id": user_id,
                    "completed_at": now,
                    "updated_at": now,
                },
                "$unset": _SCRUB,
            },
            session=session,
        )
        return res.modified_count == 1

    def settle_payment(self, payment_id: str, status: str, reason: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """pending -> failed|cancelled. Returns the updated doc, or None if it was not pending."""
        now = utcnow()
        return self.payments_col.find_one_and_update(
            {"payment_id": payment_id, "status": STATUS_PENDING},
            {
                "$set": {"status": status, "settle_reason": reason, "settled_at": now, "updated_at": now},
                "$unset": _SCRUB,
            },
            return_document=ReturnDocument.AFTER,
        )

    def find_expired_pending(self, now: datetime, limit: int = 500) -> List[Dict[str, Any]]:
        """Pending payments past ``expires_at``, oldest first, without the staged password."""
        cur = self.payments_col.find(
            {"status": STATUS_PENDING, "expires_at": {"$ne": None, "$lt": now}},
            {"metadata.password": 0},
        ).sort("expires_at", ASCENDING).limit(limit)
        return list(cur)

    def flag_late_payment(self, payment_id: str, transaction_id: str) -> bool:
        """Mark a failed/cancelled payment that Paystack later reported as paid."""
        now = utcnow()
        res = self.payments_col.update_one(
            {"payment_id": payment_id, "status": {"$in": [STATUS_FAILED, STATUS_CANCELLED]}},
            {
                "$set": {
                    "paid_after_cancel": True,
                    "late_transaction_id": transaction_id,
                    "late_paid_at": now,
                    "updated_at": now,
                }
            },
        )
        return res.matched_count == 1

    # -----------------------------------------------------------------
    # Users / balances
    # -----------------------------------------------------------------
    def email_registered(self, email: str) -> bool:
        return self.users_col.find_one({"email": email}, {"_id": 1}) is not None

    def insert_user(self, doc: Dict[str, Any], session: Optional[ClientSession] = None) -> None:
        self.users_col.insert_one(doc, session=session)

    def insert_balance(self, doc: Dict[str, Any], session: Optional[ClientSession] = None) -> None:
        self.balances_col.insert_one(doc, session=session)

    def admin_ids(self) -> List[ObjectId]:
        return [u["_id"] for u in self.users_col.find({"role": ROLE_ADMIN}, {"_id": 1})]

    # -----------------------------------------------------------------
    # Stores
    # -----------------------------------------------------------------
    def taken_subdomains(self, base: str) -> Set[str]:
        cursor = self.stores_col.find(
            {"domain_settings.subdomain": {"$regex": taken_pattern(base)}},
            {"domain_settings.subdomain": 1},
        )
        return {((d.get("domain_settings") or {}).get("subdomain") or "") for d in cursor}

    def custom_domain_taken(self, domain: str) -> bool:
        return self.stores_col.find_one({"domain_settings.custom_domain": domain}, {"_id": 1}) is not None

    def insert_store(self, doc: Dict[str, Any], session: Optional[ClientSession] = None) -> None:
        self.stores_col.insert_one(doc, session=session)

    def find_store_by_owner(self, owner_id: ObjectId) -> Optional[Dict[str, Any]]:
        return self.stores_col.find_one({"owner_id": owner_id})

    def find_store_by_subdomain(self, subdomain: str) -> Optional[Dict[str, Any]]:
        return self.stores_col.find_one({"domain_settings.subdomain": subdomain, "status": {"$ne": "deleted"}})

    def find_store_by_custom_domain(self, domain: str) -> Optional[Dict[str, Any]]:
        return self.stores_col.find_one({"domain_settings.custom_domain": domain, "status": {"$ne": "deleted"}})

    # -----------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------
    def insert_notification(self, doc: Dict[str, Any]) -> None:
        self.notifications_col.insert_one(doc)
