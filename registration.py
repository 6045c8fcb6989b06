# registration.py
"""
Turns a confirmed registration payment into a reseller account and store.

User, balance and store inserts plus the payment's pending -> completed
update run in one transaction. The payment update is guarded on
``status == "pending"``, so when the gateway delivers the same success twice
(or two callbacks race) only one transaction commits and every later call
returns the user created by the first.
"""
from __future__ import annotations

from typing import Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError
from werkzeug.security import generate_password_hash

import config
from errors import (
    DuplicateEmail,
    InvalidPaymentType,
    InvalidState,
    NotFound,
    PersistenceConflict,
    ValidationError,
    duplicate_key_fields,
)
from jlog import jlog
from models import (
    STATUS_COMPLETED,
    STATUS_PENDING,
    TYPE_RESELLER_REGISTRATION,
    RegistrationMetadata,
    metadata_from_doc,
    new_balance_doc,
    new_reseller_doc,
    utcnow,
)
from notifications import dispatch_registration_notifications
from stores import new_store_doc
from subdomain import insert_with_subdomain

CUSTOM_DOMAIN_FIELD = "domain_settings.custom_domain"


class _PaymentAlreadySettled(Exception):
    """The pending guard did not match inside the transaction."""


def _conflict_field(exc: DuplicateKeyError) -> str:
    kv = duplicate_key_fields(exc)
    if kv:
        return next(iter(kv))
    text = str(exc)
    for field in ("email", "custom_domain", "owner_id", "user_id"):
        if field in text:
            return field
    return ""


def _completed_user_id(storage, payment_id: str) -> ObjectId:
    payment = storage.find_payment(payment_id) or {}
    status = payment.get("status")
    if status == STATUS_COMPLETED and payment.get("user_id"):
        jlog("registration_replayed", payment_id=payment_id, user_id=payment["user_id"])
        return payment["user_id"]
    raise InvalidState(payment_id=payment_id, status=status)


def complete_registration(
    storage,
    payment_id: str,
    transaction_id: str,
    background_notify: bool = True,
) -> ObjectId:
    payment = storage.find_payment(payment_id)
    if not payment:
        raise NotFound(payment_id=payment_id)

    status = payment.get("status")
    if status == STATUS_COMPLETED:
        return _completed_user_id(storage, payment_id)
    if status != STATUS_PENDING:
        raise InvalidState(payment_id=payment_id, status=status)
    if not transaction_id:
        raise ValidationError("Transaction id is required.")

    try:
        meta = metadata_from_doc(payment.get("metadata"))
    except (KeyError, TypeError) as e:
        raise InvalidPaymentType(payment_id=payment_id) from e
    if payment.get("type") != TYPE_RESELLER_REGISTRATION or not isinstance(meta, RegistrationMetadata):
        raise InvalidPaymentType(payment_id=payment_id, type=payment.get("type"))
    if not meta.password:
        raise InvalidState("Registration data is no longer available.", payment_id=payment_id)

    password_hash = generate_password_hash(meta.password, method=config.PASSWORD_HASH_METHOD)
    user_id = ObjectId()
    custom_domain: Optional[str] = meta.domain

    def write(subdomain: str) -> None:
        def txn(session) -> None:
            now = utcnow()
            if not storage.claim_payment(payment_id, transaction_id, user_id, session=session):
                raise _PaymentAlreadySettled()
            storage.insert_user(new_reseller_doc(user_id, meta, password_hash, payment_id, now), session=session)
            storage.insert_balance(new_balance_doc(user_id, now), session=session)
            storage.insert_store(
                new_store_doc(user_id, meta.business_name, subdomain, payment_id, custom_domain, now),
                session=session,
            )

        storage.run_transaction(txn)

    while True:
        try:
            subdomain, _ = insert_with_subdomain(meta.business_name, write, storage.taken_subdomains)
            break
        except _PaymentAlreadySettled:
            return _completed_user_id(storage, payment_id)
        except DuplicateKeyError as e:
            field = _conflict_field(e)
            if custom_domain and "custom_domain" in field:
                # claimed by another store since initiation; keep the paid registration
                jlog("custom_domain_dropped", payment_id=payment_id, domain=custom_domain)
                custom_domain = None
                continue
            jlog("registration_conflict", payment_id=payment_id, field=field)
            if "email" in field:
                raise DuplicateEmail(payment_id=payment_id) from e
            raise PersistenceConflict(payment_id=payment_id, field=field) from e

    jlog(
        "registration_completed",
        payment_id=payment_id,
        transaction_id=transaction_id,
        user_id=user_id,
        subdomain=subdomain,
        custom_domain=custom_domain,
    )

    try:
        dispatch_registration_notifications(storage, user_id, meta, payment_id, background=background_notify)
    except Exception as e:
        jlog("notify_failed", target="dispatch", payment_id=payment_id, error=str(e))

    return user_id
