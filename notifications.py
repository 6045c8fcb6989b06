# notifications.py - fire-and-forget notification sink
from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from bson import ObjectId

from jlog import jlog
from models import RegistrationMetadata, utcnow


def notify(
    storage,
    user_id: ObjectId,
    title: str,
    message: str,
    kind: str = "system",
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    storage.insert_notification({
        "user_id": user_id,
        "title": title,
        "message": message,
        "type": kind,
        "metadata": metadata or {},
        "read": False,
        "created_at": utcnow(),
    })


def _send_registration_notifications(storage, user_id: ObjectId, meta: RegistrationMetadata, payment_id: str) -> int:
    """Returns how many notifications failed."""
    failed = 0
    try:
        admin_ids = storage.admin_ids()
    except Exception as e:
        jlog("notify_failed", target="admins", payment_id=payment_id, error=str(e))
        admin_ids = []
        failed += 1

    for admin_id in admin_ids:
        try:
            notify(
                storage,
                admin_id,
                "New Reseller Registration",
                f"{meta.name} has registered as a reseller. Review pending.",
                metadata={
                    "reseller_id": user_id,
                    "reseller_name": meta.name,
                    "business_name": meta.business_name,
                    "role": "admin",
                },
            )
        except Exception as e:
            failed += 1
            jlog("notify_failed", target=str(admin_id), payment_id=payment_id, error=str(e))

    try:
        notify(
            storage,
            user_id,
            "Registration Successful",
            "Your reseller application has been submitted. We will review it shortly.",
            metadata={"role": "reseller"},
        )
    except Exception as e:
        failed += 1
        jlog("notify_failed", target=str(user_id), payment_id=payment_id, error=str(e))

    return failed


def dispatch_registration_notifications(
    storage,
    user_id: ObjectId,
    meta: RegistrationMetadata,
    payment_id: str,
    background: bool = True,
) -> Optional[threading.Thread]:
    """
    Tell every admin about the new reseller and confirm to the reseller.
    Never raises; failures are logged per recipient.
    """
    if not background:
        _send_registration_notifications(storage, user_id, meta, payment_id)
        return None
    t = threading.Thread(
        target=_send_registration_notifications,
        args=(storage, user_id, meta, payment_id),
        daemon=True,
    )
    t.start()
    return t
