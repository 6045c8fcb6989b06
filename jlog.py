# jlog.py - tiny JSON logger
from __future__ import annotations

import json


def jlog(event: str, **kv):
    rec = {"evt": event, **kv}
    try:
        print(json.dumps(rec, ensure_ascii=False, separators=(",", ":"), default=str), flush=True)
    except Exception:
        print(f"[LOG_FALLBACK] {event} {kv}", flush=True)
