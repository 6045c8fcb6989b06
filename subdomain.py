# subdomain.py
"""
Subdomain allocation for reseller stores.

The allocator is optimistic: it probes the stores collection for taken names
and proposes the first free candidate (``base``, ``base1``, ``base2``, ...),
but the unique index on ``domain_settings.subdomain`` has the final word.
``insert_with_subdomain`` retries the write with the next candidate whenever
the index rejects one, so two registrations racing for the same name both
succeed with different subdomains.
"""
from __future__ import annotations

import re
from typing import Callable, Iterable, Iterator, Optional, Set, Tuple, TypeVar

from pymongo.errors import DuplicateKeyError

import config
from errors import AllocationExhausted, duplicate_key_fields
from jlog import jlog

T = TypeVar("T")

SUBDOMAIN_FIELD = "domain_settings.subdomain"


def normalize_subdomain(seed: Optional[str], max_length: Optional[int] = None) -> str:
    """
    "Joe's Games!!" -> "joe-s-games"; "" / "!!!" -> fallback token.
    """
    limit = max_length or config.SUBDOMAIN_MAX_LENGTH
    s = (seed or "").lower().strip()
    s = re.sub(r"[^a-z0-9]+", "-", s).strip("-")
    s = s[:limit].strip("-")
    return s or config.SUBDOMAIN_FALLBACK


def candidate_subdomains(base: str, max_attempts: Optional[int] = None) -> Iterator[str]:
    attempts = max_attempts or config.SUBDOMAIN_MAX_ATTEMPTS
    yield base
    for n in range(1, attempts):
        yield f"{base}{n}"


def taken_pattern(base: str) -> str:
    """Regex matching the base token and every numbered variant of it."""
    return rf"^{re.escape(base)}\d*$"


def allocate_subdomain(
    seed: Optional[str],
    taken_lookup: Callable[[str], Iterable[str]],
    exclude: Iterable[str] = (),
    max_attempts: Optional[int] = None,
) -> str:
    """
    Pick the first free candidate for ``seed``.

    ``taken_lookup(base)`` returns the subdomains already in use that match
    ``taken_pattern(base)``. ``exclude`` holds candidates already rejected by
    the unique index during this allocation.
    """
    base = normalize_subdomain(seed)
    taken: Set[str] = set(taken_lookup(base) or ())
    taken.update(exclude)
    taken.update(config.RESERVED_SUBDOMAINS)
    for candidate in candidate_subdomains(base, max_attempts):
        if candidate not in taken:
            return candidate
    jlog("subdomain_exhausted", base=base, attempts=max_attempts or config.SUBDOMAIN_MAX_ATTEMPTS)
    raise AllocationExhausted(base=base)


def is_subdomain_conflict(exc: DuplicateKeyError) -> bool:
    kv = duplicate_key_fields(exc)
    if kv:
        return SUBDOMAIN_FIELD in kv
    return "subdomain" in str(exc)


def insert_with_subdomain(
    seed: Optional[str],
    write: Callable[[str], T],
    taken_lookup: Callable[[str], Iterable[str]],
    max_attempts: Optional[int] = None,
) -> Tuple[str, T]:
    """
    Allocate a subdomain and run ``write(subdomain)``; on a unique-index
    violation for the subdomain, allocate the next candidate and write again.
    Duplicate-key errors on any other field propagate unchanged.
    """
    attempts = max_attempts or config.SUBDOMAIN_MAX_ATTEMPTS
    rejected: Set[str] = set()
    for _ in range(attempts):
        subdomain = allocate_subdomain(seed, taken_lookup, exclude=rejected, max_attempts=attempts)
        try:
            return subdomain, write(subdomain)
        except DuplicateKeyError as e:
            if not is_subdomain_conflict(e):
                raise
            jlog("subdomain_conflict", subdomain=subdomain, retry=len(rejected) + 1)
            rejected.add(subdomain)
    jlog("subdomain_exhausted", seed_base=normalize_subdomain(seed), attempts=attempts)
    raise AllocationExhausted(base=normalize_subdomain(seed))
