"""Content-derived claim identity.

Identical submissions on the same UTC calendar day hash to the same id, so
the store's conditional insert deduplicates retries without an extra
idempotency key. The same content on another day is a new claim.
"""

from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional
import hashlib

PREFIX = "EXP-"
HASH_CHARS = 12


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime) -> str:
    # fixed precision keeps ISO strings sortable
    return to_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, str) and value:
        try:
            return to_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def canonical_amount(amount: Any) -> str:
    """45, 45.0 and Decimal("45.00") all render as "45"."""
    if isinstance(amount, bool) or amount is None:
        return str(amount)
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return str(amount)
    if not value.is_finite():
        return str(amount)
    text = format(value.normalize(), "f")
    return "0" if text in ("-0", "") else text


def day_bucket(submitted_at: datetime) -> str:
    return to_utc(submitted_at).strftime("%Y-%m-%d")


def claim_identity(claim: Mapping[str, Any], submitted_at: datetime) -> str:
    raw = "|".join([
        str(claim.get("owner_id", "")),
        canonical_amount(claim.get("amount")),
        str(claim.get("category", "")),
        str(claim.get("description", "")),
        day_bucket(submitted_at),
    ])
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return PREFIX + digest[:HASH_CHARS].upper()
