"""Idempotent claim storage.

``ClaimStore`` is the only shared mutable resource in the system. Writes go
through ``insert`` (first writer wins) or ``merge_update`` (atomic shallow
merge, optionally guarded by a status precondition); callers never
read-modify-write a record themselves.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import base64
import copy
import json
import threading

import structlog

from .errors import ConditionFailedError, InvalidCursorError
from .identity import isoformat, utc_now

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]


@dataclass
class Page:
    records: List[Record] = field(default_factory=list)
    next_cursor: Optional[str] = None


def encode_cursor(record: Record) -> str:
    payload = json.dumps([record.get("submitted_at") or "", record["identity"]])
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Tuple[str, str]:
    try:
        submitted_at, identity = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
    except (ValueError, TypeError, UnicodeError) as e:
        raise InvalidCursorError(cursor) from e
    if not isinstance(submitted_at, str) or not isinstance(identity, str):
        raise InvalidCursorError(cursor)
    return submitted_at, identity


def sort_key(record: Record) -> Tuple[str, str]:
    return (record.get("submitted_at") or "", record["identity"])


class ClaimStore(ABC):
    def __init__(self, page_size: int = 20, clock: Callable = utc_now):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.clock = clock

    @abstractmethod
    def insert(self, record: Record) -> bool:
        """Create the record; False when the identity is already stored."""

    @abstractmethod
    def get(self, identity: str) -> Optional[Record]:
        ...

    @abstractmethod
    def query_by_owner(self, owner_id: str, cursor: Optional[str] = None) -> Page:
        """Newest first by submission time, ``page_size`` records per page."""

    @abstractmethod
    def merge_update(
        self,
        identity: str,
        fields: Record,
        only_if_status: Optional[Iterable[str]] = None,
    ) -> Optional[Record]:
        """Shallow-merge ``fields`` and stamp ``updated_at``; None if missing.

        With ``only_if_status`` the merge happens only when the stored status
        is one of the given values, otherwise ``ConditionFailedError``.
        """

    @abstractmethod
    def delete(self, identity: str) -> bool:
        ...

    @abstractmethod
    def count(self) -> int:
        ...


class InMemoryClaimStore(ClaimStore):
    """Dict-backed store for tests and local runs; a single lock serialises writes."""

    def __init__(self, page_size: int = 20, clock: Callable = utc_now):
        super().__init__(page_size, clock)
        self._records: Dict[str, Record] = {}
        self._lock = threading.Lock()

    def insert(self, record: Record) -> bool:
        identity = record["identity"]
        with self._lock:
            if identity in self._records:
                logger.info("claim_insert_duplicate", identity=identity)
                return False
            self._records[identity] = copy.deepcopy(record)
        logger.info("claim_inserted", identity=identity)
        return True

    def get(self, identity: str) -> Optional[Record]:
        with self._lock:
            record = self._records.get(identity)
            return copy.deepcopy(record) if record is not None else None

    def query_by_owner(self, owner_id: str, cursor: Optional[str] = None) -> Page:
        after = decode_cursor(cursor) if cursor else None
        with self._lock:
            owned = [r for r in self._records.values() if r.get("owner_id") == owner_id]
            owned.sort(key=sort_key, reverse=True)
            if after is not None:
                owned = [r for r in owned if sort_key(r) < after]
            # copy while holding the lock so a concurrent merge is never half-seen
            page = copy.deepcopy(owned[: self.page_size])
        next_cursor = encode_cursor(page[-1]) if len(owned) > self.page_size else None
        return Page(records=page, next_cursor=next_cursor)

    def merge_update(
        self,
        identity: str,
        fields: Record,
        only_if_status: Optional[Iterable[str]] = None,
    ) -> Optional[Record]:
        with self._lock:
            current = self._records.get(identity)
            if current is None:
                return None
            if only_if_status is not None:
                allowed = tuple(only_if_status)
                if current.get("status") not in allowed:
                    raise ConditionFailedError(identity, current.get("status"), allowed)
            current.update(copy.deepcopy(fields))
            current["updated_at"] = isoformat(self.clock())
            updated = copy.deepcopy(current)
        logger.info("claim_updated", identity=identity, fields=sorted(fields))
        return updated

    def delete(self, identity: str) -> bool:
        with self._lock:
            return self._records.pop(identity, None) is not None

    def count(self) -> int:
        with self._lock:
            return len(self._records)
