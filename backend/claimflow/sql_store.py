"""SQLAlchemy-backed claim store.

Invariants:
    - identity is the primary key: a second INSERT for the same claim hits
      an IntegrityError, which ``insert`` reports as a duplicate
    - owner queries use keyset pagination on (submitted_at, identity)
    - merge_update is a compare-and-set on the row version, so a status
      precondition holds even where SELECT ... FOR UPDATE is a no-op (SQLite)
    - every other SQLAlchemy failure is re-raised as StoreError
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Iterator, Optional
import json

import structlog
from sqlalchemy import JSON, Integer, String, and_, create_engine, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import ConditionFailedError, StoreError
from .identity import isoformat, utc_now
from .store import ClaimStore, Page, Record, decode_cursor, encode_cursor

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


class ClaimRow(Base):
    __tablename__ = "claims"

    identity: Mapped[str] = mapped_column(String(32), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False, default="")
    submitted_at: Mapped[str] = mapped_column(String(40), index=True, nullable=False, default="")
    status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    # bumped by every merge_update; guards the compare-and-set
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return isoformat(value)
    return str(value)


def _dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default)


def _is_memory_sqlite(url: str) -> bool:
    if not url.startswith("sqlite"):
        return False
    path = url.split("://", 1)[-1]
    return path in ("", "/") or ":memory:" in path


class SqlClaimStore(ClaimStore):
    def __init__(self, url: str, page_size: int = 20, clock: Callable = utc_now, echo: bool = False):
        super().__init__(page_size, clock)
        kwargs: dict = {"echo": echo, "json_serializer": _dumps}
        if _is_memory_sqlite(url):
            # one shared connection, otherwise each checkout sees an empty database
            kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        else:
            kwargs["pool_pre_ping"] = True
        self.engine = create_engine(url, **kwargs)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (IntegrityError, ConditionFailedError):
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("store_operation_failed", operation=operation, error=str(e))
            raise StoreError(str(e), operation) from e
        finally:
            session.close()

    @staticmethod
    def _to_record(row: ClaimRow) -> Record:
        record = dict(row.payload)
        record["status"] = row.status
        if row.updated_at is not None:
            record["updated_at"] = row.updated_at
        return record

    def insert(self, record: Record) -> bool:
        identity = record["identity"]
        # round-trip through JSON so stored payloads never hold Python-only types
        payload = json.loads(_dumps(record))
        row = ClaimRow(
            identity=identity,
            owner_id=str(record.get("owner_id") or ""),
            submitted_at=record.get("submitted_at") or "",
            status=record.get("status"),
            payload=payload,
            updated_at=record.get("updated_at"),
            version=0,
        )
        try:
            with self.session("insert") as session:
                session.add(row)
        except IntegrityError:
            logger.info("claim_insert_duplicate", identity=identity)
            return False
        logger.info("claim_inserted", identity=identity)
        return True

    def get(self, identity: str) -> Optional[Record]:
        with self.session("get") as session:
            row = session.get(ClaimRow, identity)
            return self._to_record(row) if row is not None else None

    def query_by_owner(self, owner_id: str, cursor: Optional[str] = None) -> Page:
        stmt = select(ClaimRow).where(ClaimRow.owner_id == owner_id)
        if cursor:
            submitted_at, identity = decode_cursor(cursor)
            stmt = stmt.where(or_(
                ClaimRow.submitted_at < submitted_at,
                and_(ClaimRow.submitted_at == submitted_at, ClaimRow.identity < identity),
            ))
        stmt = stmt.order_by(ClaimRow.submitted_at.desc(), ClaimRow.identity.desc()).limit(self.page_size + 1)

        with self.session("query") as session:
            rows = session.scalars(stmt).all()
            records = [self._to_record(r) for r in rows]

        page = records[: self.page_size]
        next_cursor = encode_cursor(page[-1]) if len(records) > self.page_size else None
        return Page(records=page, next_cursor=next_cursor)

    def merge_update(
        self,
        identity: str,
        fields: Record,
        only_if_status: Optional[Iterable[str]] = None,
    ) -> Optional[Record]:
        allowed = tuple(only_if_status) if only_if_status is not None else None
        patch = json.loads(_dumps(fields))
        while True:
            with self.session("merge_update") as session:
                row = session.get(ClaimRow, identity)
                if row is None:
                    return None
                if allowed is not None and row.status not in allowed:
                    raise ConditionFailedError(identity, row.status, allowed)
                updated_at = isoformat(self.clock())
                payload = {**row.payload, **patch, "updated_at": updated_at}
                status = fields["status"] if "status" in fields else row.status
                # compare-and-set on version: a concurrent writer makes this match no row
                result = session.execute(
                    update(ClaimRow)
                    .where(ClaimRow.identity == identity, ClaimRow.version == row.version)
                    .values(payload=payload, status=status, updated_at=updated_at, version=row.version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    break
            logger.info("claim_update_conflict", identity=identity)

        logger.info("claim_updated", identity=identity, fields=sorted(fields))
        return {**payload, "status": status, "updated_at": updated_at}

    def delete(self, identity: str) -> bool:
        with self.session("delete") as session:
            row = session.get(ClaimRow, identity)
            if row is None:
                return False
            session.delete(row)
        return True

    def count(self) -> int:
        with self.session("count") as session:
            return session.scalar(select(func.count()).select_from(ClaimRow)) or 0
