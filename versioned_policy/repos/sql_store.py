"""
SQLAlchemy-based VersionStore.

Every operation runs in its own session and transaction. ``supersede`` is one
transaction that reads the open row, closes it with a guarded UPDATE
(``WHERE id = ? AND is_current AND version = ?``) and inserts the successor; a
guarded UPDATE that touches no row means another writer won, and the whole
transaction rolls back with ConflictError. The partial unique index on open rows
backs this up at the engine level.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from versioned_policy.core.clock import Clock, ensure_utc, utc_now
from versioned_policy.core.contracts import Mutator
from versioned_policy.core.errors import ConflictError, NotFoundError, PersistenceError
from versioned_policy.core.logging import get_logger
from versioned_policy.models.record import VersionedRecord
from versioned_policy.models.versioned_row import VersionedRow
from versioned_policy.repos.common import (
    apply_mutator,
    first_version,
    new_id,
    require_key,
    successor_of,
    transition_instant,
)

__all__ = ["SqlAlchemyVersionStore"]

log = get_logger(__name__)


def _to_row(kind: str, record: VersionedRecord) -> VersionedRow:
    return VersionedRow(
        id=record.id,
        kind=kind,
        scope_key=record.scope_key,
        business_key=record.business_key,
        version=record.version,
        valid_from=record.valid_from,
        valid_to=record.valid_to,
        is_current=record.is_current,
        payload=record.payload,
        created_by=record.created_by,
        created_at=record.created_at,
        reason=record.reason,
        lineage_created_by=record.lineage_created_by,
        lineage_created_at=record.lineage_created_at,
    )


class SqlAlchemyVersionStore:
    """
    Concrete store over the shared ``versioned_record`` table, partitioned by ``kind``.
    """

    def __init__(self, session_factory: sessionmaker[Session], kind: str, *, clock: Clock = utc_now) -> None:
        if not isinstance(session_factory, sessionmaker):
            raise TypeError("session_factory must be a sqlalchemy.orm.sessionmaker")
        self.kind = require_key("kind", kind)
        self._session_factory = session_factory
        self._clock = clock

    # -------------------------------
    # Transaction plumbing
    # -------------------------------

    @contextmanager
    def _transaction(self, operation: str, scope_key: str, business_key: Optional[str]) -> Iterator[Session]:
        """
        One session, one transaction. Commits on success, rolls back on any error.

        Uniqueness violations become ConflictError; other driver errors become
        PersistenceError. Store errors raised inside pass through unchanged.
        """
        context = {"kind": self.kind, "operation": operation, "scope_key": scope_key, "business_key": business_key}
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except IntegrityError as exc:
            log.warning("uniqueness violation", extra=context)
            raise ConflictError(
                f"{self.kind} {business_key!r} was changed concurrently in scope {scope_key!r}. Refresh and try again.",
                details={"scope_key": scope_key, "business_key": business_key},
            ) from exc
        except SQLAlchemyError as exc:
            log.error("storage failure", extra=context, exc_info=True)
            raise PersistenceError(f"{operation} failed for {self.kind}", details=context) from exc
        finally:
            session.close()

    def _lineage_filter(self, scope_key: str, business_key: str):
        return (
            VersionedRow.kind == self.kind,
            VersionedRow.scope_key == scope_key,
            VersionedRow.business_key == business_key,
        )

    # -------------------------------
    # Writes
    # -------------------------------

    def create(
        self,
        scope_key: str,
        payload: Dict[str, Any],
        created_by: str,
        *,
        business_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> VersionedRecord:
        scope_key = require_key("scope_key", scope_key)
        created_by = require_key("created_by", created_by)
        key = require_key("business_key", business_key) if business_key is not None else new_id()
        if not isinstance(payload, dict):
            raise TypeError("payload must be a dict")

        with self._transaction("create", scope_key, key) as session:
            existing = session.execute(
                select(VersionedRow.is_current)
                .where(*self._lineage_filter(scope_key, key))
                .order_by(VersionedRow.version.desc())
                .limit(1)
            ).scalar()
            if existing is not None:
                state = "a current version" if existing else "a lineage"
                raise ConflictError(
                    f"{self.kind} {key!r} already has {state} in scope {scope_key!r}",
                    details={"scope_key": scope_key, "business_key": key},
                )

            record = first_version(
                scope_key=scope_key,
                business_key=key,
                payload=payload,
                created_by=created_by,
                now=ensure_utc(self._clock()),
                reason=reason,
            )
            session.add(_to_row(self.kind, record))
            session.flush()

        log.info("lineage created", extra={"kind": self.kind, "scope_key": scope_key, "business_key": key})
        return record

    def supersede(
        self,
        scope_key: str,
        business_key: str,
        mutator: Mutator,
        updated_by: str,
        reason: Optional[str] = None,
        *,
        expected_version: Optional[int] = None,
    ) -> VersionedRecord:
        scope_key = require_key("scope_key", scope_key)
        business_key = require_key("business_key", business_key)
        updated_by = require_key("updated_by", updated_by)

        with self._transaction("supersede", scope_key, business_key) as session:
            row = session.execute(
                select(VersionedRow).where(
                    *self._lineage_filter(scope_key, business_key),
                    VersionedRow.is_current.is_(True),
                )
            ).scalars().first()
            if row is None:
                raise NotFoundError.for_key(self.kind, scope_key, business_key)

            current = row.to_record()
            if expected_version is not None and current.version != expected_version:
                log.warning(
                    "supersede lost race",
                    extra={
                        "kind": self.kind,
                        "scope_key": scope_key,
                        "business_key": business_key,
                        "expected_version": expected_version,
                        "current_version": current.version,
                    },
                )
                raise ConflictError.lost_race(scope_key, business_key, expected_version, current.version)

            new_payload = apply_mutator(mutator, current.payload)
            now = transition_instant(ensure_utc(self._clock()), current)

            closed = session.execute(
                update(VersionedRow)
                .where(
                    VersionedRow.id == current.id,
                    VersionedRow.is_current.is_(True),
                    VersionedRow.version == current.version,
                )
                .values(is_current=False, valid_to=now)
                .execution_options(synchronize_session=False)
            )
            if closed.rowcount != 1:
                log.warning(
                    "supersede lost race",
                    extra={"kind": self.kind, "scope_key": scope_key, "business_key": business_key},
                )
                raise ConflictError.lost_race(scope_key, business_key, current.version, None)

            successor = successor_of(current, payload=new_payload, updated_by=updated_by, now=now, reason=reason)
            session.add(_to_row(self.kind, successor))
            session.flush()

        log.info(
            "version superseded",
            extra={"kind": self.kind, "scope_key": scope_key, "business_key": business_key, "version": successor.version},
        )
        return successor

    # -------------------------------
    # Reads
    # -------------------------------

    def find_current(self, scope_key: str, business_key: str) -> VersionedRecord:
        with self._transaction("find_current", scope_key, business_key) as session:
            row = session.execute(
                select(VersionedRow).where(
                    *self._lineage_filter(scope_key, business_key),
                    VersionedRow.is_current.is_(True),
                )
            ).scalars().first()
            record = row.to_record() if row is not None else None
        if record is None:
            raise NotFoundError.for_key(self.kind, scope_key, business_key)
        return record

    def find_lineage(self, scope_key: str, business_key: str) -> Sequence[VersionedRecord]:
        with self._transaction("find_lineage", scope_key, business_key) as session:
            rows = session.execute(
                select(VersionedRow)
                .where(*self._lineage_filter(scope_key, business_key))
                .order_by(VersionedRow.version.asc())
            ).scalars().all()
            records = tuple(r.to_record() for r in rows)
        if not records:
            raise NotFoundError.for_key(self.kind, scope_key, business_key, what="lineage")
        return records

    def find_as_of(self, scope_key: str, business_key: str, timestamp: datetime) -> VersionedRecord:
        instant = ensure_utc(timestamp)
        with self._transaction("find_as_of", scope_key, business_key) as session:
            row = session.execute(
                select(VersionedRow).where(
                    *self._lineage_filter(scope_key, business_key),
                    VersionedRow.valid_from <= instant,
                    or_(VersionedRow.valid_to.is_(None), VersionedRow.valid_to > instant),
                )
                .order_by(VersionedRow.version.desc())
                .limit(1)
            ).scalars().first()
            record = row.to_record() if row is not None else None
        if record is None:
            raise NotFoundError.for_key(
                self.kind, scope_key, business_key, what=f"version as of {instant.isoformat()}"
            )
        return record

    def list_current(self, scope_key: str) -> Sequence[VersionedRecord]:
        with self._transaction("list_current", scope_key, None) as session:
            rows = session.execute(
                select(VersionedRow)
                .where(
                    VersionedRow.kind == self.kind,
                    VersionedRow.scope_key == scope_key,
                    VersionedRow.is_current.is_(True),
                )
                .order_by(VersionedRow.lineage_created_at.asc(), VersionedRow.business_key.asc())
            ).scalars().all()
            return tuple(r.to_record() for r in rows)
