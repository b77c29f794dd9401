"""
In-memory VersionStore backed by an append-only arena.

Rows live in one list (the arena); a dict maps (scope_key, business_key) to the
arena positions of that lineage in version order. Every store instance owns its
arena and lock, so independent instances never observe each other.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from versioned_policy.core.clock import Clock, ensure_utc, utc_now
from versioned_policy.core.contracts import Mutator
from versioned_policy.core.errors import ConflictError, NotFoundError
from versioned_policy.core.logging import get_logger
from versioned_policy.models.record import VersionedRecord
from versioned_policy.repos.common import (
    apply_mutator,
    first_version,
    new_id,
    require_key,
    successor_of,
    transition_instant,
)

__all__ = ["InMemoryVersionStore"]

log = get_logger(__name__)

_Key = Tuple[str, str]


class InMemoryVersionStore:
    """
    Arena-backed store for tests and single-process tools.

    The instance lock makes each operation atomic, which stands in for the
    transaction boundary of the relational store; optimistic version checks
    behave exactly as they do there.
    """

    def __init__(self, kind: str = "entity", *, clock: Clock = utc_now) -> None:
        self.kind = require_key("kind", kind)
        self._clock = clock
        self._arena: List[VersionedRecord] = []
        self._index: Dict[_Key, List[int]] = {}
        self._lock = threading.Lock()

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

        with self._lock:
            positions = self._index.get((scope_key, key))
            if positions:
                if self._arena[positions[-1]].is_current:
                    raise ConflictError(
                        f"{self.kind} {key!r} already has a current version in scope {scope_key!r}",
                        details={"scope_key": scope_key, "business_key": key},
                    )
                # A lineage never restarts at version 1
                raise ConflictError(
                    f"{self.kind} {key!r} already exists in scope {scope_key!r}",
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
            self._arena.append(record)
            self._index[(scope_key, key)] = [len(self._arena) - 1]

        log.info("lineage created", extra={"kind": self.kind, "scope_key": scope_key, "business_key": key})
        return record.detached()

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

        with self._lock:
            positions = self._index.get((scope_key, business_key))
            current_pos = positions[-1] if positions else None
            current = self._arena[current_pos] if current_pos is not None else None
            if current is None or not current.is_current:
                raise NotFoundError.for_key(self.kind, scope_key, business_key)

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
            successor = successor_of(current, payload=new_payload, updated_by=updated_by, now=now, reason=reason)

            self._arena[current_pos] = current.closed_at(now)
            self._arena.append(successor)
            positions.append(len(self._arena) - 1)

        log.info(
            "version superseded",
            extra={"kind": self.kind, "scope_key": scope_key, "business_key": business_key, "version": successor.version},
        )
        return successor.detached()

    # -------------------------------
    # Reads
    # -------------------------------

    def _lineage(self, scope_key: str, business_key: str) -> List[VersionedRecord]:
        positions = self._index.get((scope_key, business_key), [])
        return [self._arena[p] for p in positions]

    def find_current(self, scope_key: str, business_key: str) -> VersionedRecord:
        with self._lock:
            lineage = self._lineage(scope_key, business_key)
        if not lineage or not lineage[-1].is_current:
            raise NotFoundError.for_key(self.kind, scope_key, business_key)
        return lineage[-1].detached()

    def find_lineage(self, scope_key: str, business_key: str) -> Sequence[VersionedRecord]:
        with self._lock:
            lineage = self._lineage(scope_key, business_key)
        if not lineage:
            raise NotFoundError.for_key(self.kind, scope_key, business_key, what="lineage")
        return tuple(r.detached() for r in lineage)

    def find_as_of(self, scope_key: str, business_key: str, timestamp: datetime) -> VersionedRecord:
        instant = ensure_utc(timestamp)
        with self._lock:
            lineage = self._lineage(scope_key, business_key)
        for record in lineage:
            if record.contains(instant):
                return record.detached()
        raise NotFoundError.for_key(self.kind, scope_key, business_key, what=f"version as of {instant.isoformat()}")

    def list_current(self, scope_key: str) -> Sequence[VersionedRecord]:
        with self._lock:
            current = [
                self._arena[positions[-1]]
                for (scope, _key), positions in self._index.items()
                if scope == scope_key and self._arena[positions[-1]].is_current
            ]
        current.sort(key=lambda r: (r.lineage_created_at, r.business_key))
        return tuple(r.detached() for r in current)

    # -------------------------------
    # Introspection (tests / diagnostics)
    # -------------------------------

    def all_rows(self) -> Sequence[VersionedRecord]:
        with self._lock:
            return tuple(r.detached() for r in self._arena)
