"""Helpers shared by the version store implementations."""

from __future__ import annotations

import copy
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from versioned_policy.core.contracts import Mutator
from versioned_policy.models.record import VersionedRecord


def require_key(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    return value.strip()


def new_id() -> str:
    return str(uuid.uuid4())


def apply_mutator(mutator: Mutator, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Run ``mutator`` on a private copy; the stored payload is never handed out."""
    result = mutator(copy.deepcopy(payload))
    if not isinstance(result, dict):
        raise TypeError(f"mutator must return a dict, got {type(result).__name__}")
    return result


def transition_instant(now: datetime, current: VersionedRecord) -> datetime:
    """Closing instant for ``current``; a lagging clock never produces a negative interval."""
    return now if now >= current.valid_from else current.valid_from


def first_version(
    *,
    scope_key: str,
    business_key: str,
    payload: Dict[str, Any],
    created_by: str,
    now: datetime,
    reason: Optional[str],
) -> VersionedRecord:
    return VersionedRecord(
        id=new_id(),
        scope_key=scope_key,
        business_key=business_key,
        version=1,
        valid_from=now,
        valid_to=None,
        is_current=True,
        payload=copy.deepcopy(payload),
        created_by=created_by,
        created_at=now,
        lineage_created_by=created_by,
        lineage_created_at=now,
        reason=reason,
    )


def successor_of(
    current: VersionedRecord,
    *,
    payload: Dict[str, Any],
    updated_by: str,
    now: datetime,
    reason: Optional[str],
) -> VersionedRecord:
    return VersionedRecord(
        id=new_id(),
        scope_key=current.scope_key,
        business_key=current.business_key,
        version=current.version + 1,
        valid_from=now,
        valid_to=None,
        is_current=True,
        payload=copy.deepcopy(payload),
        created_by=updated_by,
        created_at=now,
        lineage_created_by=current.lineage_created_by,
        lineage_created_at=current.lineage_created_at,
        reason=reason,
    )


__all__ = ["require_key", "new_id", "apply_mutator", "transition_instant", "first_version", "successor_of"]
