"""
VersionedRecord: the immutable temporal envelope returned by every store.

A record is one version row of a lineage identified by (scope_key, business_key).
``created_by``/``created_at`` describe this version; ``lineage_created_by``/
``lineage_created_at`` describe version 1 and are repeated on every later row.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

__all__ = ["VersionedRecord"]


@dataclass(frozen=True)
class VersionedRecord:
    id: str
    scope_key: str
    business_key: str
    version: int
    valid_from: datetime
    valid_to: Optional[datetime]
    is_current: bool
    payload: Dict[str, Any]
    created_by: str
    created_at: datetime
    lineage_created_by: str
    lineage_created_at: datetime
    reason: Optional[str] = None

    def contains(self, instant: datetime) -> bool:
        """True when ``instant`` falls inside [valid_from, valid_to)."""
        if instant < self.valid_from:
            return False
        return self.valid_to is None or instant < self.valid_to

    def closed_at(self, instant: datetime) -> "VersionedRecord":
        return replace(self, valid_to=instant, is_current=False, payload=copy.deepcopy(self.payload))

    def detached(self) -> "VersionedRecord":
        """Copy whose payload can be mutated without touching the stored row."""
        return replace(self, payload=copy.deepcopy(self.payload))

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)
