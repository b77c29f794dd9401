"""
Store contract (Protocol) consumed by the services layer.

Both the in-memory arena store and the SQLAlchemy store satisfy it, and both are
run through the same contract tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, runtime_checkable, TYPE_CHECKING

if TYPE_CHECKING:
    from versioned_policy.models.record import VersionedRecord

__all__ = ["Mutator", "VersionStore"]

Mutator = Callable[[Dict[str, Any]], Dict[str, Any]]


@runtime_checkable
class VersionStore(Protocol):
    """
    SCD2 persistence for one entity kind.

    Lineages are keyed by (scope_key, business_key). Writes never update a
    payload in place: ``supersede`` closes the current row and appends version N+1.
    """

    kind: str

    def create(
        self,
        scope_key: str,
        payload: Dict[str, Any],
        created_by: str,
        *,
        business_key: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> "VersionedRecord":
        """Insert version 1 of a new lineage. ConflictError if the key already has a current row."""
        raise NotImplementedError()

    def supersede(
        self,
        scope_key: str,
        business_key: str,
        mutator: Mutator,
        updated_by: str,
        reason: Optional[str] = None,
        *,
        expected_version: Optional[int] = None,
    ) -> "VersionedRecord":
        """Atomically close the current row and insert its successor."""
        raise NotImplementedError()

    def find_current(self, scope_key: str, business_key: str) -> "VersionedRecord":
        """The open row of a lineage. NotFoundError when there is none."""
        raise NotImplementedError()

    def find_lineage(self, scope_key: str, business_key: str) -> Sequence["VersionedRecord"]:
        """All versions, ascending. NotFoundError for an unknown key."""
        raise NotImplementedError()

    def find_as_of(self, scope_key: str, business_key: str, timestamp: datetime) -> "VersionedRecord":
        """The version whose [valid_from, valid_to) contains ``timestamp``."""
        raise NotImplementedError()

    def list_current(self, scope_key: str) -> Sequence["VersionedRecord"]:
        """Current rows of every lineage in the scope."""
        raise NotImplementedError()
