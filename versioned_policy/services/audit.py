"""
Audit views over version lineages.

- policy_version_history(store, scope_key, domain): every version of a policy
- group_by_policy_version(records): records bucketed by the policy version stamped on them
- entities_governed_by(store, scope_key, policy_version): current entities decided under that version
- governing_policy(resolver, domain, record): the policy in force when ``record`` was written
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from versioned_policy.core.contracts import VersionStore
from versioned_policy.models.record import VersionedRecord
from versioned_policy.schemas.policies import PolicyDomain
from versioned_policy.services.policy_resolver import POLICY_KIND, PolicyResolver, ResolvedPolicy

__all__ = [
    "PolicyVersionEntry",
    "policy_version_history",
    "group_by_policy_version",
    "entities_governed_by",
    "governing_policy",
]


@dataclass(frozen=True)
class PolicyVersionEntry:
    version: int
    valid_from: datetime
    valid_to: Optional[datetime]
    is_current: bool
    created_by: str
    reason: Optional[str]
    document: Dict[str, Any]


def policy_version_history(store: VersionStore, scope_key: str, domain: PolicyDomain) -> Tuple[PolicyVersionEntry, ...]:
    if store.kind != POLICY_KIND:
        raise ValueError(f"expected a store of kind {POLICY_KIND!r}, got {store.kind!r}")
    lineage = store.find_lineage(scope_key, PolicyDomain(domain).value)
    return tuple(
        PolicyVersionEntry(
            version=r.version,
            valid_from=r.valid_from,
            valid_to=r.valid_to,
            is_current=r.is_current,
            created_by=r.created_by,
            reason=r.reason,
            document=r.payload,
        )
        for r in lineage
    )


def group_by_policy_version(
    records: Iterable[VersionedRecord], *, field: str = "policy_version"
) -> Dict[Optional[int], List[VersionedRecord]]:
    """
    Bucket records by the policy version stamped in ``field``.

    Keys are ordered ascending; records with no stamp go under None, last.
    """
    buckets: Dict[Optional[int], List[VersionedRecord]] = {}
    for record in records:
        buckets.setdefault(record.payload.get(field), []).append(record)
    ordered = sorted((k for k in buckets if k is not None))
    result = {k: buckets[k] for k in ordered}
    if None in buckets:
        result[None] = buckets[None]
    return result


def entities_governed_by(
    store: VersionStore, scope_key: str, policy_version: int, *, field: str = "policy_version"
) -> Sequence[VersionedRecord]:
    return tuple(r for r in store.list_current(scope_key) if r.payload.get(field) == policy_version)


def governing_policy(resolver: PolicyResolver, domain: PolicyDomain, record: VersionedRecord) -> ResolvedPolicy:
    """
    The policy version in force at ``record.valid_from``.

    Normally equal to the version stamped on the record; a difference means the
    policy changed between the decision and the write.
    """
    return resolver.resolve_as_of(record.scope_key, domain, record.valid_from)
