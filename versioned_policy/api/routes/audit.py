"""
Audit API routes (read-only).

Endpoints:
- GET /api/audit/{scope_key}/policies                           -> current policies of a tenant
- GET /api/audit/{scope_key}/policies/{domain}/history          -> every version of one policy
- GET /api/audit/{scope_key}/policies/{domain}/as-of?at=...     -> policy in force at a timestamp
- GET /api/audit/{scope_key}/entities/{kind}/{business_key}     -> lineage of one entity
- GET /api/audit/{scope_key}/entities/{kind}                    -> current entities grouped by policy version

Store errors (not found, policy not configured) are mapped by the registered
exception handlers.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Path, Query

from versioned_policy.core.deps import StoreFactory, get_policy_resolver, get_policy_store, get_store_factory
from versioned_policy.core.contracts import VersionStore
from versioned_policy.schemas.audit import (
    CurrentPoliciesOut,
    GovernedEntitiesOut,
    LineageOut,
    PolicySummary,
    PolicyVersionGroup,
    VersionOut,
)
from versioned_policy.schemas.entities import EntityKind
from versioned_policy.schemas.policies import PolicyDomain
from versioned_policy.services.audit import group_by_policy_version
from versioned_policy.services.policy_resolver import PolicyResolver, ResolvedPolicy

router = APIRouter(prefix="/api/audit", tags=["audit"])


def _to_summary(policy: ResolvedPolicy) -> PolicySummary:
    return PolicySummary(
        domain=policy.domain.value,
        version=policy.version,
        valid_from=policy.record.valid_from,
        created_by=policy.record.created_by,
        reason=policy.record.reason,
        document=policy.record.payload,
    )


@router.get("/{scope_key}/policies", response_model=CurrentPoliciesOut)
def list_current_policies(
    scope_key: str = Path(..., min_length=1),
    resolver: PolicyResolver = Depends(get_policy_resolver),
) -> CurrentPoliciesOut:
    items = [_to_summary(p) for p in resolver.list_current(scope_key)]
    return CurrentPoliciesOut(scope_key=scope_key, items=items, total=len(items))


@router.get("/{scope_key}/policies/{domain}/history", response_model=LineageOut)
def policy_history(
    scope_key: str = Path(..., min_length=1),
    domain: PolicyDomain = Path(...),
    store: VersionStore = Depends(get_policy_store),
) -> LineageOut:
    lineage = store.find_lineage(scope_key, domain.value)
    return LineageOut(
        scope_key=scope_key,
        business_key=domain.value,
        versions=[VersionOut.from_record(r) for r in lineage],
    )


@router.get("/{scope_key}/policies/{domain}/as-of", response_model=PolicySummary)
def policy_as_of(
    scope_key: str = Path(..., min_length=1),
    domain: PolicyDomain = Path(...),
    at: datetime = Query(..., description="ISO-8601 timestamp; naive values are read as UTC"),
    resolver: PolicyResolver = Depends(get_policy_resolver),
) -> PolicySummary:
    return _to_summary(resolver.resolve_as_of(scope_key, domain, at))


@router.get("/{scope_key}/entities/{kind}/{business_key}", response_model=LineageOut)
def entity_lineage(
    scope_key: str = Path(..., min_length=1),
    kind: EntityKind = Path(...),
    business_key: str = Path(..., min_length=1),
    stores: StoreFactory = Depends(get_store_factory),
) -> LineageOut:
    lineage = stores(kind.value).find_lineage(scope_key, business_key)
    return LineageOut(
        scope_key=scope_key,
        business_key=business_key,
        versions=[VersionOut.from_record(r) for r in lineage],
    )


@router.get("/{scope_key}/entities/{kind}", response_model=GovernedEntitiesOut)
def entities_by_policy_version(
    scope_key: str = Path(..., min_length=1),
    kind: EntityKind = Path(...),
    stores: StoreFactory = Depends(get_store_factory),
) -> GovernedEntitiesOut:
    grouped = group_by_policy_version(stores(kind.value).list_current(scope_key))
    return GovernedEntitiesOut(
        scope_key=scope_key,
        kind=kind.value,
        groups=[
            PolicyVersionGroup(policy_version=version, business_keys=[r.business_key for r in records])
            for version, records in grouped.items()
        ],
    )
