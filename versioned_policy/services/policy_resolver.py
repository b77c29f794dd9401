"""
Policy resolution over a VersionStore of kind "policy".

- resolve_current(scope_key, domain) -> ResolvedPolicy
- resolve_as_of(scope_key, domain, timestamp) -> ResolvedPolicy
- ensure_current(policy): raise StalePolicyError unless ``policy`` is still current
- list_current(scope_key) -> all current policies of a tenant

A missing policy is a configuration error (PolicyNotConfiguredError) and is never
replaced by a preset.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from versioned_policy.core.clock import ensure_utc
from versioned_policy.core.contracts import VersionStore
from versioned_policy.core.errors import NotFoundError, PolicyNotConfiguredError, StalePolicyError
from versioned_policy.core.logging import get_logger
from versioned_policy.models.record import VersionedRecord
from versioned_policy.schemas.policies import PolicyDocument, PolicyDomain, parse_policy_document

__all__ = ["POLICY_KIND", "ResolvedPolicy", "PolicyResolver"]

POLICY_KIND = "policy"

log = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedPolicy:
    """A policy version together with its typed document."""

    domain: PolicyDomain
    record: VersionedRecord
    document: PolicyDocument

    @property
    def scope_key(self) -> str:
        return self.record.scope_key

    @property
    def version(self) -> int:
        return self.record.version

    @property
    def is_current(self) -> bool:
        return self.record.is_current

    @classmethod
    def from_record(cls, record: VersionedRecord) -> "ResolvedPolicy":
        domain = PolicyDomain(record.business_key)
        return cls(domain=domain, record=record, document=parse_policy_document(domain, record.payload))


class PolicyResolver:
    def __init__(self, store: VersionStore) -> None:
        if store.kind != POLICY_KIND:
            raise ValueError(f"PolicyResolver needs a store of kind {POLICY_KIND!r}, got {store.kind!r}")
        self._store = store

    def resolve_current(self, scope_key: str, domain: PolicyDomain) -> ResolvedPolicy:
        domain = PolicyDomain(domain)
        try:
            record = self._store.find_current(scope_key, domain.value)
        except NotFoundError as exc:
            log.warning("policy not configured", extra={"scope_key": scope_key, "domain": domain.value})
            raise PolicyNotConfiguredError(scope_key, domain.value) from exc
        policy = ResolvedPolicy.from_record(record)
        log.debug(
            "policy resolved",
            extra={"scope_key": scope_key, "domain": domain.value, "policy_version": policy.version},
        )
        return policy

    def resolve_as_of(self, scope_key: str, domain: PolicyDomain, timestamp: datetime) -> ResolvedPolicy:
        """The policy version that governed ``scope_key`` at ``timestamp``."""
        domain = PolicyDomain(domain)
        instant = ensure_utc(timestamp)
        try:
            record = self._store.find_as_of(scope_key, domain.value, instant)
        except NotFoundError as exc:
            raise PolicyNotConfiguredError(scope_key, domain.value, as_of=instant.isoformat()) from exc
        return ResolvedPolicy.from_record(record)

    def ensure_current(self, policy: ResolvedPolicy) -> ResolvedPolicy:
        """
        Re-read the current version and compare it with the held one.

        Policies can be amended between resolution and use; a held policy that is
        no longer current raises StalePolicyError.
        """
        try:
            current = self._store.find_current(policy.scope_key, policy.domain.value)
        except NotFoundError as exc:
            raise PolicyNotConfiguredError(policy.scope_key, policy.domain.value) from exc
        if not policy.is_current or current.version != policy.version:
            log.warning(
                "stale policy",
                extra={
                    "scope_key": policy.scope_key,
                    "domain": policy.domain.value,
                    "held_version": policy.version,
                    "current_version": current.version,
                },
            )
            raise StalePolicyError(policy.scope_key, policy.domain.value, policy.version, current.version)
        return policy

    def list_current(self, scope_key: str) -> Sequence[ResolvedPolicy]:
        return tuple(ResolvedPolicy.from_record(r) for r in self._store.list_current(scope_key))
