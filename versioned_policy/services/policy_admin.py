"""
Administration of tenant policies: configure, amend, history.

Amendments are SCD2 supersedes of the (scope_key, domain) lineage. The merged
document is re-validated in full before the new version is written, and every
amendment must carry a reason.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from versioned_policy.core.contracts import VersionStore
from versioned_policy.core.errors import ValidationError
from versioned_policy.core.logging import get_logger
from versioned_policy.schemas.policies import PolicyDocument, PolicyDomain, document_class
from versioned_policy.services.policy_resolver import POLICY_KIND, ResolvedPolicy

__all__ = ["PolicyAdmin"]

log = get_logger(__name__)

_PRESETS = ("standard", "strict", "permissive")


def _first_error(exc: PydanticValidationError) -> ValidationError:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ())) or "document"
    return ValidationError(field, err.get("msg", "invalid value"))


class PolicyAdmin:
    def __init__(self, store: VersionStore) -> None:
        if store.kind != POLICY_KIND:
            raise ValueError(f"PolicyAdmin needs a store of kind {POLICY_KIND!r}, got {store.kind!r}")
        self._store = store

    def configure(
        self,
        scope_key: str,
        domain: PolicyDomain,
        document: PolicyDocument,
        created_by: str,
        reason: Optional[str] = None,
    ) -> ResolvedPolicy:
        """Create version 1 of a tenant's policy. ConflictError if one already exists."""
        domain = PolicyDomain(domain)
        expected = document_class(domain)
        if not isinstance(document, expected):
            raise TypeError(f"{domain.value} needs a {expected.__name__}, got {type(document).__name__}")

        record = self._store.create(
            scope_key, document.to_payload(), created_by, business_key=domain.value, reason=reason
        )
        log.info("policy configured", extra={"scope_key": scope_key, "domain": domain.value, "policy_version": 1})
        return ResolvedPolicy.from_record(record)

    def configure_preset(
        self, scope_key: str, domain: PolicyDomain, preset: str, created_by: str, reason: Optional[str] = None
    ) -> ResolvedPolicy:
        if preset not in _PRESETS:
            raise ValueError(f"unknown preset {preset!r}; expected one of {', '.join(_PRESETS)}")
        document = getattr(document_class(domain), preset)()
        return self.configure(scope_key, domain, document, created_by, reason=reason or f"{preset} preset")

    def amend(
        self,
        scope_key: str,
        domain: PolicyDomain,
        changes: Dict[str, Any],
        updated_by: str,
        reason: str,
        *,
        expected_version: Optional[int] = None,
    ) -> ResolvedPolicy:
        """
        Supersede the current policy with ``changes`` applied.

        Top-level keys in ``changes`` replace the stored values; nested objects
        (e.g. matching weights) are replaced whole.
        """
        domain = PolicyDomain(domain)
        if not reason or not reason.strip():
            raise ValidationError("reason", "policy changes must include a reason")
        doc_cls = document_class(domain)

        def merged(payload: Dict[str, Any]) -> Dict[str, Any]:
            return doc_cls.model_validate({**payload, **changes}).to_payload()

        try:
            record = self._store.supersede(
                scope_key, domain.value, merged, updated_by, reason, expected_version=expected_version
            )
        except PydanticValidationError as exc:
            raise _first_error(exc) from exc

        log.info(
            "policy amended",
            extra={
                "scope_key": scope_key,
                "domain": domain.value,
                "policy_version": record.version,
                "changed": sorted(changes),
            },
        )
        return ResolvedPolicy.from_record(record)

    def history(self, scope_key: str, domain: PolicyDomain) -> Sequence[ResolvedPolicy]:
        domain = PolicyDomain(domain)
        return tuple(ResolvedPolicy.from_record(r) for r in self._store.find_lineage(scope_key, domain.value))
