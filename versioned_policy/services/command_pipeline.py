"""
Command orchestration shared by every domain handler.

Mutation (execute):
    resolve_policy -> load_entity -> validate -> check_policy -> persist
Creation (execute_create):
    resolve_policy -> validate -> check_policy -> persist

Handlers receive a tagged result instead of an exception:
- CommandSucceeded(record, decision, policy_version, related)
- CommandFailed(error, step)

Store errors are returned with the step that produced them; anything else
(programming errors, malformed stored payloads) propagates. On ConflictError a
mutation is re-run from load_entity up to ``conflict_retries`` times, unless the
caller pinned ``expected_version``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple, Union

from versioned_policy.core.clock import Clock, ensure_utc, utc_now
from versioned_policy.core.contracts import VersionStore
from versioned_policy.core.errors import ConflictError, StoreError
from versioned_policy.core.logging import get_logger
from versioned_policy.models.record import VersionedRecord
from versioned_policy.schemas.policies import PolicyDocument, PolicyDomain
from versioned_policy.services.decisions import Decision, Rejected
from versioned_policy.services.policy_resolver import PolicyResolver, ResolvedPolicy

__all__ = [
    "STEP_RESOLVE_POLICY",
    "STEP_LOAD_ENTITY",
    "STEP_VALIDATE",
    "STEP_CHECK_POLICY",
    "STEP_PERSIST",
    "CommandSucceeded",
    "CommandFailed",
    "CommandResult",
    "CommandPipeline",
]

log = get_logger(__name__)

STEP_RESOLVE_POLICY = "resolve_policy"
STEP_LOAD_ENTITY = "load_entity"
STEP_VALIDATE = "validate"
STEP_CHECK_POLICY = "check_policy"
STEP_PERSIST = "persist"


@dataclass(frozen=True)
class CommandSucceeded:
    record: VersionedRecord
    decision: Decision
    policy_version: Optional[int] = None
    related: Tuple[VersionedRecord, ...] = ()
    ok = True

    @property
    def requires_approval(self) -> bool:
        return self.decision.requires_approval

    @property
    def approval_reasons(self) -> Tuple[str, ...]:
        return getattr(self.decision, "reasons", ())

    def unwrap(self) -> VersionedRecord:
        return self.record


@dataclass(frozen=True)
class CommandFailed:
    error: StoreError
    step: str
    ok = False

    @property
    def code(self) -> str:
        return self.error.code

    def unwrap(self) -> VersionedRecord:
        raise self.error


CommandResult = Union[CommandSucceeded, CommandFailed]

# (policy document or None, current entity version, now) -> Decision
Validate = Callable[[Optional[PolicyDocument], VersionedRecord, datetime], Decision]
# (policy document or None, payload copy, decision, now) -> new payload
Transition = Callable[[Optional[PolicyDocument], Dict[str, Any], Decision, datetime], Dict[str, Any]]
# (policy document or None, now) -> Decision
ValidateNew = Callable[[Optional[PolicyDocument], datetime], Decision]
# (policy document or None, decision, now) -> payload
Build = Callable[[Optional[PolicyDocument], Decision, datetime], Dict[str, Any]]


class CommandPipeline:
    """
    One pipeline per entity store. ``resolver`` may be None for stores whose
    records are audit-tracked but not governed by a policy.
    """

    def __init__(
        self,
        store: VersionStore,
        resolver: Optional[PolicyResolver] = None,
        *,
        conflict_retries: int = 0,
        clock: Clock = utc_now,
    ) -> None:
        if conflict_retries < 0:
            raise ValueError("conflict_retries must be >= 0")
        self.store = store
        self.resolver = resolver
        self.conflict_retries = conflict_retries
        self.clock = clock

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    # -------------------------------
    # Steps
    # -------------------------------

    def _resolve(
        self, scope_key: str, domain: Optional[PolicyDomain], held: Optional[ResolvedPolicy]
    ) -> Optional[ResolvedPolicy]:
        if domain is None:
            return None
        if self.resolver is None:
            raise RuntimeError(f"{domain.value} commands need a PolicyResolver")
        if held is not None:
            # A cached policy must still be current before it decides anything
            return self.resolver.ensure_current(held)
        return self.resolver.resolve_current(scope_key, domain)

    @staticmethod
    def _stamp(payload: Dict[str, Any], policy: Optional[ResolvedPolicy], field: str) -> Dict[str, Any]:
        if policy is not None:
            payload[field] = policy.version
        return payload

    def _fail(self, command: object, error: StoreError, step: str, **context: Any) -> CommandFailed:
        extra = {"command": type(command).__name__, "step": step, "code": error.code, **context}
        if step == STEP_VALIDATE:
            log.info("command rejected", extra={**extra, "field": getattr(error, "field", None)})
        else:
            log.warning("command failed", extra=extra)
        return CommandFailed(error=error, step=step)

    # -------------------------------
    # Mutation
    # -------------------------------

    def execute(
        self,
        command: Any,
        business_key: str,
        *,
        domain: Optional[PolicyDomain],
        validate: Validate,
        transition: Transition,
        expected_version: Optional[int] = None,
        reason: Optional[str] = None,
        policy: Optional[ResolvedPolicy] = None,
        stamp_field: str = "policy_version",
    ) -> CommandResult:
        scope_key = command.scope_key
        ctx = {"scope_key": scope_key, "business_key": business_key}

        try:
            resolved = self._resolve(scope_key, domain, policy)
        except StoreError as exc:
            return self._fail(command, exc, STEP_RESOLVE_POLICY, **ctx)
        document = resolved.document if resolved is not None else None

        attempts = 1 if expected_version is not None else 1 + self.conflict_retries
        for attempt in range(1, attempts + 1):
            try:
                current = self.store.find_current(scope_key, business_key)
            except StoreError as exc:
                return self._fail(command, exc, STEP_LOAD_ENTITY, **ctx)

            now = self.now()
            decision = validate(document, current, now)
            if isinstance(decision, Rejected):
                return self._fail(command, decision.error, STEP_VALIDATE, **ctx)

            if resolved is not None:
                try:
                    self.resolver.ensure_current(resolved)
                except StoreError as exc:
                    return self._fail(command, exc, STEP_CHECK_POLICY, **ctx)

            def mutator(payload: Dict[str, Any]) -> Dict[str, Any]:
                return self._stamp(transition(document, payload, decision, now), resolved, stamp_field)

            try:
                record = self.store.supersede(
                    scope_key,
                    business_key,
                    mutator,
                    command.actor,
                    reason,
                    expected_version=expected_version if expected_version is not None else current.version,
                )
            except ConflictError as exc:
                if attempt < attempts:
                    log.warning("conflict, retrying", extra={**ctx, "attempt": attempt})
                    continue
                return self._fail(command, exc, STEP_PERSIST, **ctx)
            except StoreError as exc:
                return self._fail(command, exc, STEP_PERSIST, **ctx)

            log.info(
                "command applied",
                extra={
                    **ctx,
                    "command": type(command).__name__,
                    "version": record.version,
                    "policy_version": resolved.version if resolved is not None else None,
                    "requires_approval": decision.requires_approval,
                },
            )
            return CommandSucceeded(
                record=record,
                decision=decision,
                policy_version=resolved.version if resolved is not None else None,
            )

        raise AssertionError("unreachable")  # pragma: no cover

    # -------------------------------
    # Creation
    # -------------------------------

    def execute_create(
        self,
        command: Any,
        *,
        domain: Optional[PolicyDomain],
        validate: ValidateNew,
        build: Build,
        business_key: Optional[str] = None,
        reason: Optional[str] = None,
        policy: Optional[ResolvedPolicy] = None,
        stamp_field: str = "policy_version",
    ) -> CommandResult:
        scope_key = command.scope_key
        ctx = {"scope_key": scope_key, "business_key": business_key}

        try:
            resolved = self._resolve(scope_key, domain, policy)
        except StoreError as exc:
            return self._fail(command, exc, STEP_RESOLVE_POLICY, **ctx)
        document = resolved.document if resolved is not None else None

        now = self.now()
        decision = validate(document, now)
        if isinstance(decision, Rejected):
            return self._fail(command, decision.error, STEP_VALIDATE, **ctx)

        payload = self._stamp(build(document, decision, now), resolved, stamp_field)

        if resolved is not None:
            try:
                self.resolver.ensure_current(resolved)
            except StoreError as exc:
                return self._fail(command, exc, STEP_CHECK_POLICY, **ctx)

        try:
            record = self.store.create(scope_key, payload, command.actor, business_key=business_key, reason=reason)
        except StoreError as exc:
            return self._fail(command, exc, STEP_PERSIST, **ctx)

        log.info(
            "command applied",
            extra={
                "scope_key": scope_key,
                "business_key": record.business_key,
                "command": type(command).__name__,
                "version": record.version,
                "policy_version": resolved.version if resolved is not None else None,
                "requires_approval": decision.requires_approval,
            },
        )
        return CommandSucceeded(
            record=record,
            decision=decision,
            policy_version=resolved.version if resolved is not None else None,
        )
