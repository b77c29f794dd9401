"""
Contact commands: create and merge.

A merge touches two lineages. The source contact is superseded first (to
MERGED, or to MERGE_PENDING when the policy wants an approver); that write is
the optimistic claim on the merge. The surviving target is then superseded with
the merged fields. Neither step is retried automatically.

Field precedence:
- newest: values of the contact created most recently
- most_recent: values of the contact whose current version is most recent
- prefer_non_null: the target's values, with gaps filled from the source
"""

from __future__ import annotations

from typing import Any, Dict

from versioned_policy.core.clock import Clock, utc_now
from versioned_policy.core.contracts import VersionStore
from versioned_policy.core.errors import StoreError
from versioned_policy.core.logging import get_logger
from versioned_policy.models.record import VersionedRecord
from versioned_policy.schemas.commands import CreateContact, MergeContacts
from versioned_policy.schemas.entities import ContactPayload, ContactStatus
from versioned_policy.schemas.policies import ContactManagementPolicy, PolicyDomain
from versioned_policy.services.command_pipeline import (
    STEP_LOAD_ENTITY,
    STEP_PERSIST,
    CommandFailed,
    CommandPipeline,
    CommandResult,
    CommandSucceeded,
)
from versioned_policy.services.decisions import ACCEPTED
from versioned_policy.services.policy_resolver import PolicyResolver
from versioned_policy.services.validators import validate_contact_merge

__all__ = ["ContactCommands", "MERGE_FIELDS", "merge_contact_fields"]

log = get_logger(__name__)

MERGE_FIELDS = ("first_name", "last_name", "email", "phone", "address")


def merge_contact_fields(
    policy: ContactManagementPolicy, target: VersionedRecord, source: VersionedRecord
) -> ContactPayload:
    """Survivor payload for merging ``source`` into ``target``."""
    t = ContactPayload.from_record(target)
    s = ContactPayload.from_record(source)

    values: Dict[str, Any] = {}
    precedence = policy.merge_field_precedence
    if precedence == "prefer_non_null":
        for name in MERGE_FIELDS:
            mine = getattr(t, name)
            values[name] = mine if mine is not None else getattr(s, name)
    else:
        if precedence == "newest":
            source_wins = source.lineage_created_at > target.lineage_created_at
        else:
            source_wins = source.valid_from > target.valid_from
        winner = s if source_wins else t
        for name in MERGE_FIELDS:
            values[name] = getattr(winner, name)

    excluded = {target.business_key, source.business_key}
    own = [r for r in t.family_relationships if r not in excluded]
    incoming = [r for r in s.family_relationships if r not in excluded and r not in own]
    if policy.merge_family_relationships_automatic:
        values["family_relationships"] = own + incoming
        values["pending_relationship_review"] = list(t.pending_relationship_review)
    else:
        values["family_relationships"] = own
        review = list(t.pending_relationship_review)
        values["pending_relationship_review"] = review + [r for r in incoming if r not in review]

    return t.model_copy(update=values)


class ContactCommands:
    def __init__(self, store: VersionStore, resolver: PolicyResolver, *, clock: Clock = utc_now) -> None:
        self._store = store
        self._pipeline = CommandPipeline(store, resolver, conflict_retries=0, clock=clock)

    def create_contact(self, command: CreateContact) -> CommandResult:
        def build(doc, decision, now) -> Dict[str, Any]:
            return ContactPayload(
                first_name=command.first_name.strip(),
                last_name=command.last_name.strip(),
                email=command.email,
                phone=command.phone,
                address=command.address,
                family_relationships=list(command.family_relationships),
            ).to_payload()

        return self._pipeline.execute_create(
            command, domain=None, validate=lambda doc, now: ACCEPTED, build=build
        )

    def merge_contacts(self, command: MergeContacts) -> CommandResult:
        try:
            target = self._store.find_current(command.scope_key, command.target_contact_id)
        except StoreError as exc:
            return CommandFailed(error=exc, step=STEP_LOAD_ENTITY)

        loaded: Dict[str, Any] = {}

        def validate(doc, current, now):
            loaded["source"], loaded["policy"] = current, doc
            return validate_contact_merge(
                doc, command, ContactPayload.from_record(current), ContactPayload.from_record(target)
            )

        def transition(doc, payload, decision, now) -> Dict[str, Any]:
            contact = ContactPayload.from_payload(payload)
            if decision.requires_approval:
                update = {"status": ContactStatus.MERGE_PENDING, "merge_requested_into": command.target_contact_id}
            else:
                update = {
                    "status": ContactStatus.MERGED,
                    "merge_requested_into": None,
                    "merged_into": command.target_contact_id,
                    "merged_at": now,
                }
            return contact.model_copy(update=update).to_payload()

        source_result = self._pipeline.execute(
            command,
            command.source_contact_id,
            domain=PolicyDomain.CONTACT_MANAGEMENT,
            validate=validate,
            transition=transition,
            reason=command.reason,
        )
        if not source_result.ok or source_result.requires_approval:
            return source_result

        policy: ContactManagementPolicy = loaded["policy"]

        def absorb(payload: Dict[str, Any]) -> Dict[str, Any]:
            merged = merge_contact_fields(policy, target, loaded["source"])
            return merged.model_copy(update={"policy_version": source_result.policy_version}).to_payload()

        try:
            survivor = self._store.supersede(
                command.scope_key,
                command.target_contact_id,
                absorb,
                command.actor,
                command.reason or f"merged {command.source_contact_id}",
                expected_version=target.version,
            )
        except StoreError as exc:
            log.error(
                "merge target not updated after source was merged",
                extra={
                    "scope_key": command.scope_key,
                    "business_key": command.target_contact_id,
                    "source": command.source_contact_id,
                    "code": exc.code,
                },
            )
            return CommandFailed(error=exc, step=STEP_PERSIST)

        log.info(
            "contacts merged",
            extra={
                "scope_key": command.scope_key,
                "business_key": command.target_contact_id,
                "source": command.source_contact_id,
                "precedence": policy.merge_field_precedence,
            },
        )
        return CommandSucceeded(
            record=survivor,
            decision=source_result.decision,
            policy_version=source_result.policy_version,
            related=(source_result.record,),
        )
