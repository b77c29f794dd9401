"""
CommandPipeline: step reporting, policy stamping, staleness and conflict retries.

The commands and callbacks here are deliberately tiny; domain handlers are
covered in their own modules.
"""

from __future__ import annotations

import pytest

from fakes import RacingStore
from versioned_policy.core.errors import ConflictError, StalePolicyError, ValidationError
from versioned_policy.schemas.commands import CompleteInteraction, LogInteraction
from versioned_policy.schemas.policies import InteractionType, PolicyDomain
from versioned_policy.services.command_pipeline import (
    STEP_CHECK_POLICY,
    STEP_LOAD_ENTITY,
    STEP_PERSIST,
    STEP_RESOLVE_POLICY,
    STEP_VALIDATE,
    CommandFailed,
    CommandPipeline,
    CommandSucceeded,
)
from versioned_policy.services.decisions import ACCEPTED, AcceptedPendingApproval, reject

SCOPE = "fh-001"
DOMAIN = PolicyDomain.INTERACTION_MANAGEMENT


def command(**overrides) -> CompleteInteraction:
    fields = {"scope_key": SCOPE, "actor": "staff-1", "interaction_id": "i-1", "outcome": "done"}
    fields.update(overrides)
    return CompleteInteraction(**fields)


def accept(doc, current, now):
    return ACCEPTED


def mark_done(doc, payload, decision, now):
    payload["status"] = "completed"
    payload["requires_approval"] = decision.requires_approval
    return payload


@pytest.fixture
def entities(make_store):
    store = make_store("interaction")
    store.create(SCOPE, {"status": "open"}, "staff-1", business_key="i-1")
    return store


@pytest.fixture
def configured(admin):
    return admin.configure_preset(SCOPE, DOMAIN, "standard", "owner")


def test_missing_policy_fails_at_resolution(entities, resolver):
    pipeline = CommandPipeline(entities, resolver)
    result = pipeline.execute(command(), "i-1", domain=DOMAIN, validate=accept, transition=mark_done)
    assert isinstance(result, CommandFailed)
    assert result.ok is False
    assert result.step == STEP_RESOLVE_POLICY
    assert result.code == "policy_not_configured"


def test_unknown_entity_fails_at_load(entities, resolver, configured):
    pipeline = CommandPipeline(entities, resolver)
    result = pipeline.execute(command(), "missing", domain=DOMAIN, validate=accept, transition=mark_done)
    assert result.step == STEP_LOAD_ENTITY
    assert result.code == "not_found"


def test_rejection_writes_nothing(entities, resolver, configured):
    pipeline = CommandPipeline(entities, resolver)
    result = pipeline.execute(
        command(),
        "i-1",
        domain=DOMAIN,
        validate=lambda doc, current, now: reject("outcome", "too short", limit=5),
        transition=mark_done,
    )
    assert result.step == STEP_VALIDATE
    assert result.error == ValidationError("outcome", "too short", limit=5)
    with pytest.raises(ValidationError):
        result.unwrap()
    assert len(entities.find_lineage(SCOPE, "i-1")) == 1


def test_success_stamps_policy_version(entities, resolver, configured, clock):
    seen = {}

    def validate(doc, current, now):
        seen["doc"], seen["current"], seen["now"] = doc, current, now
        return AcceptedPendingApproval(("needs_review",))

    pipeline = CommandPipeline(entities, resolver, clock=clock)
    result = pipeline.execute(
        command(), "i-1", domain=DOMAIN, validate=validate, transition=mark_done, reason="closing"
    )

    assert isinstance(result, CommandSucceeded)
    assert result.ok is True
    assert result.policy_version == 1
    assert result.requires_approval is True
    assert result.approval_reasons == ("needs_review",)
    record = result.unwrap()
    assert record.version == 2
    assert record.created_by == "staff-1"
    assert record.reason == "closing"
    assert record.payload == {"status": "completed", "requires_approval": True, "policy_version": 1}
    # validators see the typed document, the loaded version and the pipeline clock
    assert seen["doc"] == configured.document
    assert seen["current"].version == 1
    assert seen["now"] == clock.now


def test_custom_stamp_field(entities, resolver, configured):
    pipeline = CommandPipeline(entities, resolver)
    result = pipeline.execute(
        command(), "i-1", domain=DOMAIN, validate=accept, transition=mark_done, stamp_field="calendar_policy_version"
    )
    assert result.record.payload["calendar_policy_version"] == 1
    assert "policy_version" not in result.record.payload


def test_ungoverned_command_needs_no_policy(entities):
    pipeline = CommandPipeline(entities)
    result = pipeline.execute(command(), "i-1", domain=None, validate=accept, transition=mark_done)
    assert result.ok
    assert result.policy_version is None
    assert "policy_version" not in result.record.payload


def test_governed_command_without_resolver_is_a_wiring_error(entities):
    with pytest.raises(RuntimeError):
        CommandPipeline(entities).execute(command(), "i-1", domain=DOMAIN, validate=accept, transition=mark_done)


def test_negative_retries_rejected(entities):
    with pytest.raises(ValueError):
        CommandPipeline(entities, conflict_retries=-1)


def test_lost_race_is_retried_from_load(entities, resolver, configured):
    racing = RacingStore(entities, races=1)
    loads = []

    def validate(doc, current, now):
        loads.append(current.version)
        return ACCEPTED

    pipeline = CommandPipeline(racing, resolver, conflict_retries=1)
    result = pipeline.execute(command(), "i-1", domain=DOMAIN, validate=validate, transition=mark_done)

    assert result.ok
    # first attempt saw v1 and lost to the rival's v2; the retry re-validated v2
    assert loads == [1, 2]
    assert racing.supersede_calls == [1, 2]
    lineage = entities.find_lineage(SCOPE, "i-1")
    assert [r.created_by for r in lineage] == ["staff-1", "rival-writer", "staff-1"]
    assert lineage[-1].payload["status"] == "completed"


def test_conflict_surfaces_when_retries_exhausted(entities, resolver, configured):
    racing = RacingStore(entities, races=2)
    pipeline = CommandPipeline(racing, resolver, conflict_retries=1)
    result = pipeline.execute(command(), "i-1", domain=DOMAIN, validate=accept, transition=mark_done)
    assert result.step == STEP_PERSIST
    assert isinstance(result.error, ConflictError)
    assert len(racing.supersede_calls) == 2


def test_no_retry_by_default(entities, resolver, configured):
    racing = RacingStore(entities, races=1)
    result = CommandPipeline(racing, resolver).execute(
        command(), "i-1", domain=DOMAIN, validate=accept, transition=mark_done
    )
    assert result.step == STEP_PERSIST
    assert result.code == "conflict"
    assert racing.supersede_calls == [1]


def test_pinned_expected_version_is_never_retried(entities, resolver, configured):
    racing = RacingStore(entities, races=1)
    pipeline = CommandPipeline(racing, resolver, conflict_retries=3)
    result = pipeline.execute(
        command(), "i-1", domain=DOMAIN, validate=accept, transition=mark_done, expected_version=1
    )
    assert result.step == STEP_PERSIST
    assert racing.supersede_calls == [1]


def test_stale_expected_version(entities, resolver, configured):
    pipeline = CommandPipeline(entities, resolver, conflict_retries=3)
    result = pipeline.execute(
        command(), "i-1", domain=DOMAIN, validate=accept, transition=mark_done, expected_version=7
    )
    assert result.step == STEP_PERSIST
    assert result.error.details["expected_version"] == 7


def test_held_policy_must_still_be_current(entities, resolver, admin, configured, clock):
    held = resolver.resolve_current(SCOPE, DOMAIN)
    clock.advance(minutes=5)
    admin.amend(SCOPE, DOMAIN, {"max_outcome_length": 50}, "owner", reason="shorter outcomes")

    pipeline = CommandPipeline(entities, resolver)
    result = pipeline.execute(command(), "i-1", domain=DOMAIN, validate=accept, transition=mark_done, policy=held)
    assert result.step == STEP_RESOLVE_POLICY
    assert isinstance(result.error, StalePolicyError)
    assert len(entities.find_lineage(SCOPE, "i-1")) == 1


def test_policy_amended_during_command_is_caught_before_write(entities, resolver, admin, configured, clock):
    def validate(doc, current, now):
        # an administrator changes the policy while this command is deciding
        clock.advance(seconds=1)
        admin.amend(SCOPE, DOMAIN, {"allow_outcome_update": True}, "owner", reason="allow corrections")
        return ACCEPTED

    pipeline = CommandPipeline(entities, resolver, conflict_retries=2)
    result = pipeline.execute(command(), "i-1", domain=DOMAIN, validate=validate, transition=mark_done)
    assert result.step == STEP_CHECK_POLICY
    assert result.code == "stale_policy"
    assert len(entities.find_lineage(SCOPE, "i-1")) == 1


# -------------------------------
# Creation
# -------------------------------

def log_command() -> LogInteraction:
    return LogInteraction(
        scope_key=SCOPE, actor="staff-1", interaction_type=InteractionType.NOTE, subject="Called florist", case_id="c-1"
    )


def test_create_stamps_and_persists(make_store, resolver, configured):
    store = make_store("interaction")
    pipeline = CommandPipeline(store, resolver)
    result = pipeline.execute_create(
        log_command(),
        domain=DOMAIN,
        validate=lambda doc, now: ACCEPTED,
        build=lambda doc, decision, now: {"subject": "Called florist"},
        business_key="i-9",
        reason="logged",
    )
    assert result.ok
    assert result.record.business_key == "i-9"
    assert result.record.version == 1
    assert result.record.reason == "logged"
    assert result.record.payload == {"subject": "Called florist", "policy_version": 1}


def test_create_rejection_writes_nothing(make_store, resolver, configured):
    store = make_store("interaction")
    result = CommandPipeline(store, resolver).execute_create(
        log_command(),
        domain=DOMAIN,
        validate=lambda doc, now: reject("subject", "too short"),
        build=lambda doc, decision, now: {},
    )
    assert result.step == STEP_VALIDATE
    assert store.list_current(SCOPE) == ()


def test_create_with_taken_key_fails_at_persist(entities, resolver, configured):
    result = CommandPipeline(entities, resolver).execute_create(
        log_command(),
        domain=DOMAIN,
        validate=lambda doc, now: ACCEPTED,
        build=lambda doc, decision, now: {},
        business_key="i-1",
    )
    assert result.step == STEP_PERSIST
    assert result.code == "conflict"


def test_create_checks_policy_again_before_write(make_store, resolver, admin, configured, clock):
    store = make_store("interaction")

    def build(doc, decision, now):
        clock.advance(seconds=1)
        admin.amend(SCOPE, DOMAIN, {"require_association": False}, "owner", reason="relax")
        return {}

    result = CommandPipeline(store, resolver).execute_create(
        log_command(), domain=DOMAIN, validate=lambda doc, now: ACCEPTED, build=build
    )
    assert result.step == STEP_CHECK_POLICY
    assert store.list_current(SCOPE) == ()
