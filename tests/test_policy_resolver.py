"""
Policy resolution and administration, against both store implementations.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from versioned_policy.core.errors import (
    ConflictError,
    NotFoundError,
    PolicyNotConfiguredError,
    StalePolicyError,
    ValidationError,
)
from versioned_policy.repos import InMemoryVersionStore
from versioned_policy.schemas.policies import (
    InteractionManagementPolicy,
    PaymentManagementPolicy,
    PolicyDomain,
)
from versioned_policy.services.policy_admin import PolicyAdmin
from versioned_policy.services.policy_resolver import PolicyResolver

SCOPE = "fh-001"
PAYMENTS = PolicyDomain.PAYMENT_MANAGEMENT


def test_no_policy_is_a_distinct_error(resolver):
    with pytest.raises(PolicyNotConfiguredError) as excinfo:
        resolver.resolve_current(SCOPE, PAYMENTS)
    err = excinfo.value
    # still a NotFoundError, but with its own code and an admin-directed message
    assert isinstance(err, NotFoundError)
    assert err.code == "policy_not_configured"
    assert "administrator" in err.message
    assert err.details == {"scope_key": SCOPE, "domain": "payment_management"}


def test_resolve_after_configure(admin, resolver):
    admin.configure(SCOPE, PAYMENTS, PaymentManagementPolicy.standard(), "owner")
    policy = resolver.resolve_current(SCOPE, PAYMENTS)
    assert policy.version == 1
    assert policy.is_current
    assert isinstance(policy.document, PaymentManagementPolicy)
    assert policy.document.require_approval_above_amount == Decimal("500")


def test_policies_are_per_tenant(admin, resolver):
    admin.configure(SCOPE, PAYMENTS, PaymentManagementPolicy.standard(), "owner")
    with pytest.raises(PolicyNotConfiguredError):
        resolver.resolve_current("fh-002", PAYMENTS)


def test_configure_twice_conflicts(admin):
    admin.configure_preset(SCOPE, PAYMENTS, "standard", "owner")
    with pytest.raises(ConflictError):
        admin.configure_preset(SCOPE, PAYMENTS, "strict", "owner")


def test_configure_checks_document_type(admin):
    with pytest.raises(TypeError):
        admin.configure(SCOPE, PAYMENTS, InteractionManagementPolicy.standard(), "owner")


def test_unknown_preset(admin):
    with pytest.raises(ValueError):
        admin.configure_preset(SCOPE, PAYMENTS, "lenient", "owner")


def test_amend_supersedes_and_revalidates(admin, resolver, clock):
    admin.configure_preset(SCOPE, PAYMENTS, "standard", "owner")
    clock.advance(days=1)
    amended = admin.amend(
        SCOPE, PAYMENTS, {"require_approval_above_amount": "1000"}, "cfo", reason="raised threshold"
    )
    assert amended.version == 2
    assert amended.document.require_approval_above_amount == Decimal("1000")
    # untouched settings carried forward
    assert amended.document.allowed_payment_methods == PaymentManagementPolicy.standard().allowed_payment_methods

    history = admin.history(SCOPE, PAYMENTS)
    assert [p.version for p in history] == [1, 2]
    assert history[1].record.reason == "raised threshold"
    assert history[1].record.created_by == "cfo"
    assert resolver.resolve_current(SCOPE, PAYMENTS).version == 2


def test_amend_requires_reason(admin):
    admin.configure_preset(SCOPE, PAYMENTS, "standard", "owner")
    with pytest.raises(ValidationError) as excinfo:
        admin.amend(SCOPE, PAYMENTS, {"allow_refunds": False}, "cfo", reason="  ")
    assert excinfo.value.field == "reason"


def test_invalid_amendment_writes_nothing(admin):
    admin.configure_preset(SCOPE, PAYMENTS, "standard", "owner")
    with pytest.raises(ValidationError) as excinfo:
        admin.amend(SCOPE, PAYMENTS, {"max_refund_days": -1}, "cfo", reason="typo")
    assert excinfo.value.field == "max_refund_days"
    with pytest.raises(ValidationError):
        admin.amend(SCOPE, PAYMENTS, {"no_such_setting": 1}, "cfo", reason="typo")
    assert [p.version for p in admin.history(SCOPE, PAYMENTS)] == [1]


def test_amend_without_policy_is_not_found(admin):
    with pytest.raises(NotFoundError):
        admin.amend(SCOPE, PAYMENTS, {"allow_refunds": False}, "cfo", reason="why")


def test_ensure_current_detects_stale_policy(admin, resolver, clock):
    admin.configure_preset(SCOPE, PAYMENTS, "standard", "owner")
    held = resolver.resolve_current(SCOPE, PAYMENTS)
    assert resolver.ensure_current(held) is held

    clock.advance(hours=1)
    admin.amend(SCOPE, PAYMENTS, {"allow_refunds": False}, "cfo", reason="freeze refunds")

    with pytest.raises(StalePolicyError) as excinfo:
        resolver.ensure_current(held)
    assert excinfo.value.details["held_version"] == 1
    assert excinfo.value.details["current_version"] == 2


def test_historical_version_is_never_current(admin, resolver, clock):
    admin.configure_preset(SCOPE, PAYMENTS, "standard", "owner")
    clock.advance(hours=1)
    admin.amend(SCOPE, PAYMENTS, {"allow_refunds": False}, "cfo", reason="freeze refunds")
    old = admin.history(SCOPE, PAYMENTS)[0]
    assert old.is_current is False
    with pytest.raises(StalePolicyError):
        resolver.ensure_current(old)


def test_resolve_as_of(admin, resolver, clock):
    v1 = admin.configure_preset(SCOPE, PAYMENTS, "standard", "owner")
    clock.advance(days=10)
    admin.amend(SCOPE, PAYMENTS, {"require_approval_above_amount": "50"}, "cfo", reason="tighten")

    mid = v1.record.valid_from + timedelta(days=5)
    assert resolver.resolve_as_of(SCOPE, PAYMENTS, mid).version == 1
    assert resolver.resolve_as_of(SCOPE, PAYMENTS, clock.now).version == 2

    with pytest.raises(PolicyNotConfiguredError) as excinfo:
        resolver.resolve_as_of(SCOPE, PAYMENTS, v1.record.valid_from - timedelta(seconds=1))
    assert "as_of" in excinfo.value.details


def test_list_current(admin, resolver, clock):
    admin.configure_preset(SCOPE, PAYMENTS, "standard", "owner")
    clock.advance(minutes=1)
    admin.configure_preset(SCOPE, PolicyDomain.INTERACTION_MANAGEMENT, "strict", "owner")
    current = resolver.list_current(SCOPE)
    assert [p.domain for p in current] == [PAYMENTS, PolicyDomain.INTERACTION_MANAGEMENT]


def test_resolver_requires_policy_store():
    with pytest.raises(ValueError):
        PolicyResolver(InMemoryVersionStore("payment"))
    with pytest.raises(ValueError):
        PolicyAdmin(InMemoryVersionStore("payment"))
