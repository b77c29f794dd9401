from __future__ import annotations

from decimal import Decimal

import pytest

from versioned_policy.core.errors import ValidationError
from versioned_policy.services.decisions import (
    ACCEPTED,
    Accepted,
    AcceptedPendingApproval,
    Rejected,
    check_bound,
    check_length,
    check_membership,
    check_required,
    combine,
    escalate_if_any,
    exceeds_threshold,
    reject,
)


def test_threshold_is_strictly_greater_than():
    assert exceeds_threshold(Decimal("500.01"), Decimal("500")) is True
    assert exceeds_threshold(Decimal("500"), Decimal("500")) is False
    assert exceeds_threshold(Decimal("1000000"), None) is False


def test_pending_approval_needs_a_reason():
    with pytest.raises(ValueError):
        AcceptedPendingApproval(())


def test_requires_approval_flags():
    assert ACCEPTED.requires_approval is False
    assert AcceptedPendingApproval(("x",)).requires_approval is True
    assert reject("amount", "bad").requires_approval is False


def test_escalation_is_an_or_of_triggers():
    assert escalate_if_any([(False, "a"), (False, "b")]) == ACCEPTED
    assert escalate_if_any([(False, "a"), (True, "b")]) == AcceptedPendingApproval(("b",))
    assert escalate_if_any([(True, "a"), (True, "b")]).reasons == ("a", "b")


def test_combine_first_rejection_wins():
    first = ValidationError("method", "not allowed")
    second = ValidationError("amount", "too small")
    decision = combine([AcceptedPendingApproval(("x",)), None, first, second])
    assert isinstance(decision, Rejected)
    assert decision.error.field == "method"


def test_combine_merges_reasons_without_duplicates():
    decision = combine(
        [AcceptedPendingApproval(("a", "b")), ACCEPTED, None, AcceptedPendingApproval(("b", "c"))]
    )
    assert decision == AcceptedPendingApproval(("a", "b", "c"))


def test_combine_of_nothing_is_accepted():
    assert isinstance(combine([]), Accepted)
    assert combine([None, ACCEPTED]) == ACCEPTED


def test_membership_lists_allowed_values():
    assert check_membership("method", "cash", ["cash", "check"]) is None
    err = check_membership("method", "wire", ["check", "cash"])
    assert err.field == "method"
    assert err.limit == ["cash", "check"]
    assert "'wire'" in err.reason


def test_length_counts_stripped_text():
    assert check_length("subject", "  hi  ", min_length=2, max_length=2) is None
    assert check_length("subject", "   ", min_length=1).limit == 1
    assert check_length("subject", None, min_length=0) is None
    assert check_length("subject", "x" * 10_000, max_length=None) is None
    assert check_length("subject", "abc", max_length=2).field == "subject"


def test_bound_none_is_unbounded_and_zero_is_a_limit():
    assert check_bound("duration_minutes", 10_000, None) is None
    assert check_bound("duration_minutes", 0, 0) is None
    err = check_bound("duration_minutes", 1, 0, unit="minutes")
    assert err.limit == 0
    assert "minutes" in err.reason
    assert check_bound("duration_minutes", None, 5) is None


def test_required_treats_blank_as_missing():
    assert check_required("check_number", None, False) is None
    assert check_required("check_number", "  ", True).field == "check_number"
    assert check_required("check_number", "1042", True) is None
    assert check_required("phone", None, True, why="needed").reason == "needed"


def test_validation_errors_compare_by_content():
    assert ValidationError("amount", "bad", limit=0) == ValidationError("amount", "bad", limit=0)
    assert ValidationError("amount", "bad") != ValidationError("amount", "worse")
    assert len({ValidationError("a", "b"), ValidationError("a", "b")}) == 1
