"""
Decision values and the rule helpers validators are built from.

Decision = Accepted | AcceptedPendingApproval(reasons) | Rejected(error)

Rule helpers return ``None`` when a rule passes and a ValidationError (or an
approval reason string) when it triggers. ``combine`` folds individual outcomes
into one Decision:
- the first rejection wins
- otherwise pending-approval reasons are merged, in order
- otherwise the result is Accepted

Approval reasons are ``code:detail`` strings, e.g. ``amount_above_threshold:500``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Collection, Iterable, Optional, Sequence, Tuple, Union

from versioned_policy.core.errors import ValidationError

__all__ = [
    "Accepted",
    "AcceptedPendingApproval",
    "Rejected",
    "Decision",
    "ACCEPTED",
    "reject",
    "exceeds_threshold",
    "check_membership",
    "check_length",
    "check_bound",
    "check_required",
    "escalate_if_any",
    "combine",
]


@dataclass(frozen=True)
class Accepted:
    requires_approval = False


@dataclass(frozen=True)
class AcceptedPendingApproval:
    reasons: Tuple[str, ...]
    requires_approval = True

    def __post_init__(self) -> None:
        if not self.reasons:
            raise ValueError("AcceptedPendingApproval needs at least one reason")


@dataclass(frozen=True)
class Rejected:
    error: ValidationError
    requires_approval = False


Decision = Union[Accepted, AcceptedPendingApproval, Rejected]

ACCEPTED = Accepted()


def reject(field: str, reason: str, *, limit: Any = None) -> Rejected:
    return Rejected(ValidationError(field, reason, limit=limit))


# -------------------------------
# Rule helpers
# -------------------------------

def exceeds_threshold(value: Decimal, threshold: Optional[Decimal]) -> bool:
    """Strictly greater than; a None threshold never triggers."""
    if threshold is None:
        return False
    return value > threshold


def check_membership(field: str, value: Any, allowed: Collection[Any]) -> Optional[ValidationError]:
    if value in allowed:
        return None
    names = sorted(getattr(a, "value", a) for a in allowed)
    shown = getattr(value, "value", value)
    return ValidationError(field, f"{shown!r} is not allowed; allowed values are {', '.join(map(str, names))}", limit=names)


def check_length(
    field: str, value: Optional[str], *, min_length: int = 0, max_length: Optional[int] = None
) -> Optional[ValidationError]:
    """Length rule on stripped text. ``max_length=None`` means unbounded."""
    length = len((value or "").strip())
    if length < min_length:
        return ValidationError(field, f"must be at least {min_length} characters", limit=min_length)
    if max_length is not None and length > max_length:
        return ValidationError(field, f"must be at most {max_length} characters (got {length})", limit=max_length)
    return None


def check_bound(field: str, value: Optional[float], bound: Optional[float], *, unit: str = "") -> Optional[ValidationError]:
    """
    Upper-bound rule. ``bound=None`` is unbounded; ``bound=0`` only admits 0.
    A missing value passes (use check_required for presence).
    """
    if bound is None or value is None:
        return None
    if value > bound:
        suffix = f" {unit}" if unit else ""
        return ValidationError(field, f"must not exceed {bound}{suffix} (got {value}{suffix})", limit=bound)
    return None


def check_required(field: str, value: Any, required: bool, *, why: str = "required by policy") -> Optional[ValidationError]:
    if not required:
        return None
    if value is None or (isinstance(value, str) and not value.strip()):
        return ValidationError(field, why)
    return None


def escalate_if_any(triggers: Iterable[Tuple[bool, str]]) -> Decision:
    """
    Logical OR of independently configured approval triggers.

    Any single true trigger escalates to AcceptedPendingApproval; every true
    trigger contributes its reason.
    """
    reasons = tuple(reason for fired, reason in triggers if fired)
    return AcceptedPendingApproval(reasons) if reasons else ACCEPTED


def combine(outcomes: Sequence[Union[Decision, ValidationError, None]]) -> Decision:
    reasons: list[str] = []
    for outcome in outcomes:
        if outcome is None or isinstance(outcome, Accepted):
            continue
        if isinstance(outcome, ValidationError):
            return Rejected(outcome)
        if isinstance(outcome, Rejected):
            return outcome
        for reason in outcome.reasons:
            if reason not in reasons:
                reasons.append(reason)
    return AcceptedPendingApproval(tuple(reasons)) if reasons else ACCEPTED
