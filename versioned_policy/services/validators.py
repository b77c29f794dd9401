"""
Policy-aware validators, one or more per domain.

Every validator is a pure function of (policy document, command, loaded entity
state, ``now`` where time matters) returning a Decision. Rule failures are
returned as Rejected values and never raised.
"""

from __future__ import annotations

import re
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from versioned_policy.core.clock import ensure_utc
from versioned_policy.schemas.commands import (
    CompleteInteraction,
    CreateInvitation,
    LogInteraction,
    MergeContacts,
    ProcessRefund,
    RecordManualPayment,
    SyncInteractionToCalendar,
)
from versioned_policy.schemas.entities import (
    ASSIGNMENT_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    AssignmentStatus,
    ContactPayload,
    ContactStatus,
    DriverAssignmentPayload,
    InteractionPayload,
    InteractionStatus,
    InvitationPayload,
    InvitationStatus,
    PaymentPayload,
    PaymentStatus,
)
from versioned_policy.schemas.policies import (
    ContactManagementPolicy,
    EmailCalendarSyncPolicy,
    InteractionManagementPolicy,
    InvitationManagementPolicy,
    PaymentManagementPolicy,
    PaymentMethod,
)
from versioned_policy.services.decisions import (
    ACCEPTED,
    Decision,
    check_bound,
    check_length,
    check_membership,
    check_required,
    combine,
    escalate_if_any,
    exceeds_threshold,
    reject,
)

__all__ = [
    "validate_manual_payment",
    "validate_payment_transition",
    "validate_refund",
    "validate_interaction_log",
    "validate_interaction_completion",
    "validate_contact_merge",
    "calendar_event_window",
    "validate_calendar_sync",
    "validate_invitation_create",
    "validate_invitation_revoke",
    "validate_invitation_resend",
    "validate_assignment_transition",
]

_STRICT_EMAIL = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")


# -------------------------------
# Payments
# -------------------------------

def validate_manual_payment(policy: PaymentManagementPolicy, command: RecordManualPayment, now: datetime) -> Decision:
    """
    Approval is required when ANY of these holds:
    - amount > require_approval_above_amount
    - method is check and require_approval_for_all_checks
    - method is ACH and require_approval_for_all_ach
    """
    if command.amount <= 0:
        return reject("amount", "must be greater than zero", limit=0)

    outcomes = [check_membership("method", command.method, policy.allowed_payment_methods)]

    if command.method == PaymentMethod.CHECK:
        outcomes.append(check_required("check_number", command.check_number, policy.require_check_number))
        outcomes.append(check_required("check_date", command.check_date, policy.require_check_date))
        if command.check_date is not None:
            today = ensure_utc(now).date()
            if command.check_date > today and not policy.allow_post_dated_checks:
                outcomes.append(reject("check_date", "post-dated checks are not accepted").error)
            age_days = (today - command.check_date).days
            if age_days > policy.max_check_age_days:
                outcomes.append(
                    reject(
                        "check_date",
                        f"check is {age_days} days old; the limit is {policy.max_check_age_days} days",
                        limit=policy.max_check_age_days,
                    ).error
                )

    outcomes.append(
        escalate_if_any(
            [
                (
                    exceeds_threshold(command.amount, policy.require_approval_above_amount),
                    f"amount_above_threshold:{policy.require_approval_above_amount}",
                ),
                (
                    command.method == PaymentMethod.CHECK and policy.require_approval_for_all_checks,
                    "method_requires_approval:check",
                ),
                (
                    command.method == PaymentMethod.ACH and policy.require_approval_for_all_ach,
                    "method_requires_approval:ach",
                ),
            ]
        )
    )
    return combine(outcomes)


def validate_payment_transition(
    policy: PaymentManagementPolicy, payment: PaymentPayload, target_status: PaymentStatus
) -> Decision:
    if payment.status == target_status:
        return reject("status", f"payment is already {payment.status.value}")
    allowed = PAYMENT_TRANSITIONS[payment.status]
    if target_status not in allowed:
        names = sorted(s.value for s in allowed) or ["none"]
        return reject(
            "status",
            f"cannot move a {payment.status.value} payment to {target_status.value}; allowed: {', '.join(names)}",
            limit=names,
        )
    if target_status == PaymentStatus.REFUNDED and not policy.allow_refunds:
        return reject("status", "refunds are disabled by policy")
    return ACCEPTED


def validate_refund(
    policy: PaymentManagementPolicy, command: ProcessRefund, payment: PaymentPayload, now: datetime
) -> Decision:
    if not policy.allow_refunds:
        return reject("payment_id", "refunds are disabled by policy")
    if payment.refund_of is not None:
        return reject("payment_id", "a refund cannot itself be refunded")
    if payment.status != PaymentStatus.SUCCEEDED:
        return reject("payment_id", f"only succeeded payments can be refunded (status is {payment.status.value})")
    if command.currency != payment.currency:
        return reject("currency", f"refund currency must match the original payment ({payment.currency})")
    if command.amount <= 0:
        return reject("amount", "must be greater than zero", limit=0)
    if command.amount > payment.amount:
        return reject("amount", f"cannot exceed the original payment amount of {payment.amount}", limit=payment.amount)

    elapsed = ensure_utc(now) - ensure_utc(payment.received_at)
    if elapsed > timedelta(days=policy.max_refund_days):
        return reject(
            "payment_id",
            f"the refund window of {policy.max_refund_days} days has passed",
            limit=policy.max_refund_days,
        )

    proof = check_required(
        "proof_reference",
        command.proof_reference,
        policy.require_original_payment_proof,
        why="proof of the original payment is required",
    )
    return combine(
        [
            proof,
            escalate_if_any(
                [
                    (
                        policy.require_refund_approval
                        and exceeds_threshold(command.amount, policy.refund_approval_threshold),
                        f"refund_above_threshold:{policy.refund_approval_threshold}",
                    )
                ]
            ),
        ]
    )


# -------------------------------
# Interactions
# -------------------------------

def validate_interaction_log(policy: InteractionManagementPolicy, command: LogInteraction) -> Decision:
    outcomes = [
        check_membership("interaction_type", command.interaction_type, policy.allowed_interaction_types),
        check_length(
            "subject",
            command.subject,
            min_length=policy.min_subject_length,
            max_length=policy.max_subject_length,
        ),
    ]
    if policy.require_association and not (command.contact_id or command.case_id):
        outcomes.append(reject("contact_id", "an interaction must be linked to a contact or a case").error)
    if command.scheduled_for is not None and not policy.allow_scheduled_interactions:
        outcomes.append(reject("scheduled_for", "scheduled interactions are disabled by policy").error)
    return combine(outcomes)


def validate_interaction_completion(
    policy: InteractionManagementPolicy, command: CompleteInteraction, interaction: InteractionPayload
) -> Decision:
    if interaction.status == InteractionStatus.COMPLETED and not policy.allow_outcome_update:
        return reject("outcome", "the outcome of a completed interaction cannot be changed")
    return combine(
        [
            check_length("outcome", command.outcome, min_length=1, max_length=policy.max_outcome_length),
            check_bound("duration_minutes", command.duration_minutes, policy.max_duration_minutes, unit="minutes"),
        ]
    )


# -------------------------------
# Contacts
# -------------------------------

def validate_contact_merge(
    policy: ContactManagementPolicy, command: MergeContacts, source: ContactPayload, target: ContactPayload
) -> Decision:
    if command.source_contact_id == command.target_contact_id:
        return reject("source_contact_id", "a contact cannot be merged into itself")
    if target.status != ContactStatus.ACTIVE:
        return reject("target_contact_id", f"target contact is {target.status.value}, not active")
    if source.status == ContactStatus.MERGED:
        return reject("source_contact_id", f"contact was already merged into {source.merged_into}")
    if source.status == ContactStatus.MERGE_PENDING and source.merge_requested_into != command.target_contact_id:
        return reject(
            "target_contact_id",
            f"a merge into {source.merge_requested_into} is already awaiting approval",
        )
    if (
        command.similarity_score is not None
        and command.similarity_score < policy.min_duplicate_similarity_threshold
    ):
        return reject(
            "similarity_score",
            f"similarity {command.similarity_score} is below the duplicate threshold of "
            f"{policy.min_duplicate_similarity_threshold}",
            limit=policy.min_duplicate_similarity_threshold,
        )
    return escalate_if_any(
        [(policy.is_merge_approval_required and not command.approved_by, "merge_approval_required")]
    )


# -------------------------------
# Calendar sync
# -------------------------------

def calendar_event_window(
    policy: EmailCalendarSyncPolicy, command: SyncInteractionToCalendar
) -> Tuple[datetime, datetime]:
    """Event start/end in UTC; a missing end defaults to the policy meeting length."""
    start = ensure_utc(command.start)
    end = ensure_utc(command.end) if command.end is not None else start + timedelta(
        minutes=policy.meeting_duration_minutes
    )
    return start, end


def _event_zone(policy: EmailCalendarSyncPolicy, name: Optional[str]) -> Optional[tzinfo]:
    if policy.timezone_handling == "utc" or (policy.timezone_handling == "local" and not name):
        return timezone.utc
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def _hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def validate_calendar_sync(policy: EmailCalendarSyncPolicy, command: SyncInteractionToCalendar) -> Decision:
    mappings = policy.calendar_field_mappings
    if not (mappings.start_time and mappings.end_time):
        return reject("calendar_field_mappings", "start and end time must be mapped to sync calendar events")

    start, end = calendar_event_window(policy, command)
    if end <= start:
        return reject("end", "must be after start")

    duration = (end - start).total_seconds() / 60
    too_long = check_bound("end", duration, policy.meeting_duration_minutes, unit="minutes")
    if too_long is not None:
        return combine([too_long])

    zone = _event_zone(policy, command.timezone)
    if zone is None:
        if policy.timezone_handling == "explicit" and not command.timezone:
            return reject("timezone", "an explicit timezone is required by policy")
        return reject("timezone", f"unknown timezone {command.timezone!r}")

    local_start, local_end = start.astimezone(zone), end.astimezone(zone)
    opens, closes = _hhmm(policy.working_hours_start_time), _hhmm(policy.working_hours_end_time)
    window = f"{policy.working_hours_start_time}-{policy.working_hours_end_time}"
    if (
        local_start.date() != local_end.date()
        or local_start.time() < opens
        or local_end.time() > closes
    ):
        return reject("start", f"event must fall within working hours {window}", limit=window)
    return ACCEPTED


# -------------------------------
# Invitations
# -------------------------------

def _email_ok(email: str, strict: bool) -> bool:
    email = email.strip()
    if strict:
        return bool(_STRICT_EMAIL.match(email))
    local, sep, domain = email.partition("@")
    return bool(local and sep and domain)


def validate_invitation_create(
    policy: InvitationManagementPolicy, command: CreateInvitation, has_active_invitation: bool
) -> Decision:
    if not _email_ok(command.email, policy.require_strict_email_validation):
        return reject("email", f"{command.email!r} is not a valid email address")
    missing_phone = check_required(
        "phone", command.phone, policy.require_phone_number, why="a phone number is required for invitations"
    )
    if missing_phone is not None:
        return combine([missing_phone])
    if has_active_invitation and not policy.allow_multiple_invitations_per_email:
        return reject("email", "an active invitation already exists for this email on this case")
    return ACCEPTED


def validate_invitation_revoke(invitation: InvitationPayload) -> Decision:
    # Accepted and already-revoked invitations stay as they are
    if invitation.status not in (InvitationStatus.PENDING, InvitationStatus.EXPIRED):
        return reject("status", f"cannot revoke an invitation that is {invitation.status.value}")
    return ACCEPTED


def validate_invitation_resend(policy: InvitationManagementPolicy, invitation: InvitationPayload) -> Decision:
    if invitation.status not in (InvitationStatus.PENDING, InvitationStatus.EXPIRED):
        return reject("status", f"cannot resend an invitation that is {invitation.status.value}")
    resends = invitation.sent_count - 1
    if resends >= policy.max_resends:
        return reject("sent_count", f"resend limit of {policy.max_resends} reached", limit=policy.max_resends)
    return ACCEPTED


# -------------------------------
# Driver assignments
# -------------------------------

def validate_assignment_transition(assignment: DriverAssignmentPayload, target: AssignmentStatus) -> Decision:
    allowed = ASSIGNMENT_TRANSITIONS[assignment.status]
    if target not in allowed:
        names = sorted(s.value for s in allowed) or ["none"]
        return reject(
            "status",
            f"cannot move a {assignment.status.value} assignment to {target.value}; allowed: {', '.join(names)}",
            limit=names,
        )
    return ACCEPTED
