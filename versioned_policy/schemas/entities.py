"""
Payload models for the audit-tracked domain records.

Every payload is stored as the ``payload`` of a VersionedRecord in JSON form
(``to_payload()``) and read back with ``from_record()``. Terminal business states
(REFUNDED, MERGED, REVOKED, CANCELLED) are ordinary status values.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from versioned_policy.models.record import VersionedRecord
from versioned_policy.schemas.policies import InteractionType, PaymentMethod

__all__ = [
    "EntityKind",
    "EntityPayload",
    "PaymentStatus",
    "PAYMENT_TRANSITIONS",
    "PaymentPayload",
    "InteractionStatus",
    "CalendarEvent",
    "InteractionPayload",
    "ContactStatus",
    "ContactPayload",
    "InvitationStatus",
    "InvitationPayload",
    "AssignmentStatus",
    "ASSIGNMENT_TRANSITIONS",
    "DriverAssignmentPayload",
]

P = TypeVar("P", bound="EntityPayload")


class EntityKind(str, Enum):
    """Store partitions (the ``kind`` column) for domain records."""
    PAYMENT = "payment"
    INTERACTION = "interaction"
    CONTACT = "contact"
    INVITATION = "invitation"
    DRIVER_ASSIGNMENT = "driver_assignment"


class EntityPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Version of the governing policy when this version was written
    policy_version: Optional[int] = Field(default=None, ge=1)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls: Type[P], payload: Dict[str, Any]) -> P:
        return cls.model_validate(payload)

    @classmethod
    def from_record(cls: Type[P], record: VersionedRecord) -> P:
        return cls.model_validate(record.payload)


# -------------------------------
# Payments
# -------------------------------

class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING, PaymentStatus.CANCELLED, PaymentStatus.FAILED}),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.FAILED}),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.CANCELLED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


class PaymentPayload(EntityPayload):
    case_id: str
    amount: Decimal
    currency: str = "USD"
    method: PaymentMethod
    status: PaymentStatus
    received_at: datetime
    check_number: Optional[str] = None
    check_date: Optional[date] = None
    requires_approval: bool = False
    approval_reasons: list[str] = Field(default_factory=list)
    refund_of: Optional[str] = None
    refunded_by: Optional[str] = None
    proof_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    notes: Optional[str] = None


# -------------------------------
# Interactions
# -------------------------------

class InteractionStatus(str, Enum):
    SCHEDULED = "scheduled"
    OPEN = "open"
    COMPLETED = "completed"


class CalendarEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str
    external_event_id: str
    start: datetime
    end: datetime
    timezone: str
    synced_fields: list[str]
    synced_at: datetime


class InteractionPayload(EntityPayload):
    interaction_type: InteractionType
    subject: str
    status: InteractionStatus
    contact_id: Optional[str] = None
    case_id: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    outcome: Optional[str] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    calendar_event: Optional[CalendarEvent] = None
    # Sync policy version, kept apart from the interaction policy version
    calendar_policy_version: Optional[int] = None


# -------------------------------
# Contacts
# -------------------------------

class ContactStatus(str, Enum):
    ACTIVE = "active"
    MERGE_PENDING = "merge_pending"
    MERGED = "merged"


class ContactPayload(EntityPayload):
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    family_relationships: list[str] = Field(default_factory=list)
    pending_relationship_review: list[str] = Field(default_factory=list)
    status: ContactStatus = ContactStatus.ACTIVE
    merge_requested_into: Optional[str] = None
    merged_into: Optional[str] = None
    merged_at: Optional[datetime] = None


# -------------------------------
# Family portal invitations
# -------------------------------

class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    REVOKED = "revoked"


class InvitationPayload(EntityPayload):
    case_id: str
    email: str
    name: str
    phone: Optional[str] = None
    status: InvitationStatus = InvitationStatus.PENDING
    token: str
    expires_at: datetime
    sent_count: int = Field(default=1, ge=1)
    last_sent_at: datetime
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.status == InvitationStatus.EXPIRED or (
            self.status == InvitationStatus.PENDING and self.expires_at <= now
        )


# -------------------------------
# Driver assignments
# -------------------------------

class AssignmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ASSIGNMENT_TRANSITIONS: Dict[AssignmentStatus, FrozenSet[AssignmentStatus]] = {
    AssignmentStatus.PENDING: frozenset({AssignmentStatus.ACCEPTED, AssignmentStatus.CANCELLED}),
    AssignmentStatus.ACCEPTED: frozenset({AssignmentStatus.IN_PROGRESS, AssignmentStatus.CANCELLED}),
    AssignmentStatus.IN_PROGRESS: frozenset({AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED}),
    AssignmentStatus.COMPLETED: frozenset(),
    AssignmentStatus.CANCELLED: frozenset(),
}


class DriverAssignmentPayload(EntityPayload):
    driver_id: str
    vehicle_id: Optional[str] = None
    case_id: str
    event_type: str
    scheduled_at: datetime
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    status: AssignmentStatus = AssignmentStatus.PENDING
    notes: Optional[str] = None
    cancelled_reason: Optional[str] = None
