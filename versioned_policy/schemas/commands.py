"""
Command objects handed to the command handlers.

A command names its tenant (``scope_key``) and the acting user (``actor``).
Mutations also name the target business key; creations do not.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from versioned_policy.schemas.entities import AssignmentStatus, PaymentStatus
from versioned_policy.schemas.policies import InteractionType, PaymentMethod


class Command(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    scope_key: str = Field(..., min_length=1, description="Tenant (funeral home) identifier")
    actor: str = Field(..., min_length=1, description="User or process issuing the command")


# -------------------------------
# Payments
# -------------------------------

class RecordManualPayment(Command):
    case_id: str = Field(..., min_length=1)
    amount: Decimal
    method: PaymentMethod
    currency: str = "USD"
    check_number: Optional[str] = None
    check_date: Optional[date] = None
    received_at: Optional[datetime] = None
    notes: Optional[str] = None


class TransitionPaymentStatus(Command):
    payment_id: str = Field(..., min_length=1)
    target_status: PaymentStatus
    reason: Optional[str] = None
    failure_reason: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


class ProcessRefund(Command):
    payment_id: str = Field(..., min_length=1)
    amount: Decimal
    currency: str = "USD"
    reason: str = Field(..., min_length=1)
    proof_reference: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


# -------------------------------
# Interactions
# -------------------------------

class LogInteraction(Command):
    interaction_type: InteractionType
    subject: str
    contact_id: Optional[str] = None
    case_id: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    notes: Optional[str] = None


class CompleteInteraction(Command):
    interaction_id: str = Field(..., min_length=1)
    outcome: str
    duration_minutes: Optional[int] = Field(default=None, ge=0)
    expected_version: Optional[int] = Field(default=None, ge=1)


# -------------------------------
# Contacts
# -------------------------------

class CreateContact(Command):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    family_relationships: list[str] = Field(default_factory=list)


class MergeContacts(Command):
    source_contact_id: str = Field(..., min_length=1)
    target_contact_id: str = Field(..., min_length=1)
    similarity_score: Optional[int] = Field(default=None, ge=0, le=100)
    approved_by: Optional[str] = None
    reason: Optional[str] = None


# -------------------------------
# Calendar sync
# -------------------------------

class SyncInteractionToCalendar(Command):
    interaction_id: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1)
    external_event_id: str = Field(..., min_length=1)
    start: datetime
    end: Optional[datetime] = None
    timezone: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=1)


# -------------------------------
# Invitations
# -------------------------------

class CreateInvitation(Command):
    case_id: str = Field(..., min_length=1)
    email: str
    name: str = Field(..., min_length=1)
    phone: Optional[str] = None


class RevokeInvitation(Command):
    invitation_id: str = Field(..., min_length=1)
    reason: Optional[str] = None


class ResendInvitation(Command):
    invitation_id: str = Field(..., min_length=1)


# -------------------------------
# Driver assignments
# -------------------------------

class AssignDriver(Command):
    driver_id: str = Field(..., min_length=1)
    case_id: str = Field(..., min_length=1)
    event_type: str = Field(..., min_length=1)
    scheduled_at: datetime
    vehicle_id: Optional[str] = None
    pickup_location: Optional[str] = None
    dropoff_location: Optional[str] = None
    notes: Optional[str] = None


class UpdateAssignmentStatus(Command):
    assignment_id: str = Field(..., min_length=1)
    status: AssignmentStatus
    expected_version: Optional[int] = Field(default=None, ge=1)


class CancelAssignment(Command):
    assignment_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)
