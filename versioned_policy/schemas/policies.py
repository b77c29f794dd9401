"""
Pydantic policy documents, one per policy domain.

Each document is validated when it is constructed (ranges, allow-list contents,
cross-field rules) and rejects unknown keys. The standard/strict/permissive
presets are spelled out in full rather than derived from one another.

Policies are stored as versioned records with kind="policy" and
business_key=<PolicyDomain value>, so "one current policy per tenant and domain"
is the store's own single-current-version rule.
"""

from __future__ import annotations

import re
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

__all__ = [
    "PolicyDomain",
    "PaymentMethod",
    "InteractionType",
    "PolicyDocument",
    "ContactManagementPolicy",
    "InteractionManagementPolicy",
    "PaymentManagementPolicy",
    "EmailCalendarSyncPolicy",
    "InvitationManagementPolicy",
    "POLICY_DOCUMENTS",
    "document_class",
    "parse_policy_document",
]


class PolicyDomain(str, Enum):
    CONTACT_MANAGEMENT = "contact_management"
    INTERACTION_MANAGEMENT = "interaction_management"
    PAYMENT_MANAGEMENT = "payment_management"
    EMAIL_CALENDAR_SYNC = "email_calendar_sync"
    INVITATION_MANAGEMENT = "invitation_management"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    ACH = "ach"
    CREDIT_CARD = "credit_card"


class InteractionType(str, Enum):
    PHONE_CALL = "phone_call"
    EMAIL = "email"
    MEETING = "meeting"
    VISIT = "visit"
    NOTE = "note"
    TASK = "task"


class PolicyDocument(BaseModel):
    """Base for all policy documents: immutable, strict about unknown keys."""

    model_config = ConfigDict(extra="forbid", frozen=True, use_enum_values=False)

    domain: ClassVar[PolicyDomain]

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


# -------------------------------
# Contact management (duplicate detection and merge)
# -------------------------------

class MatchingWeights(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: int = Field(..., ge=0, le=100)
    email: int = Field(..., ge=0, le=100)
    phone: int = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def _sum_to_100(self) -> "MatchingWeights":
        total = self.name + self.email + self.phone
        if total != 100:
            raise ValueError(f"matching weights must sum to 100, got {total}")
        return self


class ContactManagementPolicy(PolicyDocument):
    domain: ClassVar[PolicyDomain] = PolicyDomain.CONTACT_MANAGEMENT

    min_duplicate_similarity_threshold: int = Field(..., ge=0, le=100)
    duplicate_matching_weights: MatchingWeights
    merge_field_precedence: Literal["newest", "most_recent", "prefer_non_null"]
    is_merge_approval_required: bool
    merge_retention_days: int = Field(..., gt=0)
    merge_family_relationships_automatic: bool
    ignore_duplicates_older_than_days: int = Field(..., ge=0)
    max_duplicates_per_search: int = Field(..., ge=1, le=500)

    @classmethod
    def standard(cls) -> "ContactManagementPolicy":
        return cls(
            min_duplicate_similarity_threshold=75,
            duplicate_matching_weights=MatchingWeights(name=40, email=30, phone=30),
            merge_field_precedence="most_recent",
            is_merge_approval_required=False,
            merge_retention_days=365,
            merge_family_relationships_automatic=True,
            ignore_duplicates_older_than_days=730,
            max_duplicates_per_search=50,
        )

    @classmethod
    def strict(cls) -> "ContactManagementPolicy":
        return cls(
            min_duplicate_similarity_threshold=85,
            duplicate_matching_weights=MatchingWeights(name=50, email=30, phone=20),
            merge_field_precedence="newest",
            is_merge_approval_required=True,
            merge_retention_days=2555,
            merge_family_relationships_automatic=False,
            ignore_duplicates_older_than_days=365,
            max_duplicates_per_search=10,
        )

    @classmethod
    def permissive(cls) -> "ContactManagementPolicy":
        return cls(
            min_duplicate_similarity_threshold=60,
            duplicate_matching_weights=MatchingWeights(name=34, email=33, phone=33),
            merge_field_precedence="prefer_non_null",
            is_merge_approval_required=False,
            merge_retention_days=90,
            merge_family_relationships_automatic=True,
            ignore_duplicates_older_than_days=1825,
            max_duplicates_per_search=100,
        )


# -------------------------------
# Interaction management
# -------------------------------

class InteractionManagementPolicy(PolicyDocument):
    domain: ClassVar[PolicyDomain] = PolicyDomain.INTERACTION_MANAGEMENT

    allowed_interaction_types: list[InteractionType] = Field(..., min_length=1)
    min_subject_length: int = Field(..., ge=0)
    max_subject_length: Optional[int] = Field(..., ge=1)
    max_outcome_length: Optional[int] = Field(..., ge=1)
    # None means unbounded, which is not the same as 0
    max_duration_minutes: Optional[int] = Field(..., ge=0)
    require_association: bool
    allow_scheduled_interactions: bool
    allow_outcome_update: bool

    @model_validator(mode="after")
    def _subject_bounds(self) -> "InteractionManagementPolicy":
        if self.max_subject_length is not None and self.min_subject_length > self.max_subject_length:
            raise ValueError("min_subject_length cannot exceed max_subject_length")
        return self

    @classmethod
    def standard(cls) -> "InteractionManagementPolicy":
        return cls(
            allowed_interaction_types=[
                InteractionType.PHONE_CALL,
                InteractionType.EMAIL,
                InteractionType.MEETING,
                InteractionType.VISIT,
                InteractionType.NOTE,
            ],
            min_subject_length=1,
            max_subject_length=200,
            max_outcome_length=1000,
            max_duration_minutes=10080,
            require_association=True,
            allow_scheduled_interactions=True,
            allow_outcome_update=False,
        )

    @classmethod
    def strict(cls) -> "InteractionManagementPolicy":
        return cls(
            allowed_interaction_types=[InteractionType.PHONE_CALL, InteractionType.MEETING, InteractionType.VISIT],
            min_subject_length=5,
            max_subject_length=100,
            max_outcome_length=500,
            max_duration_minutes=240,
            require_association=True,
            allow_scheduled_interactions=False,
            allow_outcome_update=False,
        )

    @classmethod
    def permissive(cls) -> "InteractionManagementPolicy":
        return cls(
            allowed_interaction_types=list(InteractionType),
            min_subject_length=0,
            max_subject_length=500,
            max_outcome_length=5000,
            max_duration_minutes=None,
            require_association=False,
            allow_scheduled_interactions=True,
            allow_outcome_update=True,
        )


# -------------------------------
# Payment management
# -------------------------------

class PaymentManagementPolicy(PolicyDocument):
    domain: ClassVar[PolicyDomain] = PolicyDomain.PAYMENT_MANAGEMENT

    # Approval triggers; any single one escalates a payment to approval-required
    require_approval_above_amount: Decimal = Field(..., ge=0)
    require_approval_for_all_checks: bool
    require_approval_for_all_ach: bool

    allowed_payment_methods: list[PaymentMethod] = Field(..., min_length=1)

    # Check rules
    require_check_number: bool
    require_check_date: bool
    allow_post_dated_checks: bool
    max_check_age_days: int = Field(..., ge=0)

    # Refund rules
    allow_refunds: bool
    max_refund_days: int = Field(..., ge=0)
    require_original_payment_proof: bool
    require_refund_approval: bool
    refund_approval_threshold: Decimal = Field(..., ge=0)

    @field_validator("allowed_payment_methods")
    @classmethod
    def _no_duplicate_methods(cls, value: list[PaymentMethod]) -> list[PaymentMethod]:
        if len(set(value)) != len(value):
            raise ValueError("allowed_payment_methods contains duplicates")
        return value

    @classmethod
    def standard(cls) -> "PaymentManagementPolicy":
        return cls(
            require_approval_above_amount=Decimal("500"),
            require_approval_for_all_checks=False,
            require_approval_for_all_ach=False,
            allowed_payment_methods=[PaymentMethod.CASH, PaymentMethod.CHECK, PaymentMethod.ACH],
            require_check_number=True,
            require_check_date=True,
            allow_post_dated_checks=False,
            max_check_age_days=180,
            allow_refunds=True,
            max_refund_days=30,
            require_original_payment_proof=True,
            require_refund_approval=True,
            refund_approval_threshold=Decimal("500"),
        )

    @classmethod
    def strict(cls) -> "PaymentManagementPolicy":
        return cls(
            require_approval_above_amount=Decimal("100"),
            require_approval_for_all_checks=True,
            require_approval_for_all_ach=True,
            allowed_payment_methods=[PaymentMethod.CHECK, PaymentMethod.ACH],
            require_check_number=True,
            require_check_date=True,
            allow_post_dated_checks=False,
            max_check_age_days=90,
            allow_refunds=True,
            max_refund_days=14,
            require_original_payment_proof=True,
            require_refund_approval=True,
            refund_approval_threshold=Decimal("100"),
        )

    @classmethod
    def permissive(cls) -> "PaymentManagementPolicy":
        return cls(
            require_approval_above_amount=Decimal("2000"),
            require_approval_for_all_checks=False,
            require_approval_for_all_ach=False,
            allowed_payment_methods=list(PaymentMethod),
            require_check_number=False,
            require_check_date=False,
            allow_post_dated_checks=True,
            max_check_age_days=365,
            allow_refunds=True,
            max_refund_days=90,
            require_original_payment_proof=False,
            require_refund_approval=False,
            refund_approval_threshold=Decimal("10000"),
        )


# -------------------------------
# Email / calendar sync
# -------------------------------

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class CalendarFieldMappings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    subject: bool = True
    start_time: bool = True
    end_time: bool = True
    attendees: bool = True
    description: bool = True
    location: bool = True


class EmailCalendarSyncPolicy(PolicyDocument):
    domain: ClassVar[PolicyDomain] = PolicyDomain.EMAIL_CALENDAR_SYNC

    email_sync_frequency_minutes: int = Field(..., ge=5, le=1440)
    max_retries: int = Field(..., ge=1, le=10)
    retry_delay_seconds: int = Field(..., ge=1, le=60)
    email_matching_strategy: Literal["exact", "fuzzy", "domain", "exact_with_fallback"]
    fuzzy_match_threshold: int = Field(..., ge=0, le=100)
    calendar_field_mappings: CalendarFieldMappings
    timezone_handling: Literal["utc", "local", "explicit"]
    availability_look_ahead_days: int = Field(..., ge=1, le=365)
    meeting_duration_minutes: int = Field(..., ge=15, le=480)
    working_hours_start_time: str
    working_hours_end_time: str
    enable_sync_notifications: bool

    @field_validator("working_hours_start_time", "working_hours_end_time")
    @classmethod
    def _hhmm(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError(f"expected HH:MM, got {value!r}")
        return value

    @model_validator(mode="after")
    def _working_hours_order(self) -> "EmailCalendarSyncPolicy":
        if self.working_hours_start_time >= self.working_hours_end_time:
            raise ValueError("working_hours_start_time must be before working_hours_end_time")
        return self

    @classmethod
    def standard(cls) -> "EmailCalendarSyncPolicy":
        return cls(
            email_sync_frequency_minutes=15,
            max_retries=3,
            retry_delay_seconds=5,
            email_matching_strategy="exact_with_fallback",
            fuzzy_match_threshold=80,
            calendar_field_mappings=CalendarFieldMappings(),
            timezone_handling="utc",
            availability_look_ahead_days=30,
            meeting_duration_minutes=60,
            working_hours_start_time="09:00",
            working_hours_end_time="17:00",
            enable_sync_notifications=True,
        )

    @classmethod
    def strict(cls) -> "EmailCalendarSyncPolicy":
        return cls(
            email_sync_frequency_minutes=60,
            max_retries=1,
            retry_delay_seconds=30,
            email_matching_strategy="exact",
            fuzzy_match_threshold=95,
            calendar_field_mappings=CalendarFieldMappings(attendees=False, description=False),
            timezone_handling="explicit",
            availability_look_ahead_days=14,
            meeting_duration_minutes=30,
            working_hours_start_time="09:00",
            working_hours_end_time="16:00",
            enable_sync_notifications=False,
        )

    @classmethod
    def permissive(cls) -> "EmailCalendarSyncPolicy":
        return cls(
            email_sync_frequency_minutes=5,
            max_retries=10,
            retry_delay_seconds=1,
            email_matching_strategy="fuzzy",
            fuzzy_match_threshold=60,
            calendar_field_mappings=CalendarFieldMappings(),
            timezone_handling="local",
            availability_look_ahead_days=90,
            meeting_duration_minutes=90,
            working_hours_start_time="07:00",
            working_hours_end_time="20:00",
            enable_sync_notifications=True,
        )


# -------------------------------
# Family portal invitations
# -------------------------------

class InvitationManagementPolicy(PolicyDocument):
    domain: ClassVar[PolicyDomain] = PolicyDomain.INVITATION_MANAGEMENT

    expiration_days: int = Field(..., ge=1, le=90)
    token_length_bytes: int = Field(..., ge=16, le=64)
    allow_multiple_invitations_per_email: bool
    require_phone_number: bool
    require_strict_email_validation: bool
    max_resends: int = Field(..., ge=0)

    @classmethod
    def standard(cls) -> "InvitationManagementPolicy":
        return cls(
            expiration_days=7,
            token_length_bytes=32,
            allow_multiple_invitations_per_email=False,
            require_phone_number=False,
            require_strict_email_validation=True,
            max_resends=3,
        )

    @classmethod
    def strict(cls) -> "InvitationManagementPolicy":
        return cls(
            expiration_days=3,
            token_length_bytes=64,
            allow_multiple_invitations_per_email=False,
            require_phone_number=True,
            require_strict_email_validation=True,
            max_resends=1,
        )

    @classmethod
    def permissive(cls) -> "InvitationManagementPolicy":
        return cls(
            expiration_days=30,
            token_length_bytes=16,
            allow_multiple_invitations_per_email=True,
            require_phone_number=False,
            require_strict_email_validation=False,
            max_resends=10,
        )


POLICY_DOCUMENTS: Dict[PolicyDomain, Type[PolicyDocument]] = {
    PolicyDomain.CONTACT_MANAGEMENT: ContactManagementPolicy,
    PolicyDomain.INTERACTION_MANAGEMENT: InteractionManagementPolicy,
    PolicyDomain.PAYMENT_MANAGEMENT: PaymentManagementPolicy,
    PolicyDomain.EMAIL_CALENDAR_SYNC: EmailCalendarSyncPolicy,
    PolicyDomain.INVITATION_MANAGEMENT: InvitationManagementPolicy,
}


def document_class(domain: PolicyDomain | str) -> Type[PolicyDocument]:
    return POLICY_DOCUMENTS[PolicyDomain(domain)]


def parse_policy_document(domain: PolicyDomain | str, payload: Dict[str, Any]) -> PolicyDocument:
    """Validate a stored payload into the typed document for ``domain``."""
    return document_class(domain).model_validate(payload)
