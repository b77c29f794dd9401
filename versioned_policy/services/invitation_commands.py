"""
Family portal invitations: create, revoke, resend.

Revocation is not policy-governed (any pending or expired invitation can be
revoked even if the tenant has no invitation policy) and writes a terminal
REVOKED version. Nothing here retries on conflict.
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Any, Callable, Dict

from versioned_policy.core.clock import Clock, utc_now
from versioned_policy.core.contracts import VersionStore
from versioned_policy.core.errors import StoreError
from versioned_policy.schemas.commands import CreateInvitation, ResendInvitation, RevokeInvitation
from versioned_policy.schemas.entities import InvitationPayload, InvitationStatus
from versioned_policy.schemas.policies import PolicyDomain
from versioned_policy.services.command_pipeline import (
    STEP_LOAD_ENTITY,
    CommandFailed,
    CommandPipeline,
    CommandResult,
)
from versioned_policy.services.policy_resolver import PolicyResolver
from versioned_policy.services.validators import (
    validate_invitation_create,
    validate_invitation_resend,
    validate_invitation_revoke,
)

__all__ = ["InvitationCommands"]

TokenFactory = Callable[[int], str]


class InvitationCommands:
    def __init__(
        self,
        store: VersionStore,
        resolver: PolicyResolver,
        *,
        clock: Clock = utc_now,
        token_factory: TokenFactory = secrets.token_urlsafe,
    ) -> None:
        self._store = store
        self._pipeline = CommandPipeline(store, resolver, conflict_retries=0, clock=clock)
        self._token = token_factory

    def _has_active_invitation(self, command: CreateInvitation) -> bool:
        now = self._pipeline.now()
        email = command.email.strip().lower()
        for record in self._store.list_current(command.scope_key):
            invitation = InvitationPayload.from_record(record)
            if (
                invitation.case_id == command.case_id
                and invitation.email.lower() == email
                and invitation.status == InvitationStatus.PENDING
                and not invitation.is_expired(now)
            ):
                return True
        return False

    def create_invitation(self, command: CreateInvitation) -> CommandResult:
        try:
            has_active = self._has_active_invitation(command)
        except StoreError as exc:
            return CommandFailed(error=exc, step=STEP_LOAD_ENTITY)

        def build(doc, decision, now) -> Dict[str, Any]:
            return InvitationPayload(
                case_id=command.case_id,
                email=command.email.strip(),
                name=command.name.strip(),
                phone=command.phone,
                token=self._token(doc.token_length_bytes),
                expires_at=now + timedelta(days=doc.expiration_days),
                last_sent_at=now,
            ).to_payload()

        return self._pipeline.execute_create(
            command,
            domain=PolicyDomain.INVITATION_MANAGEMENT,
            validate=lambda doc, now: validate_invitation_create(doc, command, has_active),
            build=build,
        )

    def revoke_invitation(self, command: RevokeInvitation) -> CommandResult:
        def transition(doc, payload, decision, now) -> Dict[str, Any]:
            return (
                InvitationPayload.from_payload(payload)
                .model_copy(update={"status": InvitationStatus.REVOKED, "revoked_at": now, "revoked_by": command.actor})
                .to_payload()
            )

        return self._pipeline.execute(
            command,
            command.invitation_id,
            domain=None,
            validate=lambda doc, current, now: validate_invitation_revoke(InvitationPayload.from_record(current)),
            transition=transition,
            reason=command.reason,
        )

    def resend_invitation(self, command: ResendInvitation) -> CommandResult:
        """Issue a fresh token and expiry; the old token stops working."""

        def transition(doc, payload, decision, now) -> Dict[str, Any]:
            invitation = InvitationPayload.from_payload(payload)
            return invitation.model_copy(
                update={
                    "status": InvitationStatus.PENDING,
                    "token": self._token(doc.token_length_bytes),
                    "expires_at": now + timedelta(days=doc.expiration_days),
                    "sent_count": invitation.sent_count + 1,
                    "last_sent_at": now,
                }
            ).to_payload()

        return self._pipeline.execute(
            command,
            command.invitation_id,
            domain=PolicyDomain.INVITATION_MANAGEMENT,
            validate=lambda doc, current, now: validate_invitation_resend(doc, InvitationPayload.from_record(current)),
            transition=transition,
            reason="resent",
        )
