"""
Payment commands: manual payments, status transitions and refunds.

Retry choices:
- record_manual_payment / process_refund: no automatic retry; a conflict is
  returned to the staff user who issued it
- transition_status: retried once, since processor callbacks and background
  jobs race on the same payment routinely
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from versioned_policy.core.clock import Clock, utc_now
from versioned_policy.core.contracts import VersionStore
from versioned_policy.core.errors import StoreError
from versioned_policy.core.logging import get_logger
from versioned_policy.repos.common import new_id
from versioned_policy.schemas.commands import ProcessRefund, RecordManualPayment, TransitionPaymentStatus
from versioned_policy.schemas.entities import PaymentPayload, PaymentStatus
from versioned_policy.schemas.policies import PolicyDomain
from versioned_policy.services.command_pipeline import (
    STEP_PERSIST,
    CommandFailed,
    CommandPipeline,
    CommandResult,
    CommandSucceeded,
)
from versioned_policy.services.policy_resolver import PolicyResolver, ResolvedPolicy
from versioned_policy.services.validators import (
    validate_manual_payment,
    validate_payment_transition,
    validate_refund,
)

__all__ = ["PaymentCommands"]

log = get_logger(__name__)


class PaymentCommands:
    def __init__(
        self,
        store: VersionStore,
        resolver: PolicyResolver,
        *,
        clock: Clock = utc_now,
        status_conflict_retries: int = 1,
    ) -> None:
        self._store = store
        self._staff = CommandPipeline(store, resolver, conflict_retries=0, clock=clock)
        self._status = CommandPipeline(store, resolver, conflict_retries=status_conflict_retries, clock=clock)

    def record_manual_payment(
        self, command: RecordManualPayment, *, policy: Optional[ResolvedPolicy] = None
    ) -> CommandResult:
        """
        Record a cash/check/ACH payment taken by staff.

        Payments that need approval are stored PENDING with their approval
        reasons; everything else is stored SUCCEEDED.
        """

        def build(doc, decision, now) -> Dict[str, Any]:
            return PaymentPayload(
                case_id=command.case_id,
                amount=command.amount,
                currency=command.currency,
                method=command.method,
                status=PaymentStatus.PENDING if decision.requires_approval else PaymentStatus.SUCCEEDED,
                received_at=command.received_at or now,
                check_number=command.check_number,
                check_date=command.check_date,
                requires_approval=decision.requires_approval,
                approval_reasons=list(getattr(decision, "reasons", ())),
                notes=command.notes,
            ).to_payload()

        return self._staff.execute_create(
            command,
            domain=PolicyDomain.PAYMENT_MANAGEMENT,
            validate=lambda doc, now: validate_manual_payment(doc, command, now),
            build=build,
            policy=policy,
        )

    def transition_status(self, command: TransitionPaymentStatus) -> CommandResult:
        target = command.target_status

        def transition(doc, payload, decision, now) -> Dict[str, Any]:
            update: Dict[str, Any] = {"status": target}
            if target == PaymentStatus.FAILED:
                update["failure_reason"] = command.failure_reason or command.reason
            elif target == PaymentStatus.PENDING:
                update["failure_reason"] = None
            return PaymentPayload.from_payload(payload).model_copy(update=update).to_payload()

        return self._status.execute(
            command,
            command.payment_id,
            domain=PolicyDomain.PAYMENT_MANAGEMENT,
            validate=lambda doc, current, now: validate_payment_transition(
                doc, PaymentPayload.from_record(current), target
            ),
            transition=transition,
            expected_version=command.expected_version,
            reason=command.reason,
        )

    def process_refund(self, command: ProcessRefund) -> CommandResult:
        """
        Refund part or all of a succeeded payment.

        The original payment is superseded to REFUNDED first, which claims it
        against concurrent refunds. A refund payment lineage with a negative
        amount is then created; it is SUCCEEDED unless the refund needs
        approval, in which case it is PENDING.
        """
        refund_key = new_id()

        def transition(doc, payload, decision, now) -> Dict[str, Any]:
            return (
                PaymentPayload.from_payload(payload)
                .model_copy(update={"status": PaymentStatus.REFUNDED, "refunded_by": refund_key})
                .to_payload()
            )

        claimed = self._staff.execute(
            command,
            command.payment_id,
            domain=PolicyDomain.PAYMENT_MANAGEMENT,
            validate=lambda doc, current, now: validate_refund(doc, command, PaymentPayload.from_record(current), now),
            transition=transition,
            expected_version=command.expected_version,
            reason=command.reason,
        )
        if not claimed.ok:
            return claimed

        original = PaymentPayload.from_record(claimed.record)
        refund = PaymentPayload(
            case_id=original.case_id,
            amount=-command.amount,
            currency=original.currency,
            method=original.method,
            status=PaymentStatus.PENDING if claimed.requires_approval else PaymentStatus.SUCCEEDED,
            received_at=claimed.record.valid_from,
            requires_approval=claimed.requires_approval,
            approval_reasons=list(claimed.approval_reasons),
            refund_of=command.payment_id,
            proof_reference=command.proof_reference,
            notes=command.reason,
            policy_version=claimed.policy_version,
        )
        try:
            record = self._store.create(
                command.scope_key, refund.to_payload(), command.actor, business_key=refund_key, reason=command.reason
            )
        except StoreError as exc:
            log.error(
                "refund record not written after claiming original",
                extra={"scope_key": command.scope_key, "business_key": command.payment_id, "refund_key": refund_key},
            )
            return CommandFailed(error=exc, step=STEP_PERSIST)

        log.info(
            "refund processed",
            extra={
                "scope_key": command.scope_key,
                "business_key": command.payment_id,
                "refund_key": refund_key,
                "requires_approval": claimed.requires_approval,
            },
        )
        return CommandSucceeded(
            record=record,
            decision=claimed.decision,
            policy_version=claimed.policy_version,
            related=(claimed.record,),
        )
