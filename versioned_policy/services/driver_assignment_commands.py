"""
Driver assignments: audit-tracked, not governed by a tenant policy.

Every status change is a new version; cancelling writes a terminal CANCELLED
version. Status updates come from drivers' devices as well as dispatch, so they
are retried once on conflict.
"""

from __future__ import annotations

from typing import Any, Dict

from versioned_policy.core.clock import Clock, utc_now
from versioned_policy.core.contracts import VersionStore
from versioned_policy.schemas.commands import AssignDriver, CancelAssignment, UpdateAssignmentStatus
from versioned_policy.schemas.entities import AssignmentStatus, DriverAssignmentPayload
from versioned_policy.services.command_pipeline import CommandPipeline, CommandResult
from versioned_policy.services.decisions import ACCEPTED
from versioned_policy.services.validators import validate_assignment_transition

__all__ = ["DriverAssignmentCommands"]


class DriverAssignmentCommands:
    def __init__(self, store: VersionStore, *, clock: Clock = utc_now, conflict_retries: int = 1) -> None:
        self._pipeline = CommandPipeline(store, None, conflict_retries=conflict_retries, clock=clock)

    def assign(self, command: AssignDriver) -> CommandResult:
        payload = DriverAssignmentPayload(
            driver_id=command.driver_id,
            vehicle_id=command.vehicle_id,
            case_id=command.case_id,
            event_type=command.event_type,
            scheduled_at=command.scheduled_at,
            pickup_location=command.pickup_location,
            dropoff_location=command.dropoff_location,
            notes=command.notes,
        ).to_payload()
        return self._pipeline.execute_create(
            command,
            domain=None,
            validate=lambda doc, now: ACCEPTED,
            build=lambda doc, decision, now: payload,
        )

    def _move(self, command: Any, assignment_id: str, target: AssignmentStatus, **update: Any) -> CommandResult:
        def transition(doc, payload, decision, now) -> Dict[str, Any]:
            return (
                DriverAssignmentPayload.from_payload(payload)
                .model_copy(update={"status": target, **update})
                .to_payload()
            )

        return self._pipeline.execute(
            command,
            assignment_id,
            domain=None,
            validate=lambda doc, current, now: validate_assignment_transition(
                DriverAssignmentPayload.from_record(current), target
            ),
            transition=transition,
            expected_version=getattr(command, "expected_version", None),
            reason=update.get("cancelled_reason"),
        )

    def update_status(self, command: UpdateAssignmentStatus) -> CommandResult:
        return self._move(command, command.assignment_id, command.status)

    def cancel(self, command: CancelAssignment) -> CommandResult:
        return self._move(command, command.assignment_id, AssignmentStatus.CANCELLED, cancelled_reason=command.reason)
