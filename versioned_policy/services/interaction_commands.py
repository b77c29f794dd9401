"""
Interaction commands: log and complete staff/family interactions.

Completion is retried once on a conflict; logging creates a new lineage and
has nothing to retry.
"""

from __future__ import annotations

from typing import Any, Dict

from versioned_policy.core.clock import Clock, utc_now
from versioned_policy.core.contracts import VersionStore
from versioned_policy.schemas.commands import CompleteInteraction, LogInteraction
from versioned_policy.schemas.entities import InteractionPayload, InteractionStatus
from versioned_policy.schemas.policies import PolicyDomain
from versioned_policy.services.command_pipeline import CommandPipeline, CommandResult
from versioned_policy.services.policy_resolver import PolicyResolver
from versioned_policy.services.validators import validate_interaction_completion, validate_interaction_log

__all__ = ["InteractionCommands"]


class InteractionCommands:
    def __init__(
        self,
        store: VersionStore,
        resolver: PolicyResolver,
        *,
        clock: Clock = utc_now,
        completion_conflict_retries: int = 1,
    ) -> None:
        self._pipeline = CommandPipeline(store, resolver, conflict_retries=completion_conflict_retries, clock=clock)

    def log_interaction(self, command: LogInteraction) -> CommandResult:
        def build(doc, decision, now) -> Dict[str, Any]:
            return InteractionPayload(
                interaction_type=command.interaction_type,
                subject=command.subject.strip(),
                status=InteractionStatus.SCHEDULED if command.scheduled_for else InteractionStatus.OPEN,
                contact_id=command.contact_id,
                case_id=command.case_id,
                scheduled_for=command.scheduled_for,
                notes=command.notes,
            ).to_payload()

        return self._pipeline.execute_create(
            command,
            domain=PolicyDomain.INTERACTION_MANAGEMENT,
            validate=lambda doc, now: validate_interaction_log(doc, command),
            build=build,
        )

    def complete_interaction(self, command: CompleteInteraction) -> CommandResult:
        """
        Mark an interaction completed with its outcome. Re-completing only
        updates the outcome, and only where the policy allows it; the original
        completion time is kept.
        """

        def transition(doc, payload, decision, now) -> Dict[str, Any]:
            interaction = InteractionPayload.from_payload(payload)
            return interaction.model_copy(
                update={
                    "status": InteractionStatus.COMPLETED,
                    "outcome": command.outcome.strip(),
                    "duration_minutes": command.duration_minutes,
                    "completed_at": interaction.completed_at or now,
                }
            ).to_payload()

        return self._pipeline.execute(
            command,
            command.interaction_id,
            domain=PolicyDomain.INTERACTION_MANAGEMENT,
            validate=lambda doc, current, now: validate_interaction_completion(
                doc, command, InteractionPayload.from_record(current)
            ),
            transition=transition,
            expected_version=command.expected_version,
        )
