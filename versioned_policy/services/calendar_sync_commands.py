"""
Calendar sync: attach an external calendar event to an interaction.

The interaction records the sync policy version separately
(``calendar_policy_version``) so it does not overwrite the interaction policy
version that governed the interaction itself. Retried once on conflict since
sync runs as a background job next to staff edits.
"""

from __future__ import annotations

from typing import Any, Dict

from versioned_policy.core.clock import Clock, utc_now
from versioned_policy.core.contracts import VersionStore
from versioned_policy.schemas.commands import SyncInteractionToCalendar
from versioned_policy.schemas.entities import CalendarEvent, InteractionPayload
from versioned_policy.schemas.policies import EmailCalendarSyncPolicy, PolicyDomain
from versioned_policy.services.command_pipeline import CommandPipeline, CommandResult
from versioned_policy.services.policy_resolver import PolicyResolver
from versioned_policy.services.validators import calendar_event_window, validate_calendar_sync

__all__ = ["CalendarSyncCommands", "synced_fields"]


def synced_fields(policy: EmailCalendarSyncPolicy) -> list[str]:
    mappings = policy.calendar_field_mappings.model_dump()
    return sorted(name for name, enabled in mappings.items() if enabled)


class CalendarSyncCommands:
    def __init__(
        self,
        interaction_store: VersionStore,
        resolver: PolicyResolver,
        *,
        clock: Clock = utc_now,
        conflict_retries: int = 1,
    ) -> None:
        self._pipeline = CommandPipeline(interaction_store, resolver, conflict_retries=conflict_retries, clock=clock)

    def sync_interaction_to_calendar(self, command: SyncInteractionToCalendar) -> CommandResult:
        def transition(doc, payload, decision, now) -> Dict[str, Any]:
            start, end = calendar_event_window(doc, command)
            event = CalendarEvent(
                provider=command.provider,
                external_event_id=command.external_event_id,
                start=start,
                end=end,
                timezone=command.timezone or "UTC",
                synced_fields=synced_fields(doc),
                synced_at=now,
            )
            return InteractionPayload.from_payload(payload).model_copy(update={"calendar_event": event}).to_payload()

        return self._pipeline.execute(
            command,
            command.interaction_id,
            domain=PolicyDomain.EMAIL_CALENDAR_SYNC,
            validate=lambda doc, current, now: validate_calendar_sync(doc, command),
            transition=transition,
            expected_version=command.expected_version,
            stamp_field="calendar_policy_version",
        )
