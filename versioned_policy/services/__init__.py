"""Policy resolution, validators, command pipeline and per-domain handlers."""

__all__ = [
    "decisions",
    "validators",
    "policy_resolver",
    "policy_admin",
    "command_pipeline",
    "payment_commands",
    "interaction_commands",
    "contact_commands",
    "calendar_sync_commands",
    "invitation_commands",
    "driver_assignment_commands",
    "audit",
]
