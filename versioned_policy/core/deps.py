"""
Dependency wiring for stores, the policy resolver and command handlers.

This module exposes factory functions that construct concrete implementations
behind the VersionStore protocol. It must not contain business logic.

Provided factories:
- get_store_factory: kind -> VersionStore (FastAPI dependency)
- get_policy_store / get_policy_resolver (FastAPI dependencies)
- build_handlers: every command handler over one session factory, for
  background workers and scripts
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from versioned_policy.core.clock import Clock, utc_now
from versioned_policy.core.config import get_settings
from versioned_policy.core.contracts import VersionStore
from versioned_policy.db.session import get_session_factory
from versioned_policy.repos.sql_store import SqlAlchemyVersionStore
from versioned_policy.schemas.entities import EntityKind
from versioned_policy.services.calendar_sync_commands import CalendarSyncCommands
from versioned_policy.services.contact_commands import ContactCommands
from versioned_policy.services.driver_assignment_commands import DriverAssignmentCommands
from versioned_policy.services.interaction_commands import InteractionCommands
from versioned_policy.services.invitation_commands import InvitationCommands
from versioned_policy.services.payment_commands import PaymentCommands
from versioned_policy.services.policy_admin import PolicyAdmin
from versioned_policy.services.policy_resolver import POLICY_KIND, PolicyResolver

__all__ = [
    "StoreFactory",
    "get_store_factory",
    "get_policy_store",
    "get_policy_resolver",
    "Handlers",
    "build_handlers",
]

StoreFactory = Callable[[str], VersionStore]


# -------------------------------
# Store Providers
# -------------------------------

def get_store_factory() -> StoreFactory:
    """Provide a factory that builds a SQL-backed store for a given kind."""
    session_factory = get_session_factory()

    def factory(kind: str) -> VersionStore:
        return SqlAlchemyVersionStore(session_factory, kind)

    return factory


def get_policy_store(stores: StoreFactory = Depends(get_store_factory)) -> VersionStore:
    return stores(POLICY_KIND)


def get_policy_resolver(store: VersionStore = Depends(get_policy_store)) -> PolicyResolver:
    return PolicyResolver(store)


# -------------------------------
# Command handlers
# -------------------------------

@dataclass(frozen=True)
class Handlers:
    policy_admin: PolicyAdmin
    resolver: PolicyResolver
    payments: PaymentCommands
    interactions: InteractionCommands
    contacts: ContactCommands
    calendar_sync: CalendarSyncCommands
    invitations: InvitationCommands
    driver_assignments: DriverAssignmentCommands


def build_handlers(
    session_factory: Optional[sessionmaker[Session]] = None,
    *,
    clock: Clock = utc_now,
    conflict_retries: Optional[int] = None,
) -> Handlers:
    """
    Wire every handler over one session factory.

    ``conflict_retries`` (default: CONFLICT_RETRIES from settings) applies to the
    handlers that retry at all: payment status transitions, interaction
    completion, calendar sync and driver assignment updates.
    """
    factory = session_factory or get_session_factory()
    retries = get_settings().conflict_retries if conflict_retries is None else conflict_retries

    def store(kind: str) -> SqlAlchemyVersionStore:
        return SqlAlchemyVersionStore(factory, kind, clock=clock)

    policies = store(POLICY_KIND)
    resolver = PolicyResolver(policies)
    interactions = store(EntityKind.INTERACTION.value)
    return Handlers(
        policy_admin=PolicyAdmin(policies),
        resolver=resolver,
        payments=PaymentCommands(
            store(EntityKind.PAYMENT.value), resolver, clock=clock, status_conflict_retries=retries
        ),
        interactions=InteractionCommands(interactions, resolver, clock=clock, completion_conflict_retries=retries),
        contacts=ContactCommands(store(EntityKind.CONTACT.value), resolver, clock=clock),
        calendar_sync=CalendarSyncCommands(interactions, resolver, clock=clock, conflict_retries=retries),
        invitations=InvitationCommands(store(EntityKind.INVITATION.value), resolver, clock=clock),
        driver_assignments=DriverAssignmentCommands(
            store(EntityKind.DRIVER_ASSIGNMENT.value), clock=clock, conflict_retries=retries
        ),
    )
