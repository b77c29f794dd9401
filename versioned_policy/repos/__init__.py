"""Version store implementations."""

from versioned_policy.repos.memory_store import InMemoryVersionStore
from versioned_policy.repos.sql_store import SqlAlchemyVersionStore

__all__ = ["InMemoryVersionStore", "SqlAlchemyVersionStore"]
