"""Temporal versioned-entity store with policy-driven validation (package root)."""

__all__ = [
    "api",
    "core",
    "db",
    "models",
    "repos",
    "schemas",
    "services",
]
