"""Declarative base, column types and engine/session wiring."""

__all__ = ["base", "session", "types"]
