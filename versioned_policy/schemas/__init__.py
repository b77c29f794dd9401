"""Pydantic policy documents, entity payloads and command objects."""

__all__ = ["policies", "entities", "commands", "audit"]
