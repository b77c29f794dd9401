"""Cross-cutting concerns: configuration, logging, errors, clock and store contracts."""

__all__ = ["clock", "config", "contracts", "errors", "logging", "deps"]
