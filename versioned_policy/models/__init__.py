"""Record value type and ORM row model."""

from versioned_policy.models.record import VersionedRecord

__all__ = ["VersionedRecord"]
