"""
VersionedRow model.

One row per version of a lineage. Rows of every entity kind share the table and
are partitioned by ``kind``; all uniqueness and currency rules are scoped to
(kind, scope_key, business_key).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from versioned_policy.db.base import Base
from versioned_policy.db.types import UTCDateTime
from versioned_policy.models.record import VersionedRecord


class VersionedRow(Base):
    __tablename__ = "versioned_record"
    __table_args__ = (
        UniqueConstraint("kind", "scope_key", "business_key", "version", name="uq_versioned_record_lineage_version"),
        CheckConstraint("version >= 1", name="version_min"),
        CheckConstraint(
            "(is_current AND valid_to IS NULL) OR (NOT is_current AND valid_to IS NOT NULL)",
            name="open_iff_no_valid_to",
        ),
        # At most one open row per lineage, enforced by the engine
        Index(
            "uq_versioned_record_one_current",
            "kind",
            "scope_key",
            "business_key",
            unique=True,
            sqlite_where=text("is_current = 1"),
            postgresql_where=text("is_current"),
        ),
        Index("ix_versioned_record_scope_current", "kind", "scope_key", "is_current"),
    )

    # Per-version row id (uuid4 string)
    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    scope_key: Mapped[str] = mapped_column(String(255), nullable=False)
    business_key: Mapped[str] = mapped_column(String(255), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    valid_from: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    valid_to: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Audit: this version
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Audit: the lineage (copied from version 1)
    lineage_created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    lineage_created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def to_record(self) -> VersionedRecord:
        return VersionedRecord(
            id=self.id,
            scope_key=self.scope_key,
            business_key=self.business_key,
            version=self.version,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            is_current=self.is_current,
            payload=dict(self.payload or {}),
            created_by=self.created_by,
            created_at=self.created_at,
            lineage_created_by=self.lineage_created_by,
            lineage_created_at=self.lineage_created_at,
            reason=self.reason,
        )

    def __repr__(self) -> str:
        return (
            f"<VersionedRow kind={self.kind!r} scope={self.scope_key!r} key={self.business_key!r} "
            f"v={self.version!r} current={self.is_current!r}>"
        )
