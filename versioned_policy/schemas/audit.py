"""
Pydantic response models for the read-only audit API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from versioned_policy.models.record import VersionedRecord


class VersionOut(BaseModel):
    """One version row of any lineage."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    scope_key: str
    business_key: str
    version: int = Field(..., ge=1)
    valid_from: datetime
    valid_to: Optional[datetime] = None
    is_current: bool
    payload: Dict[str, Any]
    created_by: str
    created_at: datetime
    lineage_created_by: str
    lineage_created_at: datetime
    reason: Optional[str] = None

    @classmethod
    def from_record(cls, record: VersionedRecord) -> "VersionOut":
        return cls.model_validate(record)


class LineageOut(BaseModel):
    scope_key: str
    business_key: str
    versions: List[VersionOut]


class PolicySummary(BaseModel):
    domain: str
    version: int
    valid_from: datetime
    created_by: str
    reason: Optional[str] = None
    document: Dict[str, Any]


class CurrentPoliciesOut(BaseModel):
    scope_key: str
    items: List[PolicySummary]
    total: int


class PolicyVersionGroup(BaseModel):
    policy_version: Optional[int] = None
    business_keys: List[str]


class GovernedEntitiesOut(BaseModel):
    scope_key: str
    kind: str
    groups: List[PolicyVersionGroup]


__all__ = [
    "VersionOut",
    "LineageOut",
    "PolicySummary",
    "CurrentPoliciesOut",
    "PolicyVersionGroup",
    "GovernedEntitiesOut",
]
