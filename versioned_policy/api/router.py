"""
Shared API router.

Aggregates sub-routers from versioned_policy.api.routes.*. No top-level prefix:
each sub-router owns its path under /api/...
"""

from __future__ import annotations

from fastapi import APIRouter

from versioned_policy.api.routes import audit

__all__ = ["router"]

router = APIRouter()
router.include_router(audit.router)
