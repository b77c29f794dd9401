"""
FastAPI application exposing the read-only audit views.

- Registers the error-taxonomy handlers.
- Initializes structured logging.
- Includes infra routes (health/version) and the audit router.

Run locally:
  uvicorn versioned_policy.main:app --reload --port 8000
"""

from __future__ import annotations

import os

from fastapi import APIRouter, FastAPI

from versioned_policy.api.router import router as api_router
from versioned_policy.core.config import get_settings
from versioned_policy.core.errors import register_exception_handlers
from versioned_policy.core.logging import init_logging


def _create_infra_router() -> APIRouter:
    router = APIRouter(prefix="/api", tags=["infra"])

    @router.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @router.get("/version")
    def version() -> dict:
        return {"version": os.getenv("APP_VERSION", "0.1.0"), "env": get_settings().app_env}

    return router


def get_application() -> FastAPI:
    """
    Construct the FastAPI app with logging, routers, and error handlers.
    """
    init_logging()

    app = FastAPI(title="Versioned Policy Store", version=os.getenv("APP_VERSION", "0.1.0"))
    app.include_router(_create_infra_router())
    app.include_router(api_router)
    register_exception_handlers(app)
    return app


# ASGI application
app = get_application()
