"""
Error taxonomy for the version store, policy resolution and command handling.

- StoreError is the base; every subclass has a stable machine code and an HTTP status.
- Validators never raise these for rule failures; they return Rejected(error) values.
- register_exception_handlers() maps the taxonomy to a consistent JSON shape.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

__all__ = [
    "StoreError",
    "NotFoundError",
    "PolicyNotConfiguredError",
    "ConflictError",
    "ValidationError",
    "StalePolicyError",
    "PersistenceError",
    "ErrorBody",
    "ErrorResponse",
    "register_exception_handlers",
]


# -------------------------------
# Error response models
# -------------------------------

class ErrorBody(BaseModel):
    code: str = Field(..., description="Stable machine-readable error code")
    message: str = Field(..., description="Human-readable, actionable message")
    details: dict = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: ErrorBody
    request_id: Optional[str] = Field(default=None, description="Client-supplied correlation/request id")


# -------------------------------
# Exception types
# -------------------------------

class StoreError(Exception):
    """
    Base error with a machine code, HTTP status and structured details.
    """
    status_code: int = 400
    code: str = "store_error"

    def __init__(self, message: str, *, details: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class NotFoundError(StoreError):
    status_code = 404
    code = "not_found"

    @classmethod
    def for_key(cls, kind: str, scope_key: str, business_key: str, what: str = "current version") -> "NotFoundError":
        return cls(
            f"No {what} of {kind} {business_key!r} in scope {scope_key!r}",
            details={"kind": kind, "scope_key": scope_key, "business_key": business_key},
        )


class PolicyNotConfiguredError(NotFoundError):
    """No active policy exists for a tenant and domain; never replaced by a default."""
    code = "policy_not_configured"

    def __init__(self, scope_key: str, domain: str, *, as_of: Optional[str] = None) -> None:
        if as_of is None:
            message = (
                f"No active {domain} policy is configured for {scope_key!r}. "
                "An administrator must configure one before this action can proceed."
            )
        else:
            message = f"No {domain} policy was in effect for {scope_key!r} at {as_of}."
        details: dict[str, Any] = {"scope_key": scope_key, "domain": domain}
        if as_of is not None:
            details["as_of"] = as_of
        super().__init__(message, details=details)
        self.scope_key = scope_key
        self.domain = domain


class ConflictError(StoreError):
    """Lost an optimistic concurrency race; retry with fresh data."""
    status_code = 409
    code = "conflict"

    @classmethod
    def lost_race(cls, scope_key: str, business_key: str, expected: int, actual: Optional[int]) -> "ConflictError":
        return cls(
            "Someone else just changed this record. Refresh and try again.",
            details={
                "scope_key": scope_key,
                "business_key": business_key,
                "expected_version": expected,
                "current_version": actual,
            },
        )


class ValidationError(StoreError):
    """A command violated the governing policy. Never retried automatically."""
    status_code = 422
    code = "validation_error"

    def __init__(self, field: str, reason: str, *, limit: Any = None, details: Optional[dict] = None) -> None:
        merged = {"field": field, "reason": reason}
        if limit is not None:
            merged["limit"] = limit
        merged.update(details or {})
        super().__init__(f"{field}: {reason}", details=merged)
        self.field = field
        self.reason = reason
        self.limit = limit

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValidationError):
            return NotImplemented
        return (self.field, self.reason, self.limit) == (other.field, other.reason, other.limit)

    def __hash__(self) -> int:
        return hash((self.field, self.reason, repr(self.limit)))


class StalePolicyError(StoreError):
    status_code = 409
    code = "stale_policy"

    def __init__(self, scope_key: str, domain: str, held_version: int, current_version: Optional[int]) -> None:
        super().__init__(
            f"The {domain} policy for {scope_key!r} changed (held v{held_version}, "
            f"current v{current_version}); re-run the action against the current policy.",
            details={
                "scope_key": scope_key,
                "domain": domain,
                "held_version": held_version,
                "current_version": current_version,
            },
        )


class PersistenceError(StoreError):
    status_code = 500
    code = "persistence_error"


# -------------------------------
# Handlers
# -------------------------------

def _json_response(request: Request, exc: StoreError) -> JSONResponse:
    req_id = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")
    # Storage internals are not echoed back to clients
    message = "Internal server error" if isinstance(exc, PersistenceError) else exc.message
    details = {} if isinstance(exc, PersistenceError) else exc.details
    body = ErrorResponse(
        error=ErrorBody(code=exc.code, message=message, details=details),
        request_id=req_id,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, StoreError):
        return _json_response(request, exc)
    return await unhandled_error_handler(request, exc)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    generic = StoreError("Internal server error")
    generic.status_code = 500
    generic.code = "server_error"
    return _json_response(request, generic)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers for the whole taxonomy on the FastAPI app.
    """
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
