"""
Unified API Error Response System.

Every failed request returns the same envelope:

    {error, code, reason, message, status_code, timestamp, request_id, path, details}

RBAC exceptions are mapped by class:
- NotFoundError          -> 404 RESOURCE_NOT_FOUND
- ConflictError          -> 409 RESOURCE_CONFLICT
- PolicyViolationError   -> 403 POLICY_VIOLATION
- ValidationError        -> 400 VALIDATION_ERROR
- StorageFailure         -> 500 SERVER_DATABASE_ERROR (no internal detail)

Usage:
    from web.api_errors import APIError, ErrorCode, register_exception_handlers

    register_exception_handlers(app)
    raise APIError(ErrorCode.AUTH_REQUIRED, "X-User-Id header is required")
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from rbac.errors import (
    ConflictError,
    NotFoundError,
    PolicyViolationError,
    RBACError,
    StorageFailure,
    ValidationError,
)
from services.logging_config import request_id_var

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CODES
# =============================================================================


class ErrorCode(str, Enum):
    """
    Standardized error codes for API responses.

    Categories:
    - AUTH_*: Missing or malformed caller identity (400, 401)
    - VALIDATION_*: Input validation errors (400)
    - RESOURCE_*: Resource-related errors (404, 409)
    - POLICY_*: Invariant or access-policy violations (403)
    - SERVER_*: Server-side errors (500)
    """

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID_IDENTITY = "AUTH_INVALID_IDENTITY"

    VALIDATION_ERROR = "VALIDATION_ERROR"

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    POLICY_VIOLATION = "POLICY_VIOLATION"

    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"

    SERVER_INTERNAL_ERROR = "SERVER_INTERNAL_ERROR"
    SERVER_DATABASE_ERROR = "SERVER_DATABASE_ERROR"


ERROR_CODE_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.AUTH_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.AUTH_INVALID_IDENTITY: status.HTTP_400_BAD_REQUEST,
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.RESOURCE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.RESOURCE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.POLICY_VIOLATION: status.HTTP_403_FORBIDDEN,
    ErrorCode.METHOD_NOT_ALLOWED: status.HTTP_405_METHOD_NOT_ALLOWED,
    ErrorCode.SERVER_INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.SERVER_DATABASE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# Most specific class first: ConflictError is a PolicyViolationError
RBAC_ERROR_CODES: List[Tuple[Type[RBACError], ErrorCode]] = [
    (NotFoundError, ErrorCode.RESOURCE_NOT_FOUND),
    (ConflictError, ErrorCode.RESOURCE_CONFLICT),
    (PolicyViolationError, ErrorCode.POLICY_VIOLATION),
    (ValidationError, ErrorCode.VALIDATION_ERROR),
    (StorageFailure, ErrorCode.SERVER_DATABASE_ERROR),
]


def error_code_for(exc: RBACError) -> ErrorCode:
    for error_type, code in RBAC_ERROR_CODES:
        if isinstance(exc, error_type):
            return code
    return ErrorCode.SERVER_INTERNAL_ERROR


# =============================================================================
# ERROR RESPONSE MODELS
# =============================================================================


class FieldError(BaseModel):
    """Individual field validation error."""
    field: str = Field(..., description="Field name that caused the error")
    message: str = Field(..., description="Error message for this field")
    code: str = Field(default="invalid", description="Error code for this field")


class ErrorResponse(BaseModel):
    """
    Standardized API error response.

    All API errors return this format for consistent client handling.
    """
    error: bool = Field(default=True, description="Always true for errors")
    code: str = Field(..., description="Error code from ErrorCode enum")
    reason: str = Field(..., description="Machine-readable failure reason")
    message: str = Field(..., description="Human-readable error message")
    status_code: int = Field(..., description="HTTP status code")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    request_id: str = Field(..., description="Unique request identifier for tracking")
    path: Optional[str] = Field(None, description="Request path that caused the error")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    field_errors: Optional[List[FieldError]] = Field(None, description="Field-specific validation errors")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": True,
                "code": "POLICY_VIOLATION",
                "reason": "baseline_role_protected",
                "message": "Cannot delete the Voter role; it is the baseline role for all users",
                "status_code": 403,
                "timestamp": "2026-01-29T12:00:00Z",
                "request_id": "550e8400-e29b-41d4-a716-446655440000",
                "path": "/api/assignments",
                "details": {"user_id": 42, "role_name": "Voter"},
            }
        }
    }


def _timestamp() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


# =============================================================================
# API ERROR EXCEPTION
# =============================================================================


class APIError(Exception):
    """
    Exception for transport-level errors that are not RBAC failures
    (for example a missing X-User-Id header).

    Usage:
        raise APIError(
            code=ErrorCode.AUTH_REQUIRED,
            message="X-User-Id header is required",
        )
    """

    def __init__(
        self,
        code: Union[ErrorCode, str],
        message: str,
        reason: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code if isinstance(code, ErrorCode) else ErrorCode(code)
        self.message = message
        self.reason = reason or self.code.value.lower()
        self.status_code = status_code or ERROR_CODE_STATUS_MAP.get(
            self.code, status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        self.details = details
        super().__init__(message)

    def to_response(self, request_id: str, path: Optional[str] = None) -> ErrorResponse:
        """Convert to ErrorResponse model."""
        return ErrorResponse(
            code=self.code.value,
            reason=self.reason,
            message=self.message,
            status_code=self.status_code,
            timestamp=_timestamp(),
            request_id=request_id,
            path=path,
            details=self.details,
        )


def get_request_id(request: Request) -> str:
    """Get or generate request ID for tracking."""
    request_id = request.headers.get("X-Request-ID")
    if not request_id:
        request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = str(uuid.uuid4())
    return request_id


def _json(response: ErrorResponse, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=response.status_code,
        content=response.model_dump(exclude_none=False),
        headers={"X-Request-ID": request_id},
    )


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""

    @app.exception_handler(RBACError)
    async def rbac_error_handler(request: Request, exc: RBACError) -> JSONResponse:
        """Handle recognised RBAC failures."""
        request_id = get_request_id(request)
        code = error_code_for(exc)
        status_code = ERROR_CODE_STATUS_MAP[code]

        if isinstance(exc, StorageFailure):
            # Already logged with the traceback where it was raised
            message = exc.message
            details = {"support": f"Reference ID: {request_id}"}
        else:
            logger.warning(
                f"[{request_id}] {type(exc).__name__}: {exc.reason} - {exc.message}",
                extra={
                    "request_id": request_id,
                    "reason": exc.reason,
                    "status_code": status_code,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            message = exc.message
            details = exc.details or None

        response = ErrorResponse(
            code=code.value,
            reason=exc.reason,
            message=message,
            status_code=status_code,
            timestamp=_timestamp(),
            request_id=request_id,
            path=request.url.path,
            details=details,
        )
        return _json(response, request_id)

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        """Handle transport-level APIError exceptions."""
        request_id = get_request_id(request)
        logger.warning(
            f"[{request_id}] APIError: {exc.code.value} - {exc.message}",
            extra={
                "request_id": request_id,
                "error_code": exc.code.value,
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return _json(exc.to_response(request_id, request.url.path), request_id)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle Pydantic validation errors as 400s."""
        request_id = get_request_id(request)

        field_errors = []
        for error in exc.errors():
            field_path = ".".join(str(loc) for loc in error["loc"] if loc not in ("body", "query", "path"))
            field_errors.append(
                FieldError(field=field_path or "body", message=error["msg"], code=error["type"])
            )

        logger.warning(
            f"[{request_id}] Validation error: {len(field_errors)} field(s)",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
            },
        )

        missing = any(fe.code == "missing" for fe in field_errors)
        response = ErrorResponse(
            code=ErrorCode.VALIDATION_ERROR.value,
            reason="missing_field" if missing else "invalid_request",
            message="Request validation failed",
            status_code=status.HTTP_400_BAD_REQUEST,
            timestamp=_timestamp(),
            request_id=request_id,
            path=request.url.path,
            field_errors=field_errors,
        )
        return _json(response, request_id)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle standard HTTP exceptions (unknown routes, wrong methods)."""
        request_id = get_request_id(request)

        status_to_code = {
            400: ErrorCode.VALIDATION_ERROR,
            401: ErrorCode.AUTH_REQUIRED,
            403: ErrorCode.POLICY_VIOLATION,
            404: ErrorCode.RESOURCE_NOT_FOUND,
            405: ErrorCode.METHOD_NOT_ALLOWED,
            409: ErrorCode.RESOURCE_CONFLICT,
        }
        error_code = status_to_code.get(exc.status_code, ErrorCode.SERVER_INTERNAL_ERROR)

        response = ErrorResponse(
            code=error_code.value,
            reason=error_code.value.lower(),
            message=str(exc.detail) if exc.detail else "An error occurred",
            status_code=exc.status_code,
            timestamp=_timestamp(),
            request_id=request_id,
            path=request.url.path,
        )
        return _json(response, request_id)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global catch-all exception handler.

        SECURITY: Never expose internal error details to clients.
        """
        request_id = get_request_id(request)

        logger.error(
            f"[{request_id}] Unhandled exception: {type(exc).__name__}",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=exc,
        )

        response = ErrorResponse(
            code=ErrorCode.SERVER_INTERNAL_ERROR.value,
            reason="internal_error",
            message="An unexpected error occurred. Please try again later.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            timestamp=_timestamp(),
            request_id=request_id,
            path=request.url.path,
            details={"support": f"Reference ID: {request_id}"},
        )
        return _json(response, request_id)


# =============================================================================
# REQUEST ID MIDDLEWARE
# =============================================================================


class RequestIDMiddleware:
    """
    Middleware to add request ID to all requests.

    The id is stored on the request state, stamped onto log records through
    ``request_id_var`` and echoed in the ``X-Request-ID`` response header.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())

        scope.setdefault("state", {})
        scope["state"]["request_id"] = request_id
        token = request_id_var.set(request_id)

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                response_headers = [
                    (k, v) for k, v in message.get("headers", []) if k.lower() != b"x-request-id"
                ]
                response_headers.append((b"x-request-id", request_id.encode()))
                message["headers"] = response_headers
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            request_id_var.reset(token)
