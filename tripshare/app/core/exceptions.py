"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised when trip or request input is malformed."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


class AuthorizationError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class NotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class ConflictError(AppException):
    """Raised when an operation conflicts with the current state of a resource."""

    def __init__(self, message: str, error_code: str = "ERR_CONFLICT_001", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class InvalidTransitionError(ConflictError):
    """Raised when a trip status change is not in the transition table."""

    def __init__(self, trip_id: Optional[int], current: str, target: str):
        super().__init__(
            message=f"Trip cannot move from '{current}' to '{target}'",
            error_code="ERR_TRANSITION_001",
            details={"trip_id": trip_id, "current_status": current, "target_status": target}
        )


class CapacityExceededError(AppException):
    """Raised when a join would put more passengers on a vehicle than it seats."""

    def __init__(self, current: int, capacity: int, requested: int = 1):
        shortfall = current + requested - capacity
        super().__init__(
            message=(
                f"Vehicle is full: {current} of {capacity} seats taken, "
                f"{shortfall} seat(s) short"
            ),
            error_code="ERR_CAPACITY_001",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "current": current,
                "capacity": capacity,
                "requested": requested,
                "shortfall": shortfall,
            }
        )
        self.current = current
        self.capacity = capacity


class TokenError(AppException):
    """Raised for expired, invalid or already-used approval links."""

    EXPIRED = "expired"
    INVALID = "invalid"
    REUSED = "reused"

    _MESSAGES = {
        EXPIRED: "This approval link has expired",
        INVALID: "This approval link is invalid",
        REUSED: "This approval link has already been used",
    }

    def __init__(self, reason: str, trip_id: Optional[int] = None):
        super().__init__(
            message=self._MESSAGES.get(reason, self._MESSAGES[self.INVALID]),
            error_code=f"ERR_TOKEN_{reason.upper()}",
            status_code=status.HTTP_410_GONE if reason == self.EXPIRED else status.HTTP_400_BAD_REQUEST,
            details={"outcome": reason, "trip_id": trip_id}
        )
        self.reason = reason
        self.trip_id = trip_id


class TransientInfrastructureError(AppException):
    """Raised when a store or network dependency is temporarily unavailable."""

    def __init__(self, message: str = "A dependency is temporarily unavailable", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_INFRA_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )


class TransactionFailedError(AppException):
    """Raised when a multi-step transaction was rolled back as a whole."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(
            message=f"{operation} failed and was rolled back",
            error_code="ERR_TXN_001",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"operation": operation, "cause": type(cause).__name__}
        )
        self.cause = cause


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
