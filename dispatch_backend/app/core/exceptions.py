"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("dispatch")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class InvalidRouteTransitionError(AppException):
    """Raised when a route status change would move backwards or leave a terminal state."""

    def __init__(self, route_id: str, current: str, requested: str):
        super().__init__(
            message=f"Route {route_id} cannot move from {current} to {requested}",
            error_code="ERR_ROUTE_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"route_id": route_id, "current": current, "requested": requested}
        )


class RouteAlreadyAcceptedError(AppException):
    """Raised when a courier tries to accept a route that is no longer pending."""

    def __init__(self, route_id: str, current: str):
        super().__init__(
            message=f"Route {route_id} was already accepted",
            error_code="ERR_ROUTE_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"route_id": route_id, "current": current}
        )


class StoreUnavailableError(AppException):
    """Raised when the order/route store cannot complete a transaction."""

    def __init__(self, operation: str, reason: str = ""):
        super().__init__(
            message=f"Dispatch store unavailable during {operation}",
            error_code="ERR_STORE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation, "reason": reason}
        )


class DispatchFailedError(AppException):
    """Raised when even solo dispatch could not be written. Needs an operator."""

    def __init__(self, order_id: str, reason: str = ""):
        super().__init__(
            message=f"Could not dispatch order {order_id}",
            error_code="ERR_DISPATCH_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"order_id": order_id, "reason": reason}
        )


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
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.error(f"Unhandled exception: {type(exc).__name__}: {str(exc)}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
