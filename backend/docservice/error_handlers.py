"""
Error handling for the retention API

Provides:
- Custom exception classes
- Exception handlers for FastAPI
- Standardized error responses
"""
import logging
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)

HTTP_422 = 422


class APIError(Exception):
    """Base class for API exceptions"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR"
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


class NotFoundError(APIError):
    """Resource not found"""

    def __init__(self, message: str = "Resource not found", resource_type: str = "resource"):
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND"
        )
        self.resource_type = resource_type


class BadRequestError(APIError):
    """Invalid retention configuration or request"""

    def __init__(self, message: str = "Invalid request"):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="BAD_REQUEST"
        )


class ConflictError(APIError):
    """Request conflicts with current state (e.g. a job already running)"""

    def __init__(self, message: str = "Conflict", details: dict = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="CONFLICT"
        )
        self.details = details or {}


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API exceptions"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"API error: {exc.error_code} - {exc.message}",
        extra={"path": request.url.path}
    )

    content = {
        "error": exc.error_code,
        "message": exc.message,
        "path": request.url.path
    }
    details = getattr(exc, "details", None)
    if details:
        content["details"] = details

    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic request validation errors"""
    errors = exc.errors()

    logger.warning(
        f"Validation error: {errors}",
        extra={"path": request.url.path}
    )

    return JSONResponse(
        status_code=HTTP_422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": [
                {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
                for error in errors
            ],
            "path": request.url.path
        }
    )


async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy database errors"""
    logger.error(
        f"Database error: {str(exc)}",
        extra={"path": request.url.path},
        exc_info=True
    )

    if isinstance(exc, IntegrityError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "error": "INTEGRITY_ERROR",
                "message": "Database integrity constraint violated",
                "path": request.url.path
            }
        )
    elif isinstance(exc, OperationalError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "error": "DATABASE_UNAVAILABLE",
                "message": "Database is currently unavailable",
                "path": request.url.path
            }
        )
    else:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "DATABASE_ERROR",
                "message": "An unexpected database error occurred",
                "path": request.url.path
            }
        )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={"path": request.url.path},
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "path": request.url.path
        }
    )


def register_error_handlers(app):
    """Register all error handlers with the FastAPI app"""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    logger.info("Error handlers registered")
