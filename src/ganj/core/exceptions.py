"""Errors that map to HTTP responses.

Each subclass fixes an error code and status; the handler in ``main``
renders them as ``{"error": {"code", "message", "request_id", "details"}}``.
Messages shown to Persian readers (contact form) are in Persian.

Data source clients raise their own plain exceptions (``GanjoorApiError``,
``CatalogError``); routes translate them into the errors below.

Usage:
    from ganj.core.exceptions import PoemNotFoundError

    raise PoemNotFoundError(poem_id=2133)
"""

from typing import Any


class GanjError(Exception):
    """Base exception for all Ganj errors.

    Attributes:
        code: Machine-readable error code (e.g., "POEM_NOT_FOUND")
        message: Human-readable error message
        status_code: HTTP status code to return
        details: Additional error details (optional)
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Override default message
            code: Override default error code
            details: Additional error details
        """
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        """Convert exception to API error response format.

        Args:
            request_id: Request correlation ID

        Returns:
            Error response dictionary
        """
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if request_id:
            error["request_id"] = request_id
        if self.details:
            error["details"] = self.details
        return {"error": error}


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class NotFoundError(GanjError):
    """Base class for resource not found errors."""

    code: str = "NOT_FOUND"
    message: str = "Resource not found"
    status_code: int = 404


class PoetNotFoundError(NotFoundError):
    """Raised when a poet cannot be found in any data source."""

    code: str = "POET_NOT_FOUND"
    message: str = "Poet not found"

    def __init__(self, poet_id: int | None = None, message: str | None = None) -> None:
        """Initialize with optional poet ID."""
        details: dict[str, Any] = {}
        if poet_id is not None:
            details["poet_id"] = poet_id
            if not message:
                message = f"Poet with ID {poet_id} not found"

        super().__init__(message=message, details=details if details else None)


class CategoryNotFoundError(NotFoundError):
    """Raised when a category or chapter cannot be found."""

    code: str = "CATEGORY_NOT_FOUND"
    message: str = "Category not found"

    def __init__(
        self,
        category_id: int | None = None,
        poet_id: int | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize with optional identifiers."""
        details: dict[str, Any] = {}
        if category_id is not None:
            details["category_id"] = category_id
        if poet_id is not None:
            details["poet_id"] = poet_id

        if not message and category_id is not None:
            message = f"Category with ID {category_id} not found"

        super().__init__(message=message, details=details if details else None)


class PoemNotFoundError(NotFoundError):
    """Raised when a poem cannot be found."""

    code: str = "POEM_NOT_FOUND"
    message: str = "Poem not found"

    def __init__(self, poem_id: int | None = None, message: str | None = None) -> None:
        """Initialize with optional poem ID."""
        details: dict[str, Any] = {}
        if poem_id is not None:
            details["poem_id"] = poem_id
            if not message:
                message = f"Poem with ID {poem_id} not found"

        super().__init__(message=message, details=details if details else None)


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(GanjError):
    """Raised when input validation fails."""

    code: str = "VALIDATION_ERROR"
    message: str = "Validation error"
    status_code: int = 400

    def __init__(
        self,
        message: str | None = None,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize with optional field information."""
        if details is None:
            details = {}
        if field:
            details["field"] = field
        super().__init__(message=message, details=details if details else None)


class ContactValidationError(ValidationError):
    """Raised when a contact form submission is rejected."""

    code: str = "INVALID_CONTACT_MESSAGE"
    message: str = "درخواست نامعتبر است."


class SearchQueryError(ValidationError):
    """Raised when search parameters are invalid."""

    code: str = "INVALID_SEARCH_QUERY"
    message: str = "Invalid search query"


# =============================================================================
# External Service Errors (502, 503)
# =============================================================================


class ExternalServiceError(GanjError):
    """Base class for external service errors."""

    code: str = "EXTERNAL_SERVICE_ERROR"
    message: str = "External service error"
    status_code: int = 502


class PoetrySourceError(ExternalServiceError):
    """Raised when no data source could serve a poetry request."""

    code: str = "POETRY_SOURCE_ERROR"
    message: str = "Failed to fetch poetry data"


class NotificationError(ExternalServiceError):
    """Raised when the notification email could not be sent."""

    code: str = "NOTIFICATION_ERROR"
    message: str = "Failed to send notification"


class StorageError(GanjError):
    """Raised when a write to the database fails."""

    code: str = "STORAGE_ERROR"
    message: str = "خطایی رخ داد. لطفاً دوباره تلاش کنید."
    status_code: int = 500


class ServiceUnavailableError(GanjError):
    """Raised when a required component is not initialized yet."""

    code: str = "SERVICE_UNAVAILABLE"
    message: str = "Service temporarily unavailable"
    status_code: int = 503
