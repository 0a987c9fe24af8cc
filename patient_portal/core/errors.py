"""API error classes.

HTTP status codes and error codes shared by services and endpoints.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Type-safe error handling in services/repositories
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for request body validation errors and rejected field changes.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class UnauthorizedError(APIError):
    """Authentication required (401).

    Use when no valid session credentials provided.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class AlreadyConfirmedError(APIError):
    """Account is already confirmed (422)."""

    def __init__(self) -> None:
        super().__init__(
            code="ALREADY_CONFIRMED",
            message="Account is already confirmed",
            status_code=422,
        )


class InvalidTokenError(APIError):
    """Token could not be verified (400).

    Every verification failure surfaces with the same code and message.
    Subclasses exist for logging and tests only; callers outside the token
    core must never branch on them or expose which check failed.
    """

    def __init__(self) -> None:
        super().__init__(
            code="INVALID_TOKEN",
            message="Invalid or expired token",
            status_code=400,
        )


class TokenNotFoundError(InvalidTokenError):
    """No token matches the value and context."""


class TokenExpiredError(InvalidTokenError):
    """Token exists but is older than its context's validity window."""


class DestinationMismatchError(InvalidTokenError):
    """Patient's contact field changed after the token was sent."""


class MalformedTokenError(InvalidTokenError):
    """Token value cannot be decoded."""


class StorageError(APIError):
    """Backing store failed (503).

    Never folded into InvalidTokenError: a store outage is not an invalid token.
    """

    def __init__(self, message: str = "Storage temporarily unavailable") -> None:
        super().__init__(
            code="STORAGE_ERROR",
            message=message,
            status_code=503,
        )


class DeliveryError(APIError):
    """Notification could not be delivered (502)."""

    def __init__(self, message: str = "Notification delivery failed") -> None:
        super().__init__(
            code="DELIVERY_FAILED",
            message=message,
            status_code=502,
        )
