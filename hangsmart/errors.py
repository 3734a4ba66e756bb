"""Custom exception classes for the application."""


class AppError(Exception):
    """Base application error class."""

    kind = "error"

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ValidationError(AppError):
    """Raised when user input fails validation."""

    kind = "validation"

    def __init__(self, message="Validation failed."):
        """Initialize the error."""
        super().__init__(message, 400)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    kind = "not_found"

    def __init__(self, message="Resource not found."):
        """Initialize the error."""
        super().__init__(message, 404)


class NotAMemberError(AppError):
    """Raised when a caller acts on a group they have not joined."""

    kind = "not_a_member"

    def __init__(self, message="You are not a member of this group."):
        """Initialize the error."""
        super().__init__(message, 403)


class ConflictError(AppError):
    """Raised when an optimistic write keeps losing to concurrent writers."""

    kind = "conflict"

    def __init__(self, message="The group changed too often. Please try again."):
        """Initialize the error."""
        super().__init__(message, 409)


class AuthError(AppError):
    """Raised when the identity provider rejects a request."""

    kind = "auth"

    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_EXISTS = "account_exists"
    PROVIDER = "provider"

    def __init__(self, message="Authentication failed.", reason=PROVIDER):
        """Initialize the error."""
        super().__init__(message, 401)
        self.reason = reason


class StorageReadError(AppError):
    """Raised when a document store read fails in transport."""

    kind = "storage_read"

    def __init__(self, message="Could not read from the database."):
        """Initialize the error."""
        super().__init__(message, 503)


class StorageWriteError(AppError):
    """Raised when a document store write does not durably succeed."""

    kind = "storage_write"

    def __init__(self, message="Could not save to the database."):
        """Initialize the error."""
        super().__init__(message, 503)


class UpstreamError(AppError):
    """Raised when a third-party API call fails or returns garbage."""

    kind = "upstream"

    def __init__(self, message="An external service is unavailable."):
        """Initialize the error."""
        super().__init__(message, 502)
