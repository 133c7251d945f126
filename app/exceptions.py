"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


# ============================================================================
# Validation (400)
# ============================================================================


class ValidationError(ServiceError):
    """Raised when input is missing or malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Validation failed: {message}")


class MissingFieldError(ValidationError):
    """Raised when a required field is absent or blank."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} is required")


class WeakPasswordError(ValidationError):
    """Raised when a password is shorter than the configured minimum."""

    def __init__(self, min_length: int) -> None:
        self.min_length = min_length
        super().__init__(f"Password must be at least {min_length} characters")


class InvalidFieldError(ValidationError):
    """Raised when a field is present but malformed."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"{field} is invalid: {reason}")


# ============================================================================
# Conflicts (409)
# ============================================================================


class ConflictError(ServiceError):
    """Raised when a unique key is already taken."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class DuplicateUsernameError(ConflictError):
    """Raised when the username is already registered."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__("Username already taken")


class DuplicateEmailError(ConflictError):
    """Raised when the email is already registered."""

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__("Email already registered")


class DuplicateResourceNameError(ConflictError):
    """Raised when a resource with the same name already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Resource name already taken: {name}")


# ============================================================================
# Authentication / authorization (401 / 403)
# ============================================================================


class AuthError(ServiceError):
    """Raised when authentication fails (bad credential, missing or expired session)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class InvalidCredentialsError(AuthError):
    """
    Raised when email/password do not match an account.

    reason is for internal telemetry only and is never returned to callers.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__("Invalid email or password")


class SessionNotFoundError(AuthError):
    """Raised when a session token is unknown or revoked."""

    def __init__(self) -> None:
        super().__init__("Session not found")


class SessionExpiredError(AuthError):
    """Raised when a session token is past its expiry."""

    def __init__(self) -> None:
        super().__init__("Session expired")


class ForbiddenError(ServiceError):
    """Raised when an authenticated account may not act on a resource."""

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"Not permitted: {action}")


# ============================================================================
# Abuse gate (429)
# ============================================================================


class RateLimitedError(ServiceError):
    """Raised when a client exceeds a rate-limit policy."""

    def __init__(self, action: str, retry_after_seconds: int) -> None:
        self.action = action
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited on {action}, retry after {retry_after_seconds}s")


# ============================================================================
# Resources (404 / 410)
# ============================================================================


class NotFoundError(ServiceError):
    """Raised when a resource does not exist."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Resource not found: {name}")


class PayloadMissingError(NotFoundError):
    """Raised when resource metadata exists but its payload is gone."""

    def __init__(self, name: str, payload_key: str) -> None:
        self.payload_key = payload_key
        super().__init__(name)


class GoneError(ServiceError):
    """Raised when a resource has expired."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Resource expired: {name}")


# ============================================================================
# Internal (500)
# ============================================================================


class InternalError(ServiceError):
    """Raised when an unexpected failure occurs."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Internal error: {message}")


class StoreError(InternalError):
    """Raised when a key-value store operation fails unexpectedly."""

    def __init__(self, operation: str, key: str, message: str) -> None:
        self.operation = operation
        self.key = key
        super().__init__(f"Store {operation} failed for {key}: {message}")
