"""
HTTP error translation shared by the route modules.

Validation and conflict messages are returned verbatim. Store and other
internal failures are logged with their cause and collapsed to a generic 500.
"""

from fastapi import HTTPException, status
from structlog import get_logger

from app.exceptions import InternalError, RateLimitedError
from app.observability.metrics import metrics

logger = get_logger(__name__)


def rate_limited(exc: RateLimitedError) -> HTTPException:
    """429 with a Retry-After header."""
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests, try again later",
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )


def internal_error(exc: InternalError, operation: str) -> HTTPException:
    """Log an internal failure and return the generic 500."""
    metrics.record_error(type(exc).__name__, operation)
    logger.error(
        "internal_error",
        operation=operation,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )
