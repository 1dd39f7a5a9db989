"""API exceptions."""

from typing import Any, Optional


class MigrationError(Exception):
    """Base exception for errors surfaced to the operator."""

    pass


class ApiError(MigrationError):
    """Base exception for remote API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Any] = None,
    ):
        """Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code, None for network failures
            response_data: Raw response body from the API
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class AuthenticationError(ApiError):
    """Authentication error (401)."""

    pass


class NotFoundError(ApiError):
    """Resource not found error (404)."""

    pass


class RateLimitError(ApiError):
    """Rate limit exceeded error."""

    def __init__(self, message: str, retry_after: int = 60, **kwargs):
        """Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Seconds to wait before retry
            **kwargs: Additional arguments for base class
        """
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class SecondaryRateLimitError(RateLimitError):
    """Secondary (abuse detection) rate limit still hit after all retries."""

    pass


class GraphQLError(ApiError):
    """GraphQL response carried a non-empty errors array."""

    pass
