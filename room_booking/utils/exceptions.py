"""
Exception hierarchy for the room booking core.

Every failure that reaches the booking flow is one of these classes; raw
transport exceptions from httpx are always wrapped before they leave the
API client.
"""

from typing import Any


class BookingCoreError(Exception):
    """Base exception for all booking core errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ConfigurationError(BookingCoreError):
    """Raised when required configuration is missing or invalid."""


class ValidationError(BookingCoreError):
    """Client-side, field-level validation failure the user can correct."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.field = field


class InvalidTransitionError(BookingCoreError):
    """Raised when the booking flow is asked to make an illegal state move."""


class NetworkError(BookingCoreError):
    """Transport-level failure; safe to retry the same step."""


class RequestTimeoutError(NetworkError):
    """Request did not complete within the configured timeout."""


class APIError(BookingCoreError):
    """Error response returned by the booking backend."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status_code = status_code
        self.response_data = response_data


class AuthError(APIError):
    """401 from the backend; stored credentials have been purged."""

    def __init__(
        self,
        message: str,
        token_supplied: bool = True,
        status_code: int | None = 401,
        response_data: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            status_code=status_code,
            response_data=response_data,
            details=details,
        )
        self.token_supplied = token_supplied


class SecurityError(APIError):
    """403 from the backend, e.g. CSRF token or ownership check rejected."""


class NotFoundError(APIError):
    """404 from the backend."""


class RateLimitedError(APIError):
    """429 from the backend."""

    def __init__(
        self,
        message: str,
        retry_after: int | None = None,
        status_code: int | None = 429,
        response_data: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            status_code=status_code,
            response_data=response_data,
            details=details,
        )
        self.retry_after = retry_after


class ServerError(APIError):
    """5xx from the backend."""


class DataError(APIError):
    """Response body could not be parsed into the expected shape."""


class PaymentError(BookingCoreError):
    """Base class for payment step failures."""


class GatewayLoadError(PaymentError):
    """Checkout script failed to load; the payment step can be retried."""


class CheckoutBusyError(PaymentError):
    """A checkout is already open; re-entrant opens are rejected."""


class PaymentFailedError(PaymentError):
    """The checkout widget reported a failed payment attempt."""


class PaymentVerificationError(PaymentError):
    """Signature or server-side verification failed; booking stays pending."""


class UserCancelledError(PaymentError):
    """The checkout widget was dismissed by the user."""
