"""
Secure API client for the room booking backend.

Provides the transport every state-changing booking call goes through:
auth token validation, CSRF token attachment, idempotency keys, payload
sanitization, retry of transport failures and classification of error
responses into the booking core's exception hierarchy.
"""

import asyncio
import json
import logging
import re
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import BaseModel, Field

from room_booking.auth.token_store import AuthProvider, token_expiry
from room_booking.config.settings import Settings
from room_booking.utils.exceptions import (
    APIError,
    AuthError,
    DataError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
    RequestTimeoutError,
    SecurityError,
    ServerError,
)

logger = logging.getLogger(__name__)

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.I)
_SCRIPT_LIKE = re.compile(r"javascript:|on\w+\s*=|<iframe|<object|<embed", re.I)
_NO_TOKEN_CODES = {"NO_TOKEN", "TOKEN_MISSING"}


def new_idempotency_key() -> str:
    """Mint an opaque key for one logical write operation."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


class SecurityState:
    """
    Credential cache shared by every client of one session.

    Holds the last CSRF token the server issued and the last auth token that
    passed client-side validation, with its expiry.
    """

    def __init__(self, csrf_token: str | None = None) -> None:
        self.csrf_token = csrf_token
        self._validated_token: str | None = None
        self._validated_until: datetime | None = None

    def update_csrf_token(self, token: str | None) -> None:
        if token and token != self.csrf_token:
            logger.debug("CSRF token refreshed from server response")
            self.csrf_token = token

    def remember_valid_token(self, token: str, expires_at: datetime | None) -> None:
        self._validated_token = token
        self._validated_until = expires_at

    def is_known_valid(self, token: str, now: datetime | None = None) -> bool:
        if token != self._validated_token:
            return False
        if self._validated_until is None:
            return True
        return (now or datetime.now(UTC)) < self._validated_until

    def forget_token(self) -> None:
        self._validated_token = None
        self._validated_until = None


class RequestMetrics(BaseModel):
    """Metrics for API request monitoring."""

    method: str
    endpoint: str
    status_code: int | None = None
    duration_ms: float
    request_size_bytes: int = 0
    response_size_bytes: int = 0
    retry_count: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    error_type: str | None = None


class APIResponse(BaseModel):
    """Standard API response model."""

    success: bool
    data: Any = None
    error: str | None = None
    status_code: int | None = None
    metrics: RequestMetrics | None = None
    headers: dict[str, str] | None = None


class DataTransformer:
    """Utility class for request/response data transformation."""

    @staticmethod
    def sanitize_string(value: str) -> str:
        """Strip control characters and script-like content."""
        value = _CONTROL_CHARS.sub("", value)
        value = _SCRIPT_BLOCK.sub("", value)
        value = _SCRIPT_LIKE.sub("", value)
        return value.strip()

    @staticmethod
    def sanitize_request_data(data: Any) -> Any:
        """Recursively sanitize a JSON payload, dropping None values."""
        if isinstance(data, str):
            return DataTransformer.sanitize_string(data)

        if isinstance(data, dict):
            return {
                key: DataTransformer.sanitize_request_data(value)
                for key, value in data.items()
                if value is not None
            }

        if isinstance(data, list | tuple):
            return [
                DataTransformer.sanitize_request_data(item)
                for item in data
                if item is not None
            ]

        return data

    @staticmethod
    def mask_sensitive_data(
        data: Any, sensitive_fields: set | None = None
    ) -> Any:
        """Mask sensitive data in logs."""
        if sensitive_fields is None:
            sensitive_fields = {
                "password",
                "secret",
                "token",
                "authorization",
                "signature",
                "phone",
                "contact",
                "email",
            }

        def _mask_recursive(obj: Any) -> Any:
            if isinstance(obj, dict):
                masked = {}
                for key, value in obj.items():
                    key_lower = key.lower()
                    if any(
                        sensitive_field in key_lower
                        for sensitive_field in sensitive_fields
                    ):
                        masked[key] = "***MASKED***"
                    else:
                        masked[key] = _mask_recursive(value)
                return masked
            elif isinstance(obj, list):
                return [_mask_recursive(item) for item in obj]
            else:
                return obj

        return _mask_recursive(data)


class SecureApiClient:
    """
    Async client for the booking REST API.

    Features:
    - Bearer token validation before every request, purging invalid tokens
    - CSRF token attachment on state-changing verbs, refreshed from responses
    - Idempotency keys on booking and payment endpoints
    - Recursive payload sanitization
    - Exponential backoff retry of transport failures for safe or keyed calls
    - Error responses classified into booking core exceptions
    - Async context management for proper resource cleanup
    """

    def __init__(
        self,
        auth: AuthProvider,
        settings: Settings | None = None,
        security_state: SecurityState | None = None,
        on_session_expired: Callable[[], None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the API client.

        Args:
            auth: Credential source; purged when a token is invalid or rejected
            settings: Optional settings instance
            security_state: CSRF/token cache, shared between clients of a session
            on_session_expired: Called after a 401 for a rejected token
            transport: Optional httpx transport (tests, custom networking)
        """
        self.auth = auth
        self.settings = settings or Settings()
        self.security_state = security_state or SecurityState()
        self.on_session_expired = on_session_expired
        self._transport = transport
        self._session: httpx.AsyncClient | None = None
        self._session_lock = asyncio.Lock()
        self._data_transformer = DataTransformer()

        self._timeout_config = httpx.Timeout(
            connect=5.0,
            read=self.settings.request_timeout,
            write=5.0,
            pool=5.0,
        )

    async def __aenter__(self) -> "SecureApiClient":
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure HTTP session is initialized with proper configuration."""
        if self._session is None:
            async with self._session_lock:
                if self._session is None:  # Double-check pattern
                    self._session = httpx.AsyncClient(
                        timeout=self._timeout_config,
                        http2=self.settings.enable_http2 and self._transport is None,
                        transport=self._transport,
                        follow_redirects=True,
                        headers={"User-Agent": "room-booking-core/0.1 (httpx)"},
                    )
                    logger.debug(
                        "HTTP session initialized",
                        extra={
                            "base_url": self.base_url,
                            "timeout_read": self._timeout_config.read,
                        },
                    )

    async def close(self) -> None:
        """Close HTTP session and cleanup resources."""
        if self._session:
            try:
                await self._session.aclose()
                logger.debug("HTTP session closed successfully")
            except Exception as e:
                logger.warning(f"Error closing HTTP session: {e}")
            finally:
                self._session = None

    @property
    def base_url(self) -> str:
        """Get base API URL."""
        return self.settings.api_base_url.rstrip("/")

    def _requires_idempotency_key(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix.rstrip("/") + "/")
            for prefix in self.settings.idempotent_path_prefixes
        )

    def _resolve_auth_header(self) -> dict[str, str]:
        """
        Read and validate the stored token immediately before dispatch.

        An invalid or expired token is purged and the request goes out
        without an Authorization header.
        """
        token = self.auth.token
        if not token:
            return {}

        if self.security_state.is_known_valid(token):
            return {"Authorization": f"Bearer {token}"}

        if self.auth.is_token_valid(token):
            self.security_state.remember_valid_token(token, token_expiry(token))
            return {"Authorization": f"Bearer {token}"}

        logger.warning("Stored auth token is invalid or expired, purging credentials")
        self.security_state.forget_token()
        self.auth.purge()
        return {}

    def _purge_session(self) -> None:
        self.security_state.forget_token()
        self.auth.purge()

    async def _log_request(self, method: str, url: str, **kwargs) -> None:
        """Log outgoing request details."""
        request_size = 0
        if kwargs.get("json"):
            request_size = len(json.dumps(kwargs["json"]).encode("utf-8"))

        logger.info(
            f"API Request: {method} {url}",
            extra={
                "method": method,
                "url": url,
                "request_size_bytes": request_size,
                "params": self._data_transformer.mask_sensitive_data(
                    kwargs.get("params") or {}
                ),
                "json_data": self._data_transformer.mask_sensitive_data(
                    kwargs.get("json") or {}
                ),
                "idempotency_key": kwargs.get("idempotency_key"),
            },
        )

    async def _log_response(
        self,
        method: str,
        url: str,
        response: httpx.Response,
        duration_ms: float,
        retry_count: int = 0,
    ) -> None:
        """Log response details."""
        log_data = {
            "method": method,
            "url": url,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "response_size_bytes": len(response.content) if response.content else 0,
            "retry_count": retry_count,
        }

        if response.status_code >= 400:
            logger.warning(
                f"API Error Response: {method} {url} - {response.status_code}",
                extra=log_data,
            )
        else:
            logger.info(
                f"API Response: {method} {url} - {response.status_code}", extra=log_data
            )

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        idempotency_key: str | None = None,
    ) -> APIResponse:
        """
        Make a secured API request.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            endpoint: API endpoint (without base URL)
            params: Query parameters
            json_data: JSON request body, sanitized before sending
            headers: Additional headers
            timeout: Custom read timeout for this request
            idempotency_key: Key of the logical operation; minted if omitted
                on booking and payment endpoints

        Returns:
            APIResponse with success status, data and metrics

        Raises:
            BookingCoreError subclasses; never raw httpx exceptions
        """
        start_time = time.time()
        await self._ensure_session()

        method = method.upper()
        path = "/" + endpoint.lstrip("/")
        url = f"{self.base_url}{path}"

        if json_data:
            json_data = self._data_transformer.sanitize_request_data(json_data)

        request_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Request-ID": f"rb-{int(time.time() * 1000)}",
        }

        if method in STATE_CHANGING_METHODS and self._requires_idempotency_key(path):
            idempotency_key = idempotency_key or new_idempotency_key()
            request_headers[self.settings.idempotency_header] = idempotency_key
        else:
            idempotency_key = None

        if headers:
            request_headers.update(headers)

        # Without a key a repeated write could apply twice
        retryable = method in SAFE_METHODS or idempotency_key is not None

        custom_timeout = httpx.Timeout(
            connect=5.0,
            read=timeout or self.settings.request_timeout,
            write=5.0,
            pool=5.0,
        )

        await self._log_request(
            method, url, params=params, json=json_data, idempotency_key=idempotency_key
        )

        last_error: Exception | None = None
        retry_count = 0

        for attempt in range(self.settings.max_retries + 1):
            # Credentials are read synchronously right before each dispatch
            request_headers.pop("Authorization", None)
            request_headers.update(self._resolve_auth_header())

            if method in STATE_CHANGING_METHODS:
                csrf_token = self.security_state.csrf_token
                if csrf_token:
                    request_headers[self.settings.csrf_header] = csrf_token

            try:
                request_start = time.time()
                response = await self._session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_data,
                    headers=request_headers,
                    timeout=custom_timeout,
                )
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                last_error = e
                if retryable and attempt < self.settings.max_retries:
                    retry_count += 1
                    backoff_time = self.settings.retry_backoff * (2**attempt)
                    logger.warning(
                        f"Request failed, retrying in {backoff_time}s... (attempt {attempt + 1}): {e}",
                        extra={
                            "error_type": type(e).__name__,
                            "retry_count": retry_count,
                            "idempotency_key": idempotency_key,
                        },
                    )
                    await asyncio.sleep(backoff_time)
                    continue
                break

            request_duration = (time.time() - request_start) * 1000
            await self._log_response(
                method, url, response, request_duration, retry_count
            )

            self.security_state.update_csrf_token(
                response.headers.get(self.settings.csrf_header)
            )

            api_response = await self._handle_response(
                response, token_supplied="Authorization" in request_headers
            )
            api_response.metrics = RequestMetrics(
                method=method,
                endpoint=path,
                status_code=response.status_code,
                duration_ms=(time.time() - start_time) * 1000,
                request_size_bytes=len(json.dumps(json_data).encode())
                if json_data
                else 0,
                response_size_bytes=len(response.content) if response.content else 0,
                retry_count=retry_count,
            )
            api_response.headers = dict(response.headers)
            return api_response

        total_duration = (time.time() - start_time) * 1000
        error_msg = f"Request failed after {retry_count + 1} attempts: {last_error}"
        logger.error(
            error_msg,
            extra={
                "final_error_type": type(last_error).__name__,
                "total_duration_ms": total_duration,
                "total_retries": retry_count,
                "method": method,
                "endpoint": path,
            },
        )

        details = {"method": method, "url": url, "retry_count": retry_count}
        if isinstance(last_error, httpx.TimeoutException):
            raise RequestTimeoutError(error_msg, details=details) from last_error
        raise NetworkError(error_msg, details=details) from last_error

    async def _handle_response(
        self, response: httpx.Response, token_supplied: bool = False
    ) -> APIResponse:
        """
        Handle API response and convert to standard format.

        Args:
            response: HTTP response object
            token_supplied: Whether the request carried an Authorization header

        Returns:
            APIResponse with processed data

        Raises:
            APIError subclasses based on the status code
        """
        status_code = response.status_code

        if 200 <= status_code < 300:
            try:
                data = response.json() if response.content else {}
            except ValueError as e:
                logger.error(f"Failed to parse successful response JSON: {e}")
                raise DataError(
                    f"Failed to process response data: {e}",
                    status_code=status_code,
                    details={"content_type": response.headers.get("content-type")},
                ) from e

            success = True
            error = None
            if isinstance(data, dict):
                self.security_state.update_csrf_token(data.get("csrfToken"))
                success = bool(data.get("success", True))
                if not success:
                    error = data.get("message") or data.get("error")

            return APIResponse(
                success=success,
                data=data,
                error=error,
                status_code=status_code,
            )

        error_msg = f"HTTP {status_code}"
        error_data = None
        error_code = None

        try:
            if response.content:
                error_data = response.json()
                if isinstance(error_data, dict):
                    error_msg = (
                        error_data.get("message")
                        or error_data.get("error")
                        or error_data.get("detail")
                        or error_msg
                    )
                    error_code = error_data.get("code")
                    self.security_state.update_csrf_token(error_data.get("csrfToken"))
        except ValueError:
            error_msg = response.text[:500] or error_msg

        error_details = {
            "status_code": status_code,
            "url": str(response.url),
            "method": response.request.method if response.request else "Unknown",
        }
        if error_code:
            error_details["code"] = error_code

        if status_code == 401:
            no_token = (
                not token_supplied
                or error_code in _NO_TOKEN_CODES
                or "no token" in str(error_msg).lower()
            )
            self._purge_session()
            if not no_token and self.on_session_expired is not None:
                logger.info(
                    "Session rejected by server, redirecting to login",
                    extra={"login_path": self.settings.login_path},
                )
                self.on_session_expired()
            raise AuthError(
                f"Authentication failed: {error_msg}",
                token_supplied=not no_token,
                response_data=error_data,
                details=error_details,
            )
        elif status_code == 403:
            raise SecurityError(
                f"Access forbidden: {error_msg}",
                status_code=status_code,
                response_data=error_data,
                details=error_details,
            )
        elif status_code == 404:
            raise NotFoundError(
                f"Resource not found: {error_msg}",
                status_code=status_code,
                response_data=error_data,
                details=error_details,
            )
        elif status_code == 429:
            raise RateLimitedError(
                f"Rate limit exceeded: {error_msg}",
                retry_after=self._parse_retry_after(response, error_data),
                response_data=error_data,
                details=error_details,
            )
        elif status_code >= 500:
            raise ServerError(
                f"Server error {status_code}: {error_msg}",
                status_code=status_code,
                response_data=error_data,
                details=error_details,
            )

        raise APIError(
            f"Request rejected ({status_code}): {error_msg}",
            status_code=status_code,
            response_data=error_data,
            details=error_details,
        )

    @staticmethod
    def _parse_retry_after(response: httpx.Response, error_data: Any) -> int | None:
        retry_after = response.headers.get("Retry-After")
        if retry_after is None and isinstance(error_data, dict):
            retry_after = error_data.get("retryAfter")
        if retry_after is None:
            return None
        try:
            return int(retry_after)
        except (TypeError, ValueError):
            return None

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> APIResponse:
        """Make GET request."""
        return await self.request(
            "GET", endpoint, params=params, headers=headers, timeout=timeout
        )

    async def post(
        self,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        idempotency_key: str | None = None,
    ) -> APIResponse:
        """Make POST request."""
        return await self.request(
            "POST",
            endpoint,
            params=params,
            json_data=json_data,
            headers=headers,
            timeout=timeout,
            idempotency_key=idempotency_key,
        )

    async def put(
        self,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        idempotency_key: str | None = None,
    ) -> APIResponse:
        """Make PUT request."""
        return await self.request(
            "PUT",
            endpoint,
            params=params,
            json_data=json_data,
            headers=headers,
            timeout=timeout,
            idempotency_key=idempotency_key,
        )

    async def patch(
        self,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        idempotency_key: str | None = None,
    ) -> APIResponse:
        """Make PATCH request."""
        return await self.request(
            "PATCH",
            endpoint,
            params=params,
            json_data=json_data,
            headers=headers,
            timeout=timeout,
            idempotency_key=idempotency_key,
        )

    async def delete(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        idempotency_key: str | None = None,
    ) -> APIResponse:
        """Make DELETE request."""
        return await self.request(
            "DELETE",
            endpoint,
            params=params,
            headers=headers,
            timeout=timeout,
            idempotency_key=idempotency_key,
        )
