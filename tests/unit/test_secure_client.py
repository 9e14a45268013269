"""
Unit tests for SecureApiClient.
"""

from unittest.mock import Mock

import httpx
import pytest

from room_booking.auth.token_store import TokenStore
from room_booking.clients.base_client import (
    DataTransformer,
    SecureApiClient,
    SecurityState,
    new_idempotency_key,
)
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
from tests.conftest import make_token, request_json

BOOKING_BODY = {"roomId": "room_42", "duration": 2}


def connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


def read_timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


@pytest.fixture
def make_client(settings, backend, token_store):
    def _make(**kwargs) -> SecureApiClient:
        kwargs.setdefault("auth", token_store)
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("transport", backend.transport)
        return SecureApiClient(**kwargs)

    return _make


class TestRequestHeaders:
    """Auth, CSRF and idempotency headers."""

    @pytest.mark.asyncio
    async def test_bearer_token_attached(self, make_client, backend, token_store):
        async with make_client() as client:
            await client.post("/bookings", json_data=BOOKING_BODY)

        sent = backend.calls("POST", "/bookings")[0]
        assert sent.headers["Authorization"] == f"Bearer {token_store.token}"

    @pytest.mark.asyncio
    async def test_expired_token_purged_and_omitted(self, make_client, backend):
        store = TokenStore(token=make_token(expires_in=-30), user={"name": "Asha"})
        backend.queue("GET", "/rooms", httpx.Response(200, json={"success": True}))

        async with make_client(auth=store) as client:
            await client.get("/rooms")

        sent = backend.requests[0]
        assert "Authorization" not in sent.headers
        assert store.token is None
        assert store.user is None

    @pytest.mark.asyncio
    async def test_csrf_token_attached_to_writes_only(self, make_client, backend):
        state = SecurityState(csrf_token="csrf-1")
        backend.queue("GET", "/csrf", httpx.Response(200, json={}))

        async with make_client(security_state=state) as client:
            await client.post("/bookings", json_data=BOOKING_BODY)
            await client.get("/csrf")

        assert backend.requests[0].headers["X-CSRF-Token"] == "csrf-1"
        assert "X-CSRF-Token" not in backend.requests[1].headers

    @pytest.mark.asyncio
    async def test_csrf_token_refreshed_from_response(self, make_client, backend):
        state = SecurityState(csrf_token="csrf-1")
        backend.issue_csrf_token = "csrf-2"

        async with make_client(security_state=state) as client:
            await client.post("/bookings", json_data=BOOKING_BODY)
            assert state.csrf_token == "csrf-2"
            await client.post("/payments/create-order", json_data={"amount": 100})

        assert backend.requests[1].headers["X-CSRF-Token"] == "csrf-2"

    @pytest.mark.asyncio
    async def test_csrf_token_read_from_body(self, make_client, backend):
        state = SecurityState()
        backend.queue(
            "GET", "/csrf", httpx.Response(200, json={"csrfToken": "from-body"})
        )

        async with make_client(security_state=state) as client:
            await client.get("/csrf")

        assert state.csrf_token == "from-body"

    @pytest.mark.asyncio
    async def test_idempotency_key_on_booking_and_payment_writes(
        self, make_client, backend
    ):
        backend.queue("POST", "/reviews", httpx.Response(201, json={}))

        async with make_client() as client:
            await client.post("/bookings", json_data=BOOKING_BODY)
            await client.post("/payments/verify", json_data={"bookingId": "b1"})
            await client.post("/reviews", json_data={"text": "nice"})

        assert backend.requests[0].headers.get("X-Idempotency-Key")
        assert backend.requests[1].headers.get("X-Idempotency-Key")
        assert "X-Idempotency-Key" not in backend.requests[2].headers

    @pytest.mark.asyncio
    async def test_caller_key_is_used(self, make_client, backend):
        async with make_client() as client:
            await client.post("/bookings", json_data=BOOKING_BODY, idempotency_key="k-1")

        assert backend.requests[0].headers["X-Idempotency-Key"] == "k-1"

    def test_new_idempotency_keys_are_unique(self):
        keys = {new_idempotency_key() for _ in range(200)}
        assert len(keys) == 200


class TestRetries:
    """Transport failures and retry eligibility."""

    @pytest.mark.asyncio
    async def test_keyed_write_retried_with_same_key(self, make_client, backend):
        backend.queue("POST", "/bookings", connect_error)

        async with make_client() as client:
            response = await client.post("/bookings", json_data=BOOKING_BODY)

        attempts = backend.calls("POST", "/bookings")
        assert response.success is True
        assert len(attempts) == 2
        assert response.metrics.retry_count == 1
        assert (
            attempts[0].headers["X-Idempotency-Key"]
            == attempts[1].headers["X-Idempotency-Key"]
        )
        assert backend.booking_count == 1

    @pytest.mark.asyncio
    async def test_same_key_across_calls_creates_one_booking(
        self, make_client, backend
    ):
        async with make_client() as client:
            first = await client.post(
                "/bookings", json_data=BOOKING_BODY, idempotency_key="k-1"
            )
            second = await client.post(
                "/bookings", json_data=BOOKING_BODY, idempotency_key="k-1"
            )

        assert backend.booking_count == 1
        assert first.data["data"]["booking"]["_id"] == second.data["data"]["booking"]["_id"]

    @pytest.mark.asyncio
    async def test_unkeyed_write_not_retried(self, make_client, backend):
        backend.queue("POST", "/reviews", connect_error)

        async with make_client() as client:
            with pytest.raises(NetworkError):
                await client.post("/reviews", json_data={"text": "nice"})

        assert len(backend.calls("POST", "/reviews")) == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, make_client, backend, settings):
        backend.queue("GET", "/bookings/b1", *([connect_error] * 3))

        async with make_client() as client:
            with pytest.raises(NetworkError) as exc_info:
                await client.get("/bookings/b1")

        assert len(backend.calls("GET", "/bookings/b1")) == settings.max_retries + 1
        assert exc_info.value.details["retry_count"] == settings.max_retries

    @pytest.mark.asyncio
    async def test_timeout_classified(self, make_client, backend):
        backend.queue("POST", "/bookings", *([read_timeout] * 3))

        async with make_client() as client:
            with pytest.raises(RequestTimeoutError):
                await client.post("/bookings", json_data=BOOKING_BODY)

    @pytest.mark.asyncio
    async def test_http_errors_not_retried(self, make_client, backend):
        backend.queue(
            "POST", "/bookings", httpx.Response(500, json={"message": "boom"})
        )

        async with make_client() as client:
            with pytest.raises(ServerError):
                await client.post("/bookings", json_data=BOOKING_BODY)

        assert len(backend.calls("POST", "/bookings")) == 1


class TestErrorClassification:
    """Status codes map to the exception hierarchy."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, expected",
        [
            (400, APIError),
            (403, SecurityError),
            (404, NotFoundError),
            (409, APIError),
            (422, APIError),
            (500, ServerError),
            (503, ServerError),
        ],
    )
    async def test_status_mapping(self, make_client, backend, status_code, expected):
        backend.queue(
            "POST",
            "/bookings",
            httpx.Response(status_code, json={"message": "Room already booked"}),
        )

        async with make_client() as client:
            with pytest.raises(expected) as exc_info:
                await client.post("/bookings", json_data=BOOKING_BODY)

        assert exc_info.value.status_code == status_code
        assert "Room already booked" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after(self, make_client, backend):
        backend.queue(
            "POST",
            "/bookings",
            httpx.Response(429, json={"message": "Slow down"}, headers={"Retry-After": "30"}),
        )

        async with make_client() as client:
            with pytest.raises(RateLimitedError) as exc_info:
                await client.post("/bookings", json_data=BOOKING_BODY)

        assert exc_info.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_rate_limit_retry_after_from_body(self, make_client, backend):
        backend.queue(
            "POST", "/bookings", httpx.Response(429, json={"retryAfter": 12})
        )

        async with make_client() as client:
            with pytest.raises(RateLimitedError) as exc_info:
                await client.post("/bookings", json_data=BOOKING_BODY)

        assert exc_info.value.retry_after == 12

    @pytest.mark.asyncio
    async def test_invalid_json_body(self, make_client, backend):
        backend.queue("GET", "/bookings/b1", httpx.Response(200, content=b"<html>"))

        async with make_client() as client:
            with pytest.raises(DataError):
                await client.get("/bookings/b1")

    @pytest.mark.asyncio
    async def test_success_false_reported(self, make_client, backend):
        backend.queue(
            "GET",
            "/bookings/b1",
            httpx.Response(200, json={"success": False, "message": "Nope"}),
        )

        async with make_client() as client:
            response = await client.get("/bookings/b1")

        assert response.success is False
        assert response.error == "Nope"


class TestSessionExpiry:
    """401 handling."""

    @pytest.mark.asyncio
    async def test_rejected_token_purges_and_redirects(
        self, make_client, backend, token_store
    ):
        on_expired = Mock()
        backend.queue(
            "POST", "/bookings", httpx.Response(401, json={"message": "Token expired"})
        )

        async with make_client(on_session_expired=on_expired) as client:
            with pytest.raises(AuthError) as exc_info:
                await client.post("/bookings", json_data=BOOKING_BODY)

        assert exc_info.value.token_supplied is True
        assert token_store.token is None
        on_expired.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_missing_token_does_not_redirect(self, make_client, backend):
        on_expired = Mock()
        store = TokenStore()
        backend.queue(
            "POST", "/bookings", httpx.Response(401, json={"message": "Unauthorized"})
        )

        async with make_client(auth=store, on_session_expired=on_expired) as client:
            with pytest.raises(AuthError) as exc_info:
                await client.post("/bookings", json_data=BOOKING_BODY)

        assert exc_info.value.token_supplied is False
        on_expired.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_token_code_does_not_redirect(self, make_client, backend):
        on_expired = Mock()
        backend.queue(
            "POST",
            "/bookings",
            httpx.Response(401, json={"message": "Denied", "code": "NO_TOKEN"}),
        )

        async with make_client(on_session_expired=on_expired) as client:
            with pytest.raises(AuthError):
                await client.post("/bookings", json_data=BOOKING_BODY)

        on_expired.assert_not_called()


class TestSanitization:
    """Payload sanitization and log masking."""

    @pytest.mark.asyncio
    async def test_payload_sanitized_before_send(self, make_client, backend):
        body = {
            "roomId": "room_42",
            "specialRequests": "  Quiet room<script>alert(1)</script>\x07 ",
            "seekerInfo": {"name": "Asha", "note": None},
            "tags": ["a", None, "javascript:b"],
            "empty": "",
        }

        async with make_client() as client:
            await client.post("/bookings", json_data=body)

        sent = request_json(backend.requests[0])
        assert sent["specialRequests"] == "Quiet room"
        assert sent["seekerInfo"] == {"name": "Asha"}
        assert sent["tags"] == ["a", "b"]
        assert sent["empty"] == ""

    def test_mask_sensitive_data(self):
        masked = DataTransformer.mask_sensitive_data(
            {
                "razorpay_signature": "sig",
                "seekerInfo": {"email": "a@b.co", "phone": "9876543210", "name": "A"},
                "amount": 100,
            }
        )

        assert masked["razorpay_signature"] == "***MASKED***"
        assert masked["seekerInfo"]["email"] == "***MASKED***"
        assert masked["seekerInfo"]["phone"] == "***MASKED***"
        assert masked["seekerInfo"]["name"] == "A"
        assert masked["amount"] == 100


class TestSessionLifecycle:
    """HTTP session management."""

    @pytest.mark.asyncio
    async def test_close_resets_session(self, make_client):
        client = make_client()
        await client._ensure_session()
        assert client._session is not None

        await client.close()

        assert client._session is None

    def test_base_url_strips_trailing_slash(self, token_store, settings):
        settings.api_base_url = "https://api.test.com/api/"
        client = SecureApiClient(auth=token_store, settings=settings)

        assert client.base_url == "https://api.test.com/api"
