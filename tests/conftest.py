"""
Shared fixtures for room booking core tests.

FakeBackend plays the booking REST API behind an httpx.MockTransport. It
keeps one booking per idempotency key, like the real payment middleware.
"""

import asyncio
import json
import time
from collections import defaultdict
from collections.abc import Callable
from typing import Any

import httpx
import jwt
import pytest

from room_booking.auth.token_store import TokenStore
from room_booking.config.settings import Settings

API_PREFIX = "/api"

Responder = httpx.Response | Callable[[httpx.Request], httpx.Response]


def make_token(expires_in: int = 3600, **claims: Any) -> str:
    """Signed JWT expiring `expires_in` seconds from now (negative = expired)."""
    payload = {"sub": "user_1", "exp": int(time.time()) + expires_in, **claims}
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def request_json(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content) if request.content else {}


class FakeBackend:
    """In-memory stand-in for the booking REST API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.bookings_by_key: dict[str, dict[str, Any]] = {}
        self.orders_by_key: dict[str, dict[str, Any]] = {}
        self.overrides: dict[tuple[str, str], list[Responder]] = defaultdict(list)
        self.verify_success = True
        self.issue_csrf_token: str | None = None
        self.order_amount_override: int | None = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def queue(self, method: str, path: str, *responders: Responder) -> None:
        """Serve these responses, in order, before the default behaviour."""
        self.overrides[(method, path)].extend(responders)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path == API_PREFIX + path
        ]

    @property
    def booking_count(self) -> int:
        return len(self.bookings_by_key)

    def _json(self, status_code: int, body: dict[str, Any]) -> httpx.Response:
        headers = {}
        if self.issue_csrf_token:
            headers["X-CSRF-Token"] = self.issue_csrf_token
        return httpx.Response(status_code, json=body, headers=headers)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix(API_PREFIX)

        queued = self.overrides.get((request.method, path))
        if queued:
            responder = queued.pop(0)
            return responder(request) if callable(responder) else responder

        if request.method == "POST" and path == "/bookings":
            return self._create_booking(request)
        if request.method == "POST" and path == "/payments/create-order":
            return self._create_order(request)
        if request.method == "POST" and path == "/payments/verify":
            return self._json(200, {"success": self.verify_success})
        if request.method == "GET" and path.startswith("/bookings/"):
            booking_id = path.rsplit("/", 1)[-1]
            for booking in self.bookings_by_key.values():
                if booking["_id"] == booking_id:
                    return self._json(200, {"success": True, "data": {"booking": booking}})
            return self._json(404, {"success": False, "message": "Booking not found"})

        return self._json(404, {"success": False, "message": "Route not found"})

    def _create_booking(self, request: httpx.Request) -> httpx.Response:
        key = request.headers.get("X-Idempotency-Key") or f"anon-{len(self.requests)}"
        if key not in self.bookings_by_key:
            number = len(self.bookings_by_key) + 1
            self.bookings_by_key[key] = {
                "_id": f"6650c0ffee{number:04d}",
                "bookingId": f"BK{number:05d}",
                "status": "pending",
                **request_json(request),
            }
        return self._json(
            201, {"success": True, "data": {"booking": self.bookings_by_key[key]}}
        )

    def _create_order(self, request: httpx.Request) -> httpx.Response:
        key = request.headers.get("X-Idempotency-Key") or f"anon-{len(self.requests)}"
        body = request_json(request)
        if key not in self.orders_by_key:
            self.orders_by_key[key] = {
                "orderId": f"order_{len(self.orders_by_key) + 1}",
                "amount": self.order_amount_override or body["amount"],
                "currency": body.get("currency", "INR"),
                "keyId": "rzp_test_key",
            }
        return self._json(201, {"success": True, "data": self.orders_by_key[key]})


SUCCESS_RESPONSE = {
    "razorpay_order_id": "order_1",
    "razorpay_payment_id": "pay_1",
    "razorpay_signature": "sig_1",
}


class FakeCheckout:
    """Checkout widget double; `on_open` plays the user's interaction."""

    def __init__(
        self,
        options: dict[str, Any],
        on_open: Callable[["FakeCheckout"], None] | None = None,
    ) -> None:
        self.options = options
        self.on_open = on_open
        self.events: dict[str, Callable] = {}
        self.opened = False

    def on(self, event: str, callback: Callable) -> None:
        self.events[event] = callback

    def open(self) -> None:
        self.opened = True
        if self.on_open is not None:
            asyncio.get_running_loop().call_soon(self.on_open, self)

    # User interactions

    def pay(self) -> None:
        self.options["handler"](dict(SUCCESS_RESPONSE))

    def dismiss(self) -> None:
        self.options["modal"]["ondismiss"]()

    def fail(self, description: str = "Card declined") -> None:
        self.events["payment.failed"](
            {"error": {"code": "BAD_REQUEST_ERROR", "description": description}}
        )


class FakeCheckoutFactory:
    def __init__(self, on_open: Callable[[FakeCheckout], None] | None = None) -> None:
        self.on_open = on_open
        self.widgets: list[FakeCheckout] = []

    def __call__(self, options: dict[str, Any]) -> FakeCheckout:
        widget = FakeCheckout(options, on_open=self.on_open)
        self.widgets.append(widget)
        return widget


def make_injector(*outcomes):
    """Injector returning (or raising) the given outcomes in turn."""
    remaining = list(outcomes)

    async def inject(url: str):
        inject.calls.append(url)
        await asyncio.sleep(0)
        outcome = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    inject.calls = []
    return inject


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_base_url="https://api.test.com/api",
        max_retries=2,
        retry_backoff=0.0,
        enable_http2=False,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def token_store() -> TokenStore:
    return TokenStore(
        token=make_token(),
        user={"name": "Asha Rao", "email": "asha@example.com", "phone": "9876543210"},
    )
