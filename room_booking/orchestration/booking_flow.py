"""
Booking flow state machine.

Drives a booking from guest details through booking creation, payment order
creation, checkout and payment verification. Every network step is awaited
in sequence, and every failure resolves to one concrete state.
"""

import logging
from collections.abc import Callable
from datetime import date
from enum import Enum
from typing import Any

from room_booking.auth.token_store import AuthProvider
from room_booking.clients.api_clients.booking_api import BookingAPIClient
from room_booking.clients.base_client import new_idempotency_key
from room_booking.config.settings import Settings
from room_booking.models.booking import (
    BookingConfirmation,
    BookingRequest,
    GuestDetails,
    PaymentOrder,
    PricingBreakdown,
    RoomPricingInput,
)
from room_booking.payments.gateway import PaymentGatewayAdapter
from room_booking.services.pricing import PricingEngine, to_minor_units
from room_booking.utils.exceptions import (
    AuthError,
    BookingCoreError,
    CheckoutBusyError,
    DataError,
    InvalidTransitionError,
    NetworkError,
    PaymentError,
    PaymentVerificationError,
    RateLimitedError,
    SecurityError,
    ServerError,
    UserCancelledError,
    ValidationError,
)
from room_booking.utils.validators import validate_booking_request

logger = logging.getLogger(__name__)

NotificationSink = Callable[[str, str], None]


class BookingState(str, Enum):
    """States of the booking flow."""

    AWAITING_DETAILS = "awaiting_details"
    VALIDATING_DETAILS = "validating_details"
    CREATING_BOOKING = "creating_booking"
    CREATING_PAYMENT_ORDER = "creating_payment_order"
    AWAITING_PAYMENT = "awaiting_payment"
    VERIFYING_PAYMENT = "verifying_payment"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TRANSITIONS: dict[BookingState, frozenset[BookingState]] = {
    BookingState.AWAITING_DETAILS: frozenset({BookingState.VALIDATING_DETAILS}),
    BookingState.VALIDATING_DETAILS: frozenset(
        {BookingState.AWAITING_DETAILS, BookingState.CREATING_BOOKING}
    ),
    BookingState.CREATING_BOOKING: frozenset(
        {BookingState.CREATING_PAYMENT_ORDER, BookingState.AWAITING_DETAILS}
    ),
    BookingState.CREATING_PAYMENT_ORDER: frozenset(
        {BookingState.AWAITING_PAYMENT, BookingState.AWAITING_DETAILS}
    ),
    BookingState.AWAITING_PAYMENT: frozenset(
        {
            BookingState.VERIFYING_PAYMENT,
            BookingState.CANCELLED,
            BookingState.FAILED,
        }
    ),
    BookingState.VERIFYING_PAYMENT: frozenset(
        {BookingState.CONFIRMED, BookingState.FAILED}
    ),
    BookingState.CANCELLED: frozenset({BookingState.AWAITING_PAYMENT}),
    BookingState.FAILED: frozenset(
        {BookingState.AWAITING_PAYMENT, BookingState.AWAITING_DETAILS}
    ),
    BookingState.CONFIRMED: frozenset(),
}


def user_message(error: BookingCoreError) -> str:
    """Text shown in the notification for a step-level failure."""
    if isinstance(error, AuthError):
        if error.token_supplied:
            return "Session expired. Please login again."
        return "Please login to book a room"
    if isinstance(error, SecurityError):
        return "Access denied"
    if isinstance(error, RateLimitedError):
        if error.retry_after:
            return f"Too many requests. Please try again in {error.retry_after} seconds."
        return "Too many requests. Please try again later."
    if isinstance(error, NetworkError):
        return "Network error. Please check your connection and try again."
    if isinstance(error, ServerError):
        return "Server error. Please try again later."
    return error.message


class BookingOrchestrator:
    """
    Three-step booking flow (Details, Payment, Confirmation) for one room.

    Owns the local state of one booking session: the submitted request, the
    server-issued booking and payment order, and the idempotency keys of the
    current attempt. Closing the flow discards all of it.
    """

    def __init__(
        self,
        room_id: str,
        room: RoomPricingInput,
        api: BookingAPIClient,
        gateway: PaymentGatewayAdapter,
        auth: AuthProvider,
        notify: NotificationSink,
        settings: Settings | None = None,
        pricing_engine: PricingEngine | None = None,
        room_title: str | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.room_id = room_id
        self.room = room
        self.room_title = room_title
        self.api = api
        self.gateway = gateway
        self.auth = auth
        self.notify = notify
        self.settings = settings or Settings()
        self.pricing_engine = pricing_engine or PricingEngine(
            platform_fee_rate=self.settings.platform_fee_rate,
            tax_rate=self.settings.tax_rate,
            max_duration_months=self.settings.max_duration_months,
        )
        self._today = today
        self._generation = 0
        self._reset()

    def _reset(self) -> None:
        self._state = BookingState.AWAITING_DETAILS
        self.history: list[BookingState] = [BookingState.AWAITING_DETAILS]
        self.request: BookingRequest | None = None
        self.confirmation: BookingConfirmation | None = None
        self.payment_order: PaymentOrder | None = None
        self.field_errors: dict[str, str] = {}
        self.last_error: BookingCoreError | None = None
        self._attempt_fingerprint: tuple | None = None
        self._booking_key: str | None = None
        self._order_key: str | None = None
        self._checkout_busy = False

    @property
    def state(self) -> BookingState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state in {
            BookingState.VALIDATING_DETAILS,
            BookingState.CREATING_BOOKING,
            BookingState.CREATING_PAYMENT_ORDER,
            BookingState.VERIFYING_PAYMENT,
        } or self._checkout_busy

    def can_transition(self, target: BookingState) -> bool:
        return target in TRANSITIONS[self._state]

    def _transition(self, target: BookingState) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(
                f"Cannot move booking from {self._state.value} to {target.value}"
            )
        logger.info(
            f"Booking state {self._state.value} -> {target.value}",
            extra={
                "room_id": self.room_id,
                "from_state": self._state.value,
                "to_state": target.value,
            },
        )
        self._state = target
        self.history.append(target)

    def _is_stale(self, generation: int) -> bool:
        if generation != self._generation:
            logger.info(
                "Dropping result of a booking session that was closed",
                extra={"room_id": self.room_id},
            )
            return True
        return False

    # Pricing

    def pricing_for(self, duration: int) -> PricingBreakdown:
        return self.pricing_engine.compute(self.room, duration)

    @property
    def pricing(self) -> PricingBreakdown:
        """Breakdown for the submitted duration, or a single month."""
        return self.pricing_for(self.request.duration if self.request else 1)

    def default_guest_details(self) -> GuestDetails:
        """Guest details prefilled from the signed-in user."""
        user = self.auth.user or {}
        return GuestDetails(
            name=user.get("name") or "",
            email=user.get("email") or "",
            phone=user.get("phone") or "",
        )

    def _is_authenticated(self) -> bool:
        return self.auth.user is not None and self.auth.is_token_valid(
            self.auth.token
        )

    # Step 1: details, booking and payment order

    async def submit_details(self, request: BookingRequest) -> BookingState:
        """
        Validate the details step, then create the booking and its payment order.

        Args:
            request: Booking details entered by the user

        Returns:
            The state the flow settled in: AWAITING_PAYMENT on success,
            AWAITING_DETAILS on any failure

        Raises:
            InvalidTransitionError: If a submission is already in progress or
                the flow is past the details step
        """
        if self._state is not BookingState.AWAITING_DETAILS:
            raise InvalidTransitionError(
                f"Cannot submit booking details while {self._state.value}"
            )

        generation = self._generation
        self._transition(BookingState.VALIDATING_DETAILS)
        self.field_errors = {}

        if not self._is_authenticated():
            self._fail_to_details(
                AuthError(
                    "Not signed in", token_supplied=False, status_code=None
                )
            )
            return self._state

        try:
            validate_booking_request(
                request,
                today=self._today(),
                max_months=self.settings.max_duration_months,
                special_requests_max_length=self.settings.special_requests_max_length,
            )
            pricing = self.pricing_for(request.duration)
        except ValidationError as e:
            self.field_errors = {e.field or "form": e.message}
            self._fail_to_details(e)
            return self._state

        fingerprint = request.fingerprint()
        if fingerprint != self._attempt_fingerprint:
            # New logical attempt; an earlier booking stays pending server-side
            self._attempt_fingerprint = fingerprint
            self._booking_key = new_idempotency_key()
            self._order_key = new_idempotency_key()
            self.confirmation = None

        self.request = request
        self._transition(BookingState.CREATING_BOOKING)

        try:
            if self.confirmation is None:
                confirmation = await self.api.create_booking(
                    request, idempotency_key=self._booking_key
                )
                if self._is_stale(generation):
                    return self._state
                self.confirmation = confirmation
            else:
                logger.info(
                    "Reusing booking created by an earlier attempt",
                    extra={"booking_id": self.confirmation.id},
                )

            self._transition(BookingState.CREATING_PAYMENT_ORDER)
            expected_amount = to_minor_units(
                pricing.total_amount, self.settings.currency_minor_units
            )
            order = await self.api.create_payment_order(
                amount=expected_amount,
                currency=self.settings.currency,
                booking_id=self.confirmation.id,
                notes=self._order_notes(request),
                idempotency_key=self._order_key,
            )
            if self._is_stale(generation):
                return self._state

            if order.amount != expected_amount:
                raise DataError(
                    "Payment amount does not match booking",
                    details={"expected": expected_amount, "received": order.amount},
                )
        except BookingCoreError as e:
            if not self._is_stale(generation):
                self._rotate_failed_step_key(e)
                self._fail_to_details(e)
            return self._state
        except BaseException:
            if not self._is_stale(generation):
                self._transition(BookingState.AWAITING_DETAILS)
            raise

        self.payment_order = order
        self._transition(BookingState.AWAITING_PAYMENT)
        self.notify("Booking created! Proceed to payment", "success")
        return self._state

    def _order_notes(self, request: BookingRequest) -> dict[str, Any]:
        notes: dict[str, Any] = {
            "checkInDate": request.check_in_date.isoformat(),
            "duration": request.duration,
        }
        if self.room_title:
            notes["roomTitle"] = self.room_title
        return notes

    def _rotate_failed_step_key(self, error: BookingCoreError) -> None:
        """
        Keep the failed step's key only when the outcome is unknown.

        After a network failure the server may have applied the write, so a
        retry must replay the same key. A definite server answer ends that
        logical operation.
        """
        if isinstance(error, NetworkError):
            return
        if self._state is BookingState.CREATING_BOOKING:
            self._booking_key = new_idempotency_key()
        elif self._state is BookingState.CREATING_PAYMENT_ORDER:
            self._order_key = new_idempotency_key()

    def _fail_to_details(self, error: BookingCoreError) -> None:
        self.last_error = error
        logger.warning(
            f"Booking step failed: {error}",
            extra={
                "room_id": self.room_id,
                "state": self._state.value,
                "error_type": type(error).__name__,
            },
        )
        self._transition(BookingState.AWAITING_DETAILS)
        self.notify(user_message(error), "error")

    # Step 2: checkout and verification

    async def open_checkout(self) -> BookingState:
        """
        Open the payment checkout for the current order and verify the result.

        Returns:
            CONFIRMED on success, AWAITING_PAYMENT after a dismissal, FAILED
            when loading, payment or verification failed

        Raises:
            CheckoutBusyError: If a checkout is already open
            InvalidTransitionError: If there is no payment order to pay
        """
        if self._checkout_busy:
            raise CheckoutBusyError("A payment checkout is already open")

        if self.payment_order is None or self.confirmation is None:
            raise InvalidTransitionError("No payment order to pay for")

        if self._state is BookingState.FAILED:
            self._transition(BookingState.AWAITING_PAYMENT)
        elif self._state is not BookingState.AWAITING_PAYMENT:
            raise InvalidTransitionError(
                f"Cannot open checkout while {self._state.value}"
            )

        generation = self._generation
        order = self.payment_order
        booking = self.confirmation
        guest = self.request.guest_details if self.request else self.default_guest_details()

        self._checkout_busy = True
        try:
            try:
                result = await self.gateway.open(
                    order,
                    guest,
                    description=f"Booking for {self.room_title}"
                    if self.room_title
                    else None,
                    notes={"bookingId": booking.id},
                )
            except CheckoutBusyError:
                raise
            except UserCancelledError as e:
                if self._is_stale(generation):
                    return self._state
                self.last_error = e
                self._transition(BookingState.CANCELLED)
                self._transition(BookingState.AWAITING_PAYMENT)
                self.notify("Payment cancelled", "warning")
                return self._state
            except PaymentError as e:
                if not self._is_stale(generation):
                    self._fail_payment(e, user_message(e))
                return self._state

            if self._is_stale(generation):
                return self._state

            self._transition(BookingState.VERIFYING_PAYMENT)
            try:
                await self.api.verify_payment(result, booking_id=booking.id)
            except BookingCoreError as e:
                if not self._is_stale(generation):
                    message = (
                        "Payment verification failed"
                        if isinstance(e, PaymentVerificationError)
                        else user_message(e)
                    )
                    self._fail_payment(e, message)
                return self._state
            except BaseException:
                if not self._is_stale(generation):
                    self._transition(BookingState.FAILED)
                raise

            if self._is_stale(generation):
                return self._state

            self._transition(BookingState.CONFIRMED)
            self.notify("Payment successful! Booking confirmed.", "success")
            return self._state
        finally:
            if generation == self._generation:
                self._checkout_busy = False

    def _fail_payment(self, error: BookingCoreError, message: str) -> None:
        self.last_error = error
        logger.warning(
            f"Payment step failed: {error}",
            extra={
                "room_id": self.room_id,
                "booking_id": self.confirmation.id if self.confirmation else None,
                "error_type": type(error).__name__,
            },
        )
        self._transition(BookingState.FAILED)
        self.notify(message, "error")

    def close(self) -> None:
        """
        Abandon the booking session.

        Discards all local state without contacting the server and abandons
        an open checkout; a booking that was already created stays pending
        there.
        """
        if self._state is not BookingState.CONFIRMED and self.confirmation:
            logger.info(
                "Booking flow closed before payment completed",
                extra={
                    "booking_id": self.confirmation.id,
                    "state": self._state.value,
                },
            )
        if self._checkout_busy:
            self.gateway.cancel()
        self._generation += 1
        self._reset()

