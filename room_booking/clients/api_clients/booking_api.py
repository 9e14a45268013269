"""
Booking and payment endpoints of the room booking REST API.
"""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from room_booking.clients.base_client import APIResponse, SecureApiClient
from room_booking.models.booking import (
    BookingConfirmation,
    BookingRequest,
    PaymentOrder,
    PaymentResult,
)
from room_booking.utils.exceptions import APIError, DataError, PaymentVerificationError

logger = logging.getLogger(__name__)


def _payload(response: APIResponse) -> dict[str, Any]:
    """The `data` envelope of a successful response."""
    if not isinstance(response.data, dict):
        raise DataError(
            "Response body is not a JSON object", status_code=response.status_code
        )
    data = response.data.get("data")
    return data if isinstance(data, dict) else {}


class BookingAPIClient(SecureApiClient):
    """
    Client for booking creation and payment order/verification calls.

    Every write on these endpoints carries an idempotency key; callers pass
    the key of the logical operation so that retries never duplicate it.
    """

    async def create_booking(
        self, request: BookingRequest, idempotency_key: str | None = None
    ) -> BookingConfirmation:
        """
        Create a pending booking.

        Args:
            request: Validated booking details
            idempotency_key: Key of this booking attempt

        Returns:
            BookingConfirmation issued by the server

        Raises:
            APIError: If the server declines the booking
        """
        response = await self.post(
            "/bookings",
            json_data=request.to_payload(),
            idempotency_key=idempotency_key,
        )

        if not response.success:
            raise APIError(
                response.error or "Failed to create booking",
                status_code=response.status_code,
                response_data=response.data,
            )

        booking = _payload(response).get("booking")
        try:
            confirmation = BookingConfirmation.model_validate(booking)
        except PydanticValidationError as e:
            raise DataError(
                f"Unexpected booking payload: {e}", status_code=response.status_code
            ) from e

        logger.info(
            "Booking created",
            extra={"booking_id": confirmation.id, "status": confirmation.status},
        )
        return confirmation

    async def get_booking(self, booking_id: str) -> BookingConfirmation:
        """Fetch the current server view of a booking."""
        response = await self.get(f"/bookings/{booking_id}")
        data = _payload(response)
        try:
            return BookingConfirmation.model_validate(data.get("booking", data))
        except PydanticValidationError as e:
            raise DataError(f"Unexpected booking payload: {e}") from e

    async def create_payment_order(
        self,
        amount: int,
        currency: str,
        booking_id: str,
        notes: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentOrder:
        """
        Create the gateway order for a booking.

        Args:
            amount: Amount in currency minor units
            currency: Currency code
            booking_id: Server id of the booking being paid
            notes: Free-form notes stored on the gateway order
            idempotency_key: Key of this order attempt

        Returns:
            PaymentOrder to open the checkout with
        """
        response = await self.post(
            "/payments/create-order",
            json_data={
                "amount": amount,
                "currency": currency,
                "bookingId": booking_id,
                "notes": notes or {},
            },
            idempotency_key=idempotency_key,
        )

        if not response.success:
            raise APIError(
                response.error or "Failed to create payment order",
                status_code=response.status_code,
                response_data=response.data,
            )

        try:
            order = PaymentOrder.model_validate(_payload(response))
        except PydanticValidationError as e:
            raise DataError(
                f"Unexpected payment order payload: {e}",
                status_code=response.status_code,
            ) from e

        logger.info(
            "Payment order created",
            extra={"order_id": order.order_id, "booking_id": booking_id},
        )
        return order

    async def verify_payment(self, result: PaymentResult, booking_id: str) -> None:
        """
        Verify a completed checkout with the server.

        Raises:
            PaymentVerificationError: If the server reports success false
        """
        response = await self.post(
            "/payments/verify", json_data=result.to_payload(booking_id)
        )

        if not response.success:
            raise PaymentVerificationError(
                response.error or "Payment verification failed",
                details={
                    "booking_id": booking_id,
                    "order_id": result.gateway_order_id,
                },
            )

        logger.info(
            "Payment verified",
            extra={"booking_id": booking_id, "order_id": result.gateway_order_id},
        )

    async def get_payment_status(self, order_id: str) -> dict[str, Any]:
        """Look up the status of a gateway order."""
        response = await self.get(f"/payments/status/{order_id}")
        return _payload(response)
