"""
Booking and payment data models.

Wire names follow the booking REST API (camelCase); Python attributes are
snake_case. Money is an integer amount in whole listing-currency units unless
a field says it holds minor units.
"""

from datetime import date
from typing import Any

from pydantic import Field, model_validator

from room_booking.models.common import BookingBaseModel, FrozenBookingModel


class RoomPricingInput(FrozenBookingModel):
    """Price data of a room, supplied by the room listing."""

    rent_per_month: int = Field(alias="rentPerMonth", ge=0)
    security_deposit: int = Field(0, alias="securityDeposit", ge=0)


class GuestDetails(BookingBaseModel):
    """Contact details of the person booking the room."""

    name: str = ""
    email: str = ""
    phone: str = ""


class BookingRequest(BookingBaseModel):
    """Details collected on the first step of the booking flow."""

    room_id: str = Field(alias="roomId")
    check_in_date: date = Field(alias="checkInDate")
    duration: int = 1
    guest_details: GuestDetails = Field(
        default_factory=GuestDetails, alias="guestDetails"
    )
    special_requests: str | None = Field(None, alias="specialRequests")

    def to_payload(self) -> dict[str, Any]:
        """Render the POST /bookings body."""
        return {
            "roomId": self.room_id,
            "checkInDate": self.check_in_date.isoformat(),
            "duration": self.duration,
            "seekerInfo": self.guest_details.model_dump(
                include={"name", "email", "phone"}
            ),
            "specialRequests": self.special_requests,
        }

    def fingerprint(self) -> tuple:
        """Identity of a logical booking attempt."""
        guest = self.guest_details
        return (
            self.room_id,
            self.check_in_date,
            self.duration,
            guest.name,
            guest.email,
            guest.phone,
            self.special_requests or "",
        )


class PricingBreakdown(FrozenBookingModel):
    """Financial breakdown of a booking."""

    monthly_rent: int = Field(alias="monthlyRent")
    security_deposit: int = Field(alias="securityDeposit")
    rent_total: int = Field(alias="rentTotal")
    platform_fee: int = Field(alias="platformFee")
    tax: int
    owner_amount: int = Field(alias="ownerAmount")
    total_amount: int = Field(alias="totalAmount")


class BookingConfirmation(BookingBaseModel):
    """Booking record issued by the server after POST /bookings."""

    id: str = Field(alias="_id")
    booking_id: str | None = Field(None, alias="bookingId")
    status: str = "pending"

    @property
    def display_id(self) -> str:
        return self.booking_id or self.id


class PaymentOrder(BookingBaseModel):
    """Gateway order authorizing a checkout for one booking."""

    order_id: str = Field(alias="orderId")
    amount: int = Field(ge=0, description="Amount in currency minor units")
    currency: str = "INR"
    key_id: str = Field(alias="keyId")
    receipt: str | None = None


class PaymentResult(BookingBaseModel):
    """Result produced by the checkout widget's success callback."""

    gateway_order_id: str = Field(alias="gatewayOrderId")
    gateway_payment_id: str = Field(alias="gatewayPaymentId")
    signature: str

    @model_validator(mode="before")
    @classmethod
    def _accept_gateway_keys(cls, data: Any) -> Any:
        """Map the gateway's native razorpay_* callback keys."""
        if isinstance(data, dict) and "razorpay_order_id" in data:
            return {
                "gatewayOrderId": data.get("razorpay_order_id"),
                "gatewayPaymentId": data.get("razorpay_payment_id"),
                "signature": data.get("razorpay_signature"),
            }
        return data

    def to_payload(self, booking_id: str) -> dict[str, str]:
        """Render the POST /payments/verify body."""
        return {
            "gatewayOrderId": self.gateway_order_id,
            "gatewayPaymentId": self.gateway_payment_id,
            "signature": self.signature,
            "bookingId": booking_id,
        }
