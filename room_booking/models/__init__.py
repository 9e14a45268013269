"""Data models for bookings and payments."""

from room_booking.models.booking import (
    BookingConfirmation,
    BookingRequest,
    GuestDetails,
    PaymentOrder,
    PaymentResult,
    PricingBreakdown,
    RoomPricingInput,
)
from room_booking.models.common import BookingBaseModel

__all__ = [
    "BookingBaseModel",
    "BookingConfirmation",
    "BookingRequest",
    "GuestDetails",
    "PaymentOrder",
    "PaymentResult",
    "PricingBreakdown",
    "RoomPricingInput",
]
