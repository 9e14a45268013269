"""
Input validation utilities for the room booking core.

Each validator raises ValidationError carrying the name of the offending
field so the booking flow can surface it inline.
"""

import re
from datetime import date

from room_booking.models.booking import BookingRequest, GuestDetails
from room_booking.utils.exceptions import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")


def validate_duration(duration: int, max_months: int = 12) -> int:
    """
    Validate booking duration in months.

    Args:
        duration: Number of months
        max_months: Longest bookable duration

    Returns:
        Validated duration

    Raises:
        ValidationError: If duration is not an integer within 1..max_months
    """
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise ValidationError(
            f"Duration must be a whole number of months, got {duration!r}",
            field="duration",
        )

    if duration < 1 or duration > max_months:
        raise ValidationError(
            f"Duration must be between 1 and {max_months} months", field="duration"
        )

    return duration


def validate_check_in_date(check_in: date | None, today: date) -> date:
    """
    Validate that the check-in date is today or later.

    Raises:
        ValidationError: If the date is missing or in the past
    """
    if check_in is None:
        raise ValidationError("Please select a check-in date", field="check_in_date")

    if check_in < today:
        raise ValidationError(
            "Check-in date cannot be in the past", field="check_in_date"
        )

    return check_in


def validate_name(name: str) -> str:
    if not name or len(name) < 2:
        raise ValidationError("Please enter your full name", field="name")
    return name


def validate_email(email: str) -> str:
    if not email or not EMAIL_PATTERN.match(email):
        raise ValidationError("Please enter a valid email address", field="email")
    return email


def validate_phone(phone: str) -> str:
    """Indian mobile numbers: ten digits starting with 6-9."""
    if not phone or not PHONE_PATTERN.match(phone):
        raise ValidationError(
            "Please enter a valid 10-digit phone number", field="phone"
        )
    return phone


def validate_special_requests(text: str | None, max_length: int = 500) -> str | None:
    if text is not None and len(text) > max_length:
        raise ValidationError(
            f"Special requests cannot exceed {max_length} characters",
            field="special_requests",
        )
    return text


def validate_guest_details(guest: GuestDetails) -> GuestDetails:
    validate_name(guest.name)
    validate_email(guest.email)
    validate_phone(guest.phone)
    return guest


def validate_booking_request(
    request: BookingRequest,
    today: date,
    max_months: int = 12,
    special_requests_max_length: int = 500,
) -> BookingRequest:
    """
    Validate the details step of a booking.

    Checks run in the order the form presents them and stop at the first
    failure.

    Args:
        request: Booking details entered by the user
        today: Current local date
        max_months: Longest bookable duration
        special_requests_max_length: Maximum note length

    Returns:
        The validated request

    Raises:
        ValidationError: With the failing field name
    """
    if not request.room_id:
        raise ValidationError("Room is missing from the booking", field="room_id")

    validate_check_in_date(request.check_in_date, today)
    validate_duration(request.duration, max_months)
    validate_guest_details(request.guest_details)
    validate_special_requests(request.special_requests, special_requests_max_length)

    return request
