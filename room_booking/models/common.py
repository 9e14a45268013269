"""
Common data models for the room booking core.

Provides the base model shared by booking and payment entities.
"""

from pydantic import BaseModel, ConfigDict


class BookingBaseModel(BaseModel):
    """Base model for all booking core entities."""

    model_config = ConfigDict(
        extra="allow",  # Allow extra fields from API responses
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
    )


class FrozenBookingModel(BookingBaseModel):
    """Immutable value object."""

    model_config = ConfigDict(frozen=True)
