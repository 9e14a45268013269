"""
Pricing engine for room bookings.

Computes the financial breakdown shown on the booking form and charged at
checkout. Amounts are integers in whole listing-currency units; derived
charges are rounded half-up to a whole unit, each on its own.
"""

from decimal import ROUND_HALF_UP, Decimal

from room_booking.models.booking import PricingBreakdown, RoomPricingInput
from room_booking.utils.validators import validate_duration

DEFAULT_PLATFORM_FEE_RATE = Decimal("0.05")
DEFAULT_TAX_RATE = Decimal("0.18")
MAX_DURATION_MONTHS = 12


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_minor_units(amount: int, factor: int = 100) -> int:
    """Convert a whole-unit amount to the gateway's minor unit (e.g. paise)."""
    return amount * factor


class PricingEngine:
    """Pure function object from (room price, duration) to a breakdown."""

    def __init__(
        self,
        platform_fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE,
        tax_rate: Decimal = DEFAULT_TAX_RATE,
        max_duration_months: int = MAX_DURATION_MONTHS,
    ) -> None:
        self.platform_fee_rate = Decimal(str(platform_fee_rate))
        self.tax_rate = Decimal(str(tax_rate))
        self.max_duration_months = max_duration_months

    def compute(self, room: RoomPricingInput, duration: int) -> PricingBreakdown:
        """
        Compute the pricing breakdown for a stay.

        Args:
            room: Monthly rent and security deposit of the room
            duration: Stay length in months

        Returns:
            PricingBreakdown with every derived amount

        Raises:
            ValidationError: If duration is outside 1..max_duration_months
        """
        validate_duration(duration, self.max_duration_months)

        rent_total = room.rent_per_month * duration
        # Tax applies to the already rounded fee
        platform_fee = round_half_up(Decimal(rent_total) * self.platform_fee_rate)
        tax = round_half_up(Decimal(platform_fee) * self.tax_rate)
        owner_amount = rent_total + room.security_deposit

        return PricingBreakdown(
            monthly_rent=room.rent_per_month,
            security_deposit=room.security_deposit,
            rent_total=rent_total,
            platform_fee=platform_fee,
            tax=tax,
            owner_amount=owner_amount,
            total_amount=owner_amount + platform_fee + tax,
        )


_default_engine = PricingEngine()


def compute_pricing(room: RoomPricingInput, duration: int) -> PricingBreakdown:
    """Compute a breakdown with the default platform fee and tax rates."""
    return _default_engine.compute(room, duration)
