#!/usr/bin/env python3
"""Room Booking Core - Module Entry Point.

Allows running as: python -m room_booking
"""

import argparse
import json
import sys

from room_booking import __version__


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the room booking command line."""
    parser = argparse.ArgumentParser(
        description="Room booking core utilities",
        prog="room-booking",
    )

    parser.add_argument(
        "--version",
        action="store_true",
        help="Show version information",
    )

    subparsers = parser.add_subparsers(dest="command")
    quote = subparsers.add_parser("quote", help="Show the pricing breakdown")
    quote.add_argument("--rent", type=int, required=True, help="Monthly rent")
    quote.add_argument(
        "--deposit", type=int, default=0, help="Security deposit (default: 0)"
    )
    quote.add_argument("--duration", type=int, default=1, help="Months (1-12)")
    quote.add_argument("--json", action="store_true", help="Print JSON")

    args = parser.parse_args(argv)

    if args.version:
        print(f"Room Booking Core v{__version__}")
        return 0

    if args.command != "quote":
        parser.print_help()
        return 1

    from room_booking.config.settings import get_settings
    from room_booking.main import setup_logging
    from room_booking.models.booking import RoomPricingInput
    from room_booking.services.pricing import PricingEngine, to_minor_units
    from room_booking.utils.exceptions import ValidationError

    settings = get_settings()
    setup_logging(settings)
    engine = PricingEngine(
        platform_fee_rate=settings.platform_fee_rate,
        tax_rate=settings.tax_rate,
        max_duration_months=settings.max_duration_months,
    )

    try:
        room = RoomPricingInput(rent_per_month=args.rent, security_deposit=args.deposit)
        pricing = engine.compute(room, args.duration)
    except (ValidationError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    gateway_amount = to_minor_units(pricing.total_amount, settings.currency_minor_units)

    if args.json:
        payload = pricing.model_dump(by_alias=True)
        payload["gatewayAmount"] = gateway_amount
        payload["currency"] = settings.currency
        print(json.dumps(payload, indent=2))
        return 0

    rows = [
        ("Monthly rent", pricing.monthly_rent),
        (f"Rent x {args.duration}", pricing.rent_total),
        ("Security deposit", pricing.security_deposit),
        ("Platform fee", pricing.platform_fee),
        ("Tax", pricing.tax),
        ("Total", pricing.total_amount),
    ]
    for label, amount in rows:
        print(f"{label:<18}{settings.currency} {amount:>10,}")
    print(f"{'Gateway amount':<18}{gateway_amount} (minor units)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
