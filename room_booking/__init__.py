"""Booking and payment orchestration core for a room marketplace."""

__version__ = "0.1.0"
