"""Credential storage and token validation."""

from room_booking.auth.token_store import AuthProvider, TokenStore

__all__ = ["AuthProvider", "TokenStore"]
