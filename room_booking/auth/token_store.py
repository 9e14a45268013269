"""
Credential storage and client-side token validation.

Tokens are only inspected for format and expiry here; signature verification
happens on the server.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import jwt

logger = logging.getLogger(__name__)


@runtime_checkable
class AuthProvider(Protocol):
    """Source of the current session used by the API client and booking flow."""

    @property
    def user(self) -> dict[str, Any] | None: ...

    @property
    def token(self) -> str | None: ...

    def is_token_valid(self, token: str | None) -> bool: ...

    def purge(self) -> None: ...


def decode_token_claims(token: str) -> dict[str, Any]:
    """
    Decode JWT claims without verifying the signature.

    Raises:
        jwt.InvalidTokenError: If the token is malformed or expired
    """
    return jwt.decode(
        token,
        options={"verify_signature": False, "verify_exp": True},
    )


def token_expiry(token: str | None) -> datetime | None:
    """Expiry of a token, or None when it has no exp claim or is unreadable."""
    if not token:
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    exp = claims.get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(exp, tz=UTC)


class TokenStore:
    """
    In-memory credential store.

    Holds the bearer token and the signed-in user. The booking core reads
    from it before each request and purges it when the token is found to be
    invalid or the server rejects it.
    """

    def __init__(
        self, token: str | None = None, user: dict[str, Any] | None = None
    ) -> None:
        self._token = token
        self._user = user

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def user(self) -> dict[str, Any] | None:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None and self.is_token_valid(self._token)

    def set_credentials(self, token: str, user: dict[str, Any] | None = None) -> None:
        self._token = token
        self._user = user

    def is_token_valid(self, token: str | None) -> bool:
        """Check token format (three JWT segments) and expiry."""
        if not token:
            return False

        if token.count(".") != 2:
            return False

        try:
            decode_token_claims(token)
        except jwt.ExpiredSignatureError:
            logger.debug("Auth token has expired")
            return False
        except jwt.InvalidTokenError as e:
            logger.debug(f"Auth token is malformed: {e}")
            return False

        return True

    def purge(self) -> None:
        """Forget the stored token and user."""
        if self._token is not None or self._user is not None:
            logger.info("Purging stored credentials")
        self._token = None
        self._user = None
