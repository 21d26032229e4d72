"""
Remember-me Token Management
============================

Handles creation and verification of the remember-me token carried in an
HTTP-only cookie. The token is an HMAC-signed JWT binding a subject to an
expiry.

Expiry policy:
- ``remember_for > 0``: the token and the cookie both expire after
  ``remember_for`` seconds.
- ``remember_for == 0``: the cookie is a session cookie (dropped when the
  browser session ends) while the token still carries a long nominal expiry
  (``max_lifetime``) so a leaked cookie does not stay valid forever.

Verification never tells apart a bad signature, a malformed token or an
expired one: all of them mean "no remembered session".
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import jwt
from jwt.exceptions import InvalidTokenError
from starlette.responses import Response

from ..models import IssuedToken, RememberToken

logger = logging.getLogger(__name__)

TOKEN_TYPE = "remember"


class RememberStore:
    """
    Issues and validates remember tokens.

    Args:
        secret: HMAC signing key, read-only after startup
        remember_for: lifetime in seconds, 0 for browser-session cookies
        max_lifetime: server-side bound used when ``remember_for`` is 0
        algorithm: HS256, HS384 or HS512
        cookie_name: name of the remember cookie
        cookie_path: cookie path (the web base path)
        cookie_secure: set the ``Secure`` cookie flag
        clock: returns the current UNIX time, overridable in tests
    """

    def __init__(
        self,
        secret: str,
        remember_for: int = 0,
        max_lifetime: int = 30 * 24 * 3600,
        algorithm: str = "HS256",
        cookie_name: str = "idp_remember",
        cookie_path: str = "/",
        cookie_secure: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("remember token secret not configured")

        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock
        self.remember_for = remember_for
        self.max_lifetime = max_lifetime
        self.cookie_name = cookie_name
        self.cookie_path = cookie_path
        self.cookie_secure = cookie_secure

    @property
    def session_only(self) -> bool:
        return self.remember_for == 0

    # =========================================================================
    # Token Creation
    # =========================================================================

    def issue(self, subject: str) -> IssuedToken:
        """
        Create a remember token for ``subject``.

        Example:
            >>> store = RememberStore("x" * 32, remember_for=3600)
            >>> issued = store.issue("uid=jane,ou=people,dc=example")
            >>> issued.max_age
            3600
        """
        if not subject:
            raise ValueError("Missing required claim: 'sub' (subject)")

        now = int(self._clock())
        lifetime = self.max_lifetime if self.session_only else self.remember_for
        expires = now + lifetime

        payload = {
            "sub": subject,
            "iat": now,
            "exp": expires,
            "typ": TOKEN_TYPE,
            "ses": self.session_only,
        }
        value = jwt.encode(payload, self._secret, algorithm=self._algorithm)

        logger.debug(
            "Issued remember token",
            extra={"session_only": self.session_only, "lifetime": lifetime},
        )

        return IssuedToken(
            value=value,
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
            max_age=None if self.session_only else lifetime,
        )

    def refresh(self, token: str, verified: RememberToken) -> IssuedToken:
        """
        Re-issue the cookie for an already verified token.

        The expiry is not extended: the cookie gets the token's remaining
        lifetime (or stays a session cookie).
        """
        remaining = int(verified.expires_at.timestamp() - self._clock())

        return IssuedToken(
            value=token,
            expires_at=verified.expires_at,
            max_age=None if verified.session_only else max(remaining, 0),
        )

    # =========================================================================
    # Token Verification
    # =========================================================================

    def verify(self, token: Optional[str]) -> Optional[RememberToken]:
        """
        Verify a remember token.

        Returns:
            The decoded token, or None when the token is missing, tampered,
            malformed or expired.
        """
        if not token:
            return None

        try:
            decoded = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "verify_signature": True,
                    # expiry is checked below against the injected clock
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "iat", "sub", "typ"],
                },
            )
            expires = int(decoded["exp"])
            valid = decoded["typ"] == TOKEN_TYPE and expires > self._clock()
        except (InvalidTokenError, KeyError, TypeError, ValueError):
            valid = False

        if not valid:
            logger.info("Ignoring invalid remember token")
            return None

        return RememberToken(
            subject=decoded["sub"],
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
            session_only=bool(decoded.get("ses", False)),
        )

    # =========================================================================
    # Cookie Helpers
    # =========================================================================

    def attach(self, response: Response, issued: IssuedToken) -> None:
        """Set the remember cookie on ``response``."""
        response.set_cookie(
            key=self.cookie_name,
            value=issued.value,
            max_age=issued.max_age,
            path=self.cookie_path,
            secure=self.cookie_secure,
            httponly=True,
            samesite="lax",
        )

    def destroy(self, response: Response) -> None:
        """Delete the remember cookie."""
        response.delete_cookie(
            key=self.cookie_name,
            path=self.cookie_path,
            secure=self.cookie_secure,
            httponly=True,
            samesite="lax",
        )


__all__ = [
    "RememberStore",
    "TOKEN_TYPE",
]
