"""
CSRF guard for the login redirect.

The link token is reused as the OIDC `state`, so the only per-login values
created here are the nonce and the PKCE pair. They travel in two signed,
HttpOnly cookies:
- link_state: {"state": <link token>}
- link_nonce: {"nonce": ..., "cv": <PKCE code verifier>}
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Request, Response
from loguru import logger

from oidc_link.core.security import (
    constant_time_equals,
    create_signed_value,
    decode_signed_value,
    generate_pkce_pair,
    generate_token,
)

LOG_PREFIX = "[CsrfGuard]"

STATE_COOKIE = "link_state"
NONCE_COOKIE = "link_nonce"
STATE_TOKEN_TYPE = "link_state"
NONCE_TOKEN_TYPE = "link_nonce"


class CsrfMismatchError(Exception):
    """Login cookies are missing, invalid, or bound to another state."""


@dataclass(frozen=True)
class CsrfSession:
    state: str
    nonce: str
    code_verifier: str
    code_challenge: str = ""


@dataclass(frozen=True)
class CsrfCookies:
    """Decoded cookie payloads; None when absent or not verifiable."""

    state: Optional[Dict[str, Any]]
    nonce: Optional[Dict[str, Any]]


class CsrfGuard:
    def __init__(
        self,
        secret: str,
        max_age: timedelta,
        *,
        secure: bool = False,
        samesite: str = "lax",
        domain: Optional[str] = None,
    ):
        self.secret = secret
        self.max_age = max_age
        self.secure = secure
        self.samesite = samesite
        self.domain = domain

    @classmethod
    def from_settings(cls, settings: Any) -> "CsrfGuard":
        return cls(
            secret=settings.cookie_secret,
            max_age=timedelta(seconds=settings.pending_link_ttl_seconds),
            secure=settings.cookie_secure_effective,
            samesite=settings.cookie_samesite,
            domain=settings.cookie_domain,
        )

    def issue(self, link_token: str) -> CsrfSession:
        """New nonce and PKCE pair bound to `link_token` as state."""
        code_verifier, code_challenge = generate_pkce_pair()
        return CsrfSession(
            state=link_token,
            nonce=generate_token(32),
            code_verifier=code_verifier,
            code_challenge=code_challenge,
        )

    def read(self, request: Request) -> CsrfCookies:
        return CsrfCookies(
            state=decode_signed_value(request.cookies.get(STATE_COOKIE), STATE_TOKEN_TYPE, self.secret),
            nonce=decode_signed_value(request.cookies.get(NONCE_COOKIE), NONCE_TOKEN_TYPE, self.secret),
        )

    def verify(
        self,
        cookie_state: Optional[Dict[str, Any]],
        cookie_nonce: Optional[Dict[str, Any]],
        callback_state: Optional[str],
    ) -> CsrfSession:
        """
        Check the decoded cookies against the callback `state`.

        Returns:
            CsrfSession with the nonce and code verifier for the token exchange

        Raises:
            CsrfMismatchError: cookie absent/tampered or state mismatch
        """
        if cookie_state is None or cookie_nonce is None:
            raise CsrfMismatchError("Login cookies are missing or invalid")

        if not constant_time_equals(cookie_state.get("state"), callback_state):
            raise CsrfMismatchError("State cookie does not match the callback state")

        nonce = cookie_nonce.get("nonce")
        code_verifier = cookie_nonce.get("cv")
        if not nonce or not code_verifier:
            raise CsrfMismatchError("Nonce cookie is incomplete")

        # The nonce cookie must belong to the same login as the state cookie
        if not constant_time_equals(cookie_nonce.get("state"), callback_state):
            raise CsrfMismatchError("Nonce cookie was issued for another state")

        return CsrfSession(state=str(callback_state), nonce=nonce, code_verifier=code_verifier)

    def set_cookies(self, response: Response, session: CsrfSession) -> None:
        state_value = create_signed_value(STATE_TOKEN_TYPE, {"state": session.state}, self.max_age, self.secret)
        nonce_value = create_signed_value(
            NONCE_TOKEN_TYPE,
            {"state": session.state, "nonce": session.nonce, "cv": session.code_verifier},
            self.max_age,
            self.secret,
        )
        cookie_kwargs = self._cookie_kwargs()
        max_age = int(self.max_age.total_seconds())
        response.set_cookie(key=STATE_COOKIE, value=state_value, max_age=max_age, **cookie_kwargs)
        response.set_cookie(key=NONCE_COOKIE, value=nonce_value, max_age=max_age, **cookie_kwargs)
        logger.debug(f"{LOG_PREFIX} Issued login cookies for state {session.state[:8]}…")

    def clear_cookies(self, response: Response) -> None:
        cookie_kwargs = self._cookie_kwargs()
        response.delete_cookie(key=STATE_COOKIE, **cookie_kwargs)
        response.delete_cookie(key=NONCE_COOKIE, **cookie_kwargs)

    def _cookie_kwargs(self) -> Dict[str, Any]:
        cookie_kwargs: Dict[str, Any] = {
            "httponly": True,
            "samesite": self.samesite,
            "secure": self.secure,
            "path": "/",
        }
        if self.domain:
            cookie_kwargs["domain"] = self.domain
        return cookie_kwargs
