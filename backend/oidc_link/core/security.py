"""
Security helpers - random tokens, PKCE, and signed cookie values.

Cookie values are short JWTs signed with the process-wide cookie secret.
"""

import base64
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from .settings import settings


def generate_token(length: int = 32) -> str:
    """Generate a URL-safe random token (`length` bytes of entropy)"""
    return secrets.token_urlsafe(length)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code verifier and its S256 challenge.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    # 43 characters, inside the 43-128 range RFC 7636 allows
    code_verifier = secrets.token_urlsafe(32)
    code_challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(code_verifier.encode()).digest())
        .decode()
        .rstrip("=")
    )
    return code_verifier, code_challenge


def constant_time_equals(a: Optional[str], b: Optional[str]) -> bool:
    """Compare two strings without leaking timing; None never matches"""
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode(), b.encode())


def create_signed_value(
    token_type: str,
    claims: Dict[str, Any],
    expires_delta: timedelta,
    secret: Optional[str] = None,
) -> str:
    """Sign `claims` into a JWT tagged with `token_type`"""
    now = datetime.now(timezone.utc)
    to_encode = {
        **claims,
        "type": token_type,
        "iat": now,
        "exp": now + expires_delta,
    }
    encoded_jwt = jwt.encode(to_encode, secret or settings.cookie_secret, algorithm=settings.cookie_algorithm)
    return str(encoded_jwt)


def decode_signed_value(
    value: Optional[str],
    token_type: str,
    secret: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Decode a value produced by `create_signed_value`.

    Returns None when the value is missing, unsigned, tampered with, expired,
    or of another type.
    """
    if not value:
        return None

    try:
        payload = jwt.decode(value, secret or settings.cookie_secret, algorithms=[settings.cookie_algorithm])
    except JWTError:
        return None

    if payload.get("type") != token_type:
        return None

    return payload
