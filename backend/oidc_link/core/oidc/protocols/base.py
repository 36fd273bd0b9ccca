"""
Base class for the OIDC session adapter.

Defines the capability interface the linking flow depends on, so the flow can
be exercised against a fake provider in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from oidc_link.core.oidc.config import OIDCClientConfig, ProviderMetadata

LOG_PREFIX = "[OIDCAdapter]"


class OIDCError(Exception):
    """Base error for identity provider interactions."""


class OIDCDiscoveryError(OIDCError):
    """Discovery or JWKS retrieval failed. Fatal at startup."""


class OIDCExchangeError(OIDCError):
    """
    The authorization code could not be turned into verified identity claims.

    Covers provider error redirects, expired/invalid codes, token endpoint
    failures, signature/issuer/audience/expiry failures, nonce mismatch, and
    network errors.
    """


@dataclass
class TokenSet:
    """Tokens returned by the token endpoint plus the validated ID token claims."""

    access_token: str
    id_token: str
    claims: Dict[str, Any]
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def subject(self) -> str:
        return str(self.claims.get("sub", ""))


@dataclass
class IdentityClaims:
    """
    Unified identity structure.

    The flow only relies on `subject_id` and `preferred_username`.
    """

    subject_id: str  # Provider subject identifier (sub)
    preferred_username: str  # Username shown to the chat user
    display_name: Optional[str]  # Display name
    email: Optional[str]  # Email
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)  # Merged claims (debug/extension)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict."""
        return {
            "subject_id": self.subject_id,
            "preferred_username": self.preferred_username,
            "display_name": self.display_name,
            "email": self.email,
        }


class BaseOIDCAdapter(ABC):
    """OIDC authorization-code + PKCE/nonce capability interface."""

    def __init__(self, config: OIDCClientConfig):
        self.config = config
        self._metadata: Optional[ProviderMetadata] = None

    @property
    def metadata(self) -> Optional[ProviderMetadata]:
        return self._metadata

    @abstractmethod
    async def discover(self, issuer: Optional[str] = None) -> ProviderMetadata:
        """
        Fetch and cache the provider metadata.

        Raises:
            OIDCDiscoveryError: metadata could not be fetched or is invalid
        """

    @abstractmethod
    def build_authorization_url(self, state: str, nonce: str, code_challenge: str) -> str:
        """Build the provider authorization URL (deterministic for given inputs)."""

    @abstractmethod
    async def exchange(
        self,
        callback_params: Mapping[str, str],
        expected_state: str,
        expected_nonce: str,
        code_verifier: str,
    ) -> TokenSet:
        """
        Exchange the authorization code and validate the ID token.

        Raises:
            OIDCExchangeError: any failure
        """

    @abstractmethod
    async def fetch_user_info(self, token_set: TokenSet) -> IdentityClaims:
        """
        Resolve identity claims for a validated token set.

        Raises:
            OIDCExchangeError: any failure
        """

    async def aclose(self) -> None:
        """Release network resources."""

    def parse_user_info(self, raw_info: Dict[str, Any]) -> IdentityClaims:
        """
        Map raw OIDC claims to IdentityClaims.

        preferred_username falls back to nickname, email and finally sub.
        """
        subject_id = str(raw_info.get("sub", ""))
        username = (
            raw_info.get("preferred_username")
            or raw_info.get("nickname")
            or raw_info.get("email")
            or subject_id
        )
        return IdentityClaims(
            subject_id=subject_id,
            preferred_username=str(username),
            display_name=raw_info.get("name") or None,
            email=raw_info.get("email"),
            raw=dict(raw_info),
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} issuer={self.config.issuer}>"
