"""
OIDC client configuration.

- OIDCClientConfig: immutable client settings, built once at startup
- ProviderMetadata: the subset of the discovery document the flow needs
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

DEFAULT_CLOCK_TOLERANCE_SECONDS = 180
DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class OIDCClientConfig:
    """OIDC relying-party configuration."""

    issuer: str
    client_id: str
    client_secret: str
    redirect_uri: str
    scope: str = "openid profile"
    token_endpoint_auth_method: str = "client_secret_basic"
    # Leeway for exp/iat/nbf so provider clock drift does not reject fresh tokens
    clock_tolerance_seconds: int = DEFAULT_CLOCK_TOLERANCE_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS

    @property
    def discovery_url(self) -> str:
        return f"{self.issuer.rstrip('/')}/.well-known/openid-configuration"

    @classmethod
    def from_settings(cls, settings: Any) -> "OIDCClientConfig":
        """Build from the application settings object."""
        return cls(
            issuer=settings.oidc_issuer,
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            redirect_uri=settings.oidc_redirect_uri,
            scope=settings.oidc_scope,
            token_endpoint_auth_method=settings.oidc_token_endpoint_auth_method,
            clock_tolerance_seconds=settings.oidc_clock_tolerance_seconds,
            http_timeout_seconds=settings.oidc_http_timeout_seconds,
        )


@dataclass(frozen=True)
class ProviderMetadata:
    """Provider endpoints and capabilities from OIDC Discovery."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    id_token_signing_alg_values_supported: Tuple[str, ...] = ("RS256",)
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_discovery(cls, document: Dict[str, Any]) -> "ProviderMetadata":
        """
        Parse a discovery document.

        Raises:
            ValueError: a required endpoint is missing
        """
        missing = [k for k in ("issuer", "authorization_endpoint", "token_endpoint") if not document.get(k)]
        if missing:
            raise ValueError(f"Discovery document missing {', '.join(missing)}")

        algs = document.get("id_token_signing_alg_values_supported") or ["RS256"]
        return cls(
            issuer=document["issuer"],
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            jwks_uri=document.get("jwks_uri"),
            userinfo_endpoint=document.get("userinfo_endpoint"),
            id_token_signing_alg_values_supported=tuple(algs),
            raw=document,
        )
