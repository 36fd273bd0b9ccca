"""
OIDC session adapter.

Module layout:
- config.py: OIDCClientConfig (immutable client settings), ProviderMetadata
- protocols/base.py: capability interface, result types, errors
- protocols/oidc.py: httpx implementation (discovery, PKCE/nonce code flow, userinfo)
"""

from oidc_link.core.oidc.config import OIDCClientConfig, ProviderMetadata
from oidc_link.core.oidc.protocols.base import (
    BaseOIDCAdapter,
    IdentityClaims,
    OIDCDiscoveryError,
    OIDCError,
    OIDCExchangeError,
    TokenSet,
)
from oidc_link.core.oidc.protocols.oidc import OIDCAdapter

__all__ = [
    "BaseOIDCAdapter",
    "IdentityClaims",
    "OIDCAdapter",
    "OIDCClientConfig",
    "OIDCDiscoveryError",
    "OIDCError",
    "OIDCExchangeError",
    "ProviderMetadata",
    "TokenSet",
]
