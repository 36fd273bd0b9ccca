"""OIDC adapter implementations."""

from oidc_link.core.oidc.protocols.base import BaseOIDCAdapter
from oidc_link.core.oidc.protocols.oidc import OIDCAdapter

__all__ = ["BaseOIDCAdapter", "OIDCAdapter"]
