"""Core module - configuration, security helpers and the OIDC adapter"""

from .settings import settings

__all__ = ["settings"]
