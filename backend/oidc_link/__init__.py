"""Discord ⇄ OpenID Connect account linking service."""

__version__ = "0.1.0"
