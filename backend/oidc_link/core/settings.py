"""
Application settings.

All values are read once at startup from the environment (or `backend/.env`).
"""
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# From oidc_link/core/settings.py up two levels to backend/
BASE_DIR = Path(__file__).resolve().parent.parent.parent
ENV_FILE = BASE_DIR / ".env"


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = Field(
        default="OIDC Link",
        description="Application name"
    )
    app_version: str = Field(
        default="0.1.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        validation_alias=AliasChoices("DEBUG", "APP_DEBUG"),
        description="Enable debug mode"
    )
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "ENV", "APP_ENV"),
        description="Application environment (development, staging, production)"
    )

    # Server
    host: str = Field(
        default="0.0.0.0",
        validation_alias=AliasChoices("HOST", "SERVER_HOST"),
        description="HTTP server host"
    )
    port: int = Field(
        default=3000,
        validation_alias=AliasChoices("PORT", "SERVER_PORT"),
        description="HTTP server port"
    )
    public_base_url: str = Field(
        ...,
        validation_alias=AliasChoices("PUBLIC_BASE_URL", "BASE_URL"),
        description="Externally reachable base URL, used for login links and the OIDC redirect URI"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL"),
        description="Minimum log level"
    )
    log_dir: str = Field(
        default="logs",
        validation_alias=AliasChoices("LOG_DIR"),
        description="Directory for rotated log files"
    )

    # OIDC provider
    oidc_issuer: str = Field(
        ...,
        validation_alias=AliasChoices("OIDC_ISSUER", "OIDC_ISSUER_URL"),
        description="OIDC issuer URL (discovery is fetched from {issuer}/.well-known/openid-configuration)"
    )
    oidc_client_id: str = Field(
        ...,
        validation_alias=AliasChoices("OIDC_CLIENT_ID"),
        description="OIDC client id"
    )
    oidc_client_secret: str = Field(
        ...,
        validation_alias=AliasChoices("OIDC_CLIENT_SECRET"),
        description="OIDC client secret"
    )
    oidc_scope: str = Field(
        default="openid profile",
        validation_alias=AliasChoices("OIDC_SCOPE"),
        description="Requested scopes"
    )
    oidc_token_endpoint_auth_method: str = Field(
        default="client_secret_basic",
        validation_alias=AliasChoices("OIDC_TOKEN_ENDPOINT_AUTH_METHOD"),
        description="client_secret_basic or client_secret_post"
    )
    oidc_clock_tolerance_seconds: int = Field(
        default=180,
        validation_alias=AliasChoices("OIDC_CLOCK_TOLERANCE_SECONDS", "OIDC_CLOCK_TOLERANCE"),
        description="Leeway applied to ID token time claims"
    )
    oidc_http_timeout_seconds: float = Field(
        default=10.0,
        validation_alias=AliasChoices("OIDC_HTTP_TIMEOUT_SECONDS", "OIDC_HTTP_TIMEOUT"),
        description="Timeout for every request to the identity provider"
    )

    # Cookies
    cookie_secret: str = Field(
        ...,
        validation_alias=AliasChoices("COOKIE_SECRET", "SECRET_KEY"),
        description="Signing key for the login cookies (REQUIRED, keep stable across restarts)"
    )
    cookie_algorithm: str = Field(
        default="HS256",
        validation_alias=AliasChoices("COOKIE_ALGORITHM"),
        description="Cookie signing algorithm"
    )
    cookie_domain: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("COOKIE_DOMAIN"),
        description="Cookie domain"
    )
    cookie_secure: bool = Field(
        default=False,
        validation_alias=AliasChoices("COOKIE_SECURE"),
        description="Cookie Secure flag (auto-enabled in production)"
    )
    cookie_samesite: str = Field(
        default="lax",  # "lax" | "strict" | "none"
        validation_alias=AliasChoices("COOKIE_SAMESITE"),
        description="Cookie SameSite attribute (lax, strict, none)"
    )

    @computed_field
    @property
    def cookie_secure_effective(self) -> bool:
        """Secure cookies are forced on in production"""
        if self.environment == "production":
            return True
        return self.cookie_secure

    # Discord
    discord_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("DISCORD_ENABLED"),
        description="Start the Discord bot (disable to serve HTTP only)"
    )
    discord_bot_token: str = Field(
        default="",
        validation_alias=AliasChoices("DISCORD_BOT_TOKEN", "DISCORD_TOKEN"),
        description="Bot token"
    )
    discord_application_id: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("DISCORD_APPLICATION_ID", "DISCORD_CLIENT_ID"),
        description="Application id"
    )
    discord_guild_id: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("DISCORD_GUILD_ID"),
        description="Sync commands to this guild only (instant); global sync when unset"
    )
    link_command_name: str = Field(
        default="link",
        validation_alias=AliasChoices("LINK_COMMAND_NAME"),
        description="Name of the slash command that starts linking"
    )

    # Pending links
    pending_link_ttl_seconds: int = Field(
        default=900,  # Discord interaction tokens live 15 minutes
        validation_alias=AliasChoices("PENDING_LINK_TTL_SECONDS", "LINK_TTL_SECONDS"),
        description="Age after which an unfinished link is discarded"
    )
    pending_link_sweep_interval_seconds: int = Field(
        default=60,
        validation_alias=AliasChoices("PENDING_LINK_SWEEP_INTERVAL_SECONDS"),
        description="Interval of the background expiry sweep"
    )

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("oidc_token_endpoint_auth_method")
    @classmethod
    def check_auth_method(cls, v: str) -> str:
        if v not in ("client_secret_basic", "client_secret_post"):
            raise ValueError("must be client_secret_basic or client_secret_post")
        return v

    @computed_field
    @property
    def oidc_redirect_uri(self) -> str:
        return f"{self.public_base_url}/oauth/callback"


settings = Settings()
