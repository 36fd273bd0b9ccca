"""
Standard OpenID Connect adapter.

Implements the authorization code flow with PKCE and nonce:
1. Discovery (metadata + JWKS), once at startup
2. Authorization URL
3. Exchange code for tokens, validate the ID token
4. Fetch userinfo with access_token
"""

import base64
from typing import Any, Dict, List, Mapping, Optional, cast
from urllib.parse import quote, urlencode

import httpx
from jose import JWTError, jwt
from loguru import logger

from oidc_link.core.oidc.config import OIDCClientConfig, ProviderMetadata
from oidc_link.core.oidc.protocols.base import (
    BaseOIDCAdapter,
    IdentityClaims,
    OIDCDiscoveryError,
    OIDCExchangeError,
    TokenSet,
)
from oidc_link.core.security import constant_time_equals

LOG_PREFIX = "[OIDCAdapter]"


class OIDCAdapter(BaseOIDCAdapter):
    """OIDC adapter backed by httpx."""

    def __init__(self, config: OIDCClientConfig, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self._client = http_client or httpx.AsyncClient(timeout=config.http_timeout_seconds)
        self._jwks: Dict[str, Any] = {"keys": []}

    async def aclose(self) -> None:
        await self._client.aclose()

    # ==================== Discovery ====================

    async def discover(self, issuer: Optional[str] = None) -> ProviderMetadata:
        """
        Fetch config from the OIDC Discovery endpoint, then the JWKS.

        The result is cached; later calls return the cached metadata.
        """
        if self._metadata is not None:
            return self._metadata

        issuer = issuer or self.config.issuer
        discovery_url = f"{issuer.rstrip('/')}/.well-known/openid-configuration"

        try:
            response = await self._client.get(discovery_url)
            response.raise_for_status()
            metadata = ProviderMetadata.from_discovery(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{LOG_PREFIX} OIDC Discovery failed for {issuer}: {e}")
            raise OIDCDiscoveryError(f"Discovery failed for {issuer}") from e

        if metadata.issuer != issuer:
            logger.error(f"{LOG_PREFIX} Issuer mismatch: configured {issuer}, discovered {metadata.issuer}")
            raise OIDCDiscoveryError(f"Discovered issuer {metadata.issuer} does not match {issuer}")

        if metadata.jwks_uri:
            try:
                self._jwks = await self._fetch_jwks(metadata.jwks_uri)
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"{LOG_PREFIX} JWKS fetch failed: {e}")
                raise OIDCDiscoveryError("Failed to fetch provider signing keys") from e

        self._metadata = metadata
        logger.info(f"{LOG_PREFIX} OIDC Discovery successful: {issuer}")
        return metadata

    async def _fetch_jwks(self, jwks_uri: str) -> Dict[str, Any]:
        response = await self._client.get(jwks_uri)
        response.raise_for_status()
        jwks = response.json()
        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise ValueError("JWKS document has no keys array")
        return cast(Dict[str, Any], jwks)

    def _require_metadata(self) -> ProviderMetadata:
        if self._metadata is None:
            raise OIDCDiscoveryError("Provider metadata not loaded; call discover() first")
        return self._metadata

    # ==================== Authorization ====================

    def build_authorization_url(self, state: str, nonce: str, code_challenge: str) -> str:
        metadata = self._require_metadata()
        params = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": self.config.scope,
            "state": state,
            "nonce": nonce,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        separator = "&" if "?" in metadata.authorization_endpoint else "?"
        return f"{metadata.authorization_endpoint}{separator}{urlencode(params)}"

    # ==================== Token exchange ====================

    async def exchange(
        self,
        callback_params: Mapping[str, str],
        expected_state: str,
        expected_nonce: str,
        code_verifier: str,
    ) -> TokenSet:
        metadata = self._require_metadata()

        error = callback_params.get("error")
        if error:
            description = callback_params.get("error_description") or ""
            raise OIDCExchangeError(f"Provider returned error: {error} {description}".strip())

        if not constant_time_equals(callback_params.get("state"), expected_state):
            raise OIDCExchangeError("Callback state does not match the expected state")

        code = callback_params.get("code")
        if not code:
            raise OIDCExchangeError("Authorization code is missing from the callback")

        tokens = await self._exchange_code_for_tokens(metadata, code, code_verifier)

        access_token = tokens.get("access_token")
        id_token = tokens.get("id_token")
        if not access_token:
            raise OIDCExchangeError("No access token in response")
        if not id_token:
            raise OIDCExchangeError("No id_token in response")

        claims = await self._validate_id_token(metadata, id_token, access_token)

        if not constant_time_equals(claims.get("nonce"), expected_nonce):
            raise OIDCExchangeError("ID token nonce does not match")

        expires_in = tokens.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError) as e:
                raise OIDCExchangeError(f"Token response has invalid expires_in: {expires_in!r}") from e
        return TokenSet(
            access_token=access_token,
            id_token=id_token,
            claims=claims,
            token_type=tokens.get("token_type", "Bearer"),
            expires_in=expires_in,
            raw=tokens,
        )

    async def _exchange_code_for_tokens(
        self,
        metadata: ProviderMetadata,
        code: str,
        code_verifier: str,
    ) -> Dict[str, Any]:
        """Post the authorization code to the token endpoint."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_uri,
            "code_verifier": code_verifier,
        }
        headers: Dict[str, str] = {"Accept": "application/json"}

        if self.config.token_endpoint_auth_method == "client_secret_post":
            data["client_id"] = self.config.client_id
            data["client_secret"] = self.config.client_secret
        else:
            # client_secret_basic: credentials are form-encoded before base64 (RFC 6749 2.3.1)
            credentials = base64.b64encode(
                f"{quote(self.config.client_id, safe='')}:{quote(self.config.client_secret, safe='')}".encode()
            ).decode()
            headers["Authorization"] = f"Basic {credentials}"

        try:
            response = await self._client.post(metadata.token_endpoint, data=data, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{LOG_PREFIX} Token request failed: {type(e).__name__}: {e}")
            raise OIDCExchangeError("Token endpoint unreachable") from e

        if response.status_code != 200:
            logger.error(f"{LOG_PREFIX} Token exchange failed: {response.status_code} - {response.text}")
            raise OIDCExchangeError(f"Token exchange failed: {response.status_code}")

        try:
            tokens = response.json()
        except ValueError as e:
            raise OIDCExchangeError("Token endpoint returned invalid JSON") from e
        if not isinstance(tokens, dict):
            raise OIDCExchangeError("Token response is not a JSON object")

        logger.info(f"{LOG_PREFIX} Token exchange successful")
        return cast(Dict[str, Any], tokens)

    async def _validate_id_token(
        self,
        metadata: ProviderMetadata,
        id_token: str,
        access_token: str,
    ) -> Dict[str, Any]:
        """Verify signature, issuer, audience, time claims and at_hash."""
        try:
            header = jwt.get_unverified_header(id_token)
        except JWTError as e:
            raise OIDCExchangeError(f"Malformed ID token: {e}") from e

        algorithm = header.get("alg")
        if not algorithm or algorithm == "none" or algorithm not in metadata.id_token_signing_alg_values_supported:
            raise OIDCExchangeError(f"ID token algorithm {algorithm!r} is not accepted")

        if algorithm.startswith("HS"):
            # Symmetric ID tokens are signed with the client secret (OIDC Core 10.1)
            key: Any = self.config.client_secret
        else:
            key = await self._signing_keys(header.get("kid"))

        try:
            claims = jwt.decode(
                id_token,
                key,
                algorithms=[algorithm],
                audience=self.config.client_id,
                issuer=metadata.issuer,
                access_token=access_token,
                options={"leeway": self.config.clock_tolerance_seconds},
            )
        except JWTError as e:
            logger.warning(f"{LOG_PREFIX} ID token rejected: {e}")
            raise OIDCExchangeError(f"ID token validation failed: {e}") from e

        if not claims.get("sub"):
            raise OIDCExchangeError("ID token has no subject")
        return cast(Dict[str, Any], claims)

    async def _signing_keys(self, kid: Optional[str]) -> Dict[str, Any]:
        """Return the JWKS, refreshing it once if `kid` is unknown (key rotation)."""
        if kid and not self._has_kid(kid):
            metadata = self._require_metadata()
            if metadata.jwks_uri:
                logger.info(f"{LOG_PREFIX} Unknown signing key {kid}, refreshing JWKS")
                try:
                    self._jwks = await self._fetch_jwks(metadata.jwks_uri)
                except (httpx.HTTPError, ValueError) as e:
                    raise OIDCExchangeError("Failed to refresh provider signing keys") from e
            if not self._has_kid(kid):
                raise OIDCExchangeError(f"No signing key with kid {kid}")
        keys: List[Dict[str, Any]] = self._jwks.get("keys", [])
        if not keys:
            raise OIDCExchangeError("Provider published no signing keys")
        if kid:
            return {"keys": [k for k in keys if k.get("kid") == kid]}
        return self._jwks

    def _has_kid(self, kid: str) -> bool:
        return any(k.get("kid") == kid for k in self._jwks.get("keys", []))

    # ==================== Userinfo ====================

    async def fetch_user_info(self, token_set: TokenSet) -> IdentityClaims:
        """
        Fetch user info.

        Userinfo claims are merged over the ID token claims. Providers without a
        userinfo endpoint are served from the ID token alone.
        """
        metadata = self._require_metadata()
        merged: Dict[str, Any] = dict(token_set.claims)

        if metadata.userinfo_endpoint:
            headers = {"Authorization": f"Bearer {token_set.access_token}", "Accept": "application/json"}
            try:
                response = await self._client.get(metadata.userinfo_endpoint, headers=headers)
            except httpx.HTTPError as e:
                logger.error(f"{LOG_PREFIX} Userinfo request failed: {type(e).__name__}: {e}")
                raise OIDCExchangeError("Userinfo endpoint unreachable") from e

            if response.status_code != 200:
                logger.error(f"{LOG_PREFIX} Userinfo fetch failed: {response.status_code} - {response.text}")
                raise OIDCExchangeError(f"Failed to fetch userinfo: {response.status_code}")

            try:
                userinfo = response.json()
            except ValueError as e:
                raise OIDCExchangeError("Userinfo endpoint returned invalid JSON") from e
            if not isinstance(userinfo, dict):
                raise OIDCExchangeError("Userinfo response is not a JSON object")

            # OIDC Core 5.3.2: sub must match the ID token
            if str(userinfo.get("sub", "")) != token_set.subject:
                raise OIDCExchangeError("Userinfo subject does not match the ID token")
            merged.update(userinfo)

        logger.info(f"{LOG_PREFIX} Userinfo resolved for subject {token_set.subject}")
        return self.parse_user_info(merged)
