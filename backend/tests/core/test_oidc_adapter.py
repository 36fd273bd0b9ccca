"""
Tests for the httpx OIDC adapter.

Provider traffic is served by `httpx.MockTransport`; ID tokens are minted with
python-jose (HS256 with the client secret, RS256 with a throwaway key).
"""

import base64
import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from oidc_link.core.oidc import OIDCAdapter, OIDCClientConfig, OIDCDiscoveryError, OIDCExchangeError

ISSUER = "https://idp.example.com"
CLIENT_ID = "discord-link"
CLIENT_SECRET = "client-secret-for-tests-0123456789"
REDIRECT_URI = "https://link.example.com/oauth/callback"
STATE = "link-token-abc"
NONCE = "nonce-xyz"


def _rsa_keypair(kid: str):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode()
    public_jwk = jwk.construct(public_pem, "RS256").to_dict()
    public_jwk["kid"] = kid
    return private_pem, public_jwk


class FakeProvider:
    """Minimal OIDC provider served through httpx.MockTransport."""

    def __init__(self, algs: Optional[List[str]] = None):
        self.discovery: Dict[str, Any] = {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/token",
            "userinfo_endpoint": f"{ISSUER}/userinfo",
            "jwks_uri": f"{ISSUER}/jwks",
            "id_token_signing_alg_values_supported": algs or ["HS256", "RS256"],
        }
        self.jwks: Dict[str, Any] = {"keys": []}
        self.id_token_claims: Dict[str, Any] = {}
        self.id_token_key: Any = CLIENT_SECRET
        self.id_token_alg = "HS256"
        self.id_token_headers: Optional[Dict[str, Any]] = None
        self.userinfo: Any = {"sub": "user-1", "preferred_username": "bob", "email": "bob@example.com"}
        self.token_overrides: Dict[str, Any] = {}
        self.token_status = 200
        self.discovery_status = 200
        self.token_requests: List[httpx.Request] = []
        self.jwks_fetches = 0

    def valid_claims(self, **overrides: Any) -> Dict[str, Any]:
        now = int(time.time())
        claims = {"iss": ISSUER, "aud": CLIENT_ID, "sub": "user-1", "iat": now, "exp": now + 300, "nonce": NONCE}
        claims.update(overrides)
        return claims

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            return httpx.Response(self.discovery_status, json=self.discovery)
        if path == "/jwks":
            self.jwks_fetches += 1
            return httpx.Response(200, json=self.jwks)
        if path == "/token":
            self.token_requests.append(request)
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            id_token = jwt.encode(
                self.id_token_claims or self.valid_claims(),
                self.id_token_key,
                algorithm=self.id_token_alg,
                headers=self.id_token_headers,
            )
            body = {"access_token": "access-1", "token_type": "Bearer", "expires_in": 300, "id_token": id_token}
            body.update(self.token_overrides)
            return httpx.Response(200, json=body)
        if path == "/userinfo":
            if request.headers.get("Authorization") != "Bearer access-1":
                return httpx.Response(401)
            return httpx.Response(200, json=self.userinfo)
        return httpx.Response(404)


def _config(**overrides: Any) -> OIDCClientConfig:
    values: Dict[str, Any] = {
        "issuer": ISSUER,
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
        "redirect_uri": REDIRECT_URI,
    }
    values.update(overrides)
    return OIDCClientConfig(**values)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


def _adapter(provider: FakeProvider, **config_overrides: Any) -> OIDCAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    return OIDCAdapter(_config(**config_overrides), http_client=client)


CALLBACK = {"code": "code-1", "state": STATE}


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_discover_caches_metadata(self, provider):
        adapter = _adapter(provider)
        metadata = await adapter.discover()
        assert metadata.token_endpoint == f"{ISSUER}/token"
        assert await adapter.discover() is metadata
        assert provider.jwks_fetches == 1

    @pytest.mark.asyncio
    async def test_discovery_http_failure(self, provider):
        provider.discovery_status = 503
        with pytest.raises(OIDCDiscoveryError):
            await _adapter(provider).discover()

    @pytest.mark.asyncio
    async def test_discovery_issuer_mismatch(self, provider):
        provider.discovery["issuer"] = "https://evil.example.com"
        with pytest.raises(OIDCDiscoveryError):
            await _adapter(provider).discover()

    @pytest.mark.asyncio
    async def test_discovery_missing_endpoint(self, provider):
        del provider.discovery["token_endpoint"]
        with pytest.raises(OIDCDiscoveryError):
            await _adapter(provider).discover()


class TestAuthorizationUrl:
    @pytest.mark.asyncio
    async def test_contains_pkce_nonce_and_state(self, provider):
        adapter = _adapter(provider)
        await adapter.discover()
        url = adapter.build_authorization_url(state=STATE, nonce=NONCE, code_challenge="challenge")

        parsed = urlparse(url)
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == f"{ISSUER}/authorize"
        assert query == {
            "response_type": "code",
            "client_id": CLIENT_ID,
            "redirect_uri": REDIRECT_URI,
            "scope": "openid profile",
            "state": STATE,
            "nonce": NONCE,
            "code_challenge": "challenge",
            "code_challenge_method": "S256",
        }
        # Deterministic for the same inputs
        assert url == adapter.build_authorization_url(state=STATE, nonce=NONCE, code_challenge="challenge")

    def test_requires_discovery(self, provider):
        with pytest.raises(OIDCDiscoveryError):
            _adapter(provider).build_authorization_url(state=STATE, nonce=NONCE, code_challenge="c")


class TestExchange:
    @pytest.mark.asyncio
    async def test_successful_exchange_and_userinfo(self, provider):
        adapter = _adapter(provider)
        await adapter.discover()

        token_set = await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")
        assert token_set.subject == "user-1"
        assert token_set.expires_in == 300

        request = provider.token_requests[0]
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form["code"] == "code-1"
        assert form["code_verifier"] == "verifier-1"
        assert form["redirect_uri"] == REDIRECT_URI
        assert "client_secret" not in form
        basic = base64.b64decode(request.headers["Authorization"].split(" ", 1)[1]).decode()
        assert basic == f"{CLIENT_ID}:{CLIENT_SECRET}"

        claims = await adapter.fetch_user_info(token_set)
        assert claims.subject_id == "user-1"
        assert claims.preferred_username == "bob"
        assert claims.email == "bob@example.com"

    @pytest.mark.asyncio
    async def test_client_secret_post(self, provider):
        adapter = _adapter(provider, token_endpoint_auth_method="client_secret_post")
        await adapter.discover()
        await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

        request = provider.token_requests[0]
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form["client_id"] == CLIENT_ID
        assert form["client_secret"] == CLIENT_SECRET
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_nonce_mismatch(self, provider):
        provider.id_token_claims = provider.valid_claims(nonce="someone-elses-nonce")
        adapter = _adapter(provider)
        await adapter.discover()
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

    @pytest.mark.asyncio
    async def test_wrong_audience(self, provider):
        provider.id_token_claims = provider.valid_claims(aud="another-client")
        adapter = _adapter(provider)
        await adapter.discover()
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

    @pytest.mark.asyncio
    async def test_wrong_issuer(self, provider):
        provider.id_token_claims = provider.valid_claims(iss="https://evil.example.com")
        adapter = _adapter(provider)
        await adapter.discover()
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

    @pytest.mark.asyncio
    async def test_clock_tolerance(self, provider):
        now = int(time.time())
        adapter = _adapter(provider)
        await adapter.discover()

        # Expired a minute ago: inside the 180 s leeway
        provider.id_token_claims = provider.valid_claims(iat=now - 400, exp=now - 60)
        await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

        provider.id_token_claims = provider.valid_claims(iat=now - 900, exp=now - 600)
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

    @pytest.mark.asyncio
    async def test_tampered_signature(self, provider):
        provider.id_token_key = "not-the-client-secret"
        adapter = _adapter(provider)
        await adapter.discover()
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

    @pytest.mark.asyncio
    async def test_algorithm_not_advertised(self):
        provider = FakeProvider(algs=["RS256"])
        adapter = _adapter(provider)
        await adapter.discover()
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

    @pytest.mark.asyncio
    async def test_provider_error_and_state_checks(self, provider):
        adapter = _adapter(provider)
        await adapter.discover()

        with pytest.raises(OIDCExchangeError):
            await adapter.exchange({"error": "access_denied", "state": STATE}, STATE, NONCE, "v")
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange({"code": "code-1", "state": "other"}, STATE, NONCE, "v")
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange({"state": STATE}, STATE, NONCE, "v")
        assert provider.token_requests == []

    @pytest.mark.asyncio
    async def test_token_endpoint_rejects_code(self, provider):
        provider.token_status = 400
        adapter = _adapter(provider)
        await adapter.discover()
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

    @pytest.mark.asyncio
    async def test_network_failure_is_exchange_error(self, provider):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/token":
                raise httpx.ConnectTimeout("timed out", request=request)
            return provider.handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = OIDCAdapter(_config(), http_client=client)
        await adapter.discover()
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

    @pytest.mark.asyncio
    async def test_malformed_expires_in(self, provider):
        provider.token_overrides = {"expires_in": "soon"}
        adapter = _adapter(provider)
        await adapter.discover()
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")

    @pytest.mark.asyncio
    async def test_numeric_string_expires_in(self, provider):
        provider.token_overrides = {"expires_in": "3600"}
        adapter = _adapter(provider)
        await adapter.discover()
        token_set = await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")
        assert token_set.expires_in == 3600


class TestAsymmetricKeys:
    @pytest.mark.asyncio
    async def test_rs256_with_key_rotation(self, provider):
        old_private, old_public = _rsa_keypair("old")
        new_private, new_public = _rsa_keypair("new")
        provider.jwks = {"keys": [old_public]}
        adapter = _adapter(provider)
        await adapter.discover()

        # Provider rotates after discovery; an unknown kid triggers one refresh
        provider.jwks = {"keys": [old_public, new_public]}
        provider.id_token_alg = "RS256"
        provider.id_token_key = new_private
        provider.id_token_headers = {"kid": "new"}

        token_set = await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")
        assert token_set.subject == "user-1"
        assert provider.jwks_fetches == 2

    @pytest.mark.asyncio
    async def test_rs256_signed_by_unknown_key(self, provider):
        _, published = _rsa_keypair("k1")
        rogue_private, _ = _rsa_keypair("k1")
        provider.jwks = {"keys": [published]}
        provider.id_token_alg = "RS256"
        provider.id_token_key = rogue_private
        provider.id_token_headers = {"kid": "k1"}
        adapter = _adapter(provider)
        await adapter.discover()
        with pytest.raises(OIDCExchangeError):
            await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")


class TestUserInfo:
    @pytest.mark.asyncio
    async def test_subject_mismatch(self, provider):
        provider.userinfo = {"sub": "someone-else", "preferred_username": "mallory"}
        adapter = _adapter(provider)
        await adapter.discover()
        token_set = await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")
        with pytest.raises(OIDCExchangeError):
            await adapter.fetch_user_info(token_set)

    @pytest.mark.asyncio
    async def test_userinfo_not_an_object(self, provider):
        provider.userinfo = [{"sub": "user-1"}]
        adapter = _adapter(provider)
        await adapter.discover()
        token_set = await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")
        with pytest.raises(OIDCExchangeError):
            await adapter.fetch_user_info(token_set)

    @pytest.mark.asyncio
    async def test_without_userinfo_endpoint_uses_id_token(self, provider):
        del provider.discovery["userinfo_endpoint"]
        provider.id_token_claims = provider.valid_claims(preferred_username="bob.idtoken")
        adapter = _adapter(provider)
        await adapter.discover()
        token_set = await adapter.exchange(CALLBACK, STATE, NONCE, "verifier-1")
        claims = await adapter.fetch_user_info(token_set)
        assert claims.preferred_username == "bob.idtoken"

    def test_username_fallbacks(self, provider):
        adapter = _adapter(provider)
        assert adapter.parse_user_info({"sub": "1", "nickname": "nick"}).preferred_username == "nick"
        assert adapter.parse_user_info({"sub": "1", "email": "a@b.c"}).preferred_username == "a@b.c"
        assert adapter.parse_user_info({"sub": "1"}).preferred_username == "1"
