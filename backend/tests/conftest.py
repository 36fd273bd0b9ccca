"""
Shared fixtures.

Settings are read at import time, so the required environment is set here
before anything from `oidc_link` is imported.
"""

import asyncio
import os
import tempfile

os.environ["PUBLIC_BASE_URL"] = "https://link.example.com"
os.environ["OIDC_ISSUER"] = "https://idp.example.com"
os.environ["OIDC_CLIENT_ID"] = "discord-link"
os.environ["OIDC_CLIENT_SECRET"] = "client-secret-for-tests-0123456789"
os.environ["COOKIE_SECRET"] = "cookie-secret-for-tests-0123456789"
os.environ["DISCORD_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_DIR"] = os.path.join(tempfile.gettempdir(), "oidc-link-test-logs")

from datetime import timedelta  # noqa: E402
from typing import Any, Dict, List, Mapping, Optional  # noqa: E402

import pytest  # noqa: E402

from oidc_link.core.oidc import (  # noqa: E402
    BaseOIDCAdapter,
    IdentityClaims,
    OIDCClientConfig,
    OIDCExchangeError,
    ProviderMetadata,
    TokenSet,
)
from oidc_link.repositories.pending_link import InMemoryPendingLinkRepository  # noqa: E402
from oidc_link.services.csrf_guard import CsrfGuard  # noqa: E402
from oidc_link.services.delivery import ChannelPoster, ReplyHandle  # noqa: E402

COOKIE_SECRET = os.environ["COOKIE_SECRET"]
TTL = timedelta(minutes=15)


class FakeReplyHandle(ReplyHandle):
    """Records what would have been sent to the interaction."""

    def __init__(self, repliable: bool = True, fail_ephemeral: bool = False, fail_followup: bool = False):
        self.repliable = repliable
        self.fail_ephemeral = fail_ephemeral
        self.fail_followup = fail_followup
        self.ephemeral: List[Dict[str, Any]] = []
        self.followups: List[str] = []

    def is_repliable(self) -> bool:
        return self.repliable

    async def send_ephemeral(self, content: str, *, link_url: Optional[str] = None) -> None:
        if self.fail_ephemeral:
            raise RuntimeError("interaction already acknowledged")
        self.ephemeral.append({"content": content, "link_url": link_url})

    async def send_followup(self, content: str) -> None:
        if self.fail_followup:
            raise RuntimeError("unknown webhook")
        self.followups.append(content)


class FakeChannelPoster(ChannelPoster):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.posts: List[Dict[str, Any]] = []

    async def post(self, channel_id: int, content: str, *, mention_user_id: Optional[int] = None) -> None:
        if self.fail:
            from oidc_link.common.exceptions import DeliveryError

            raise DeliveryError("Missing Access")
        self.posts.append({"channel_id": channel_id, "content": content, "mention_user_id": mention_user_id})


class FakeOIDCAdapter(BaseOIDCAdapter):
    """Provider double: returns fixed identity claims and records every call."""

    def __init__(
        self,
        claims: Optional[Dict[str, Any]] = None,
        fail_exchange: bool = False,
        exchange_delay: float = 0.0,
    ):
        super().__init__(
            OIDCClientConfig(
                issuer=os.environ["OIDC_ISSUER"],
                client_id=os.environ["OIDC_CLIENT_ID"],
                client_secret=os.environ["OIDC_CLIENT_SECRET"],
                redirect_uri="https://link.example.com/oauth/callback",
            )
        )
        self._metadata = ProviderMetadata(
            issuer=os.environ["OIDC_ISSUER"],
            authorization_endpoint="https://idp.example.com/authorize",
            token_endpoint="https://idp.example.com/token",
        )
        self.claims = claims or {"sub": "123", "preferred_username": "bob", "name": "Bob"}
        self.fail_exchange = fail_exchange
        self.exchange_delay = exchange_delay
        self.exchange_calls: List[Dict[str, Any]] = []
        self.userinfo_calls = 0

    async def discover(self, issuer: Optional[str] = None) -> ProviderMetadata:
        return self._metadata

    def build_authorization_url(self, state: str, nonce: str, code_challenge: str) -> str:
        return f"https://idp.example.com/authorize?state={state}&nonce={nonce}&code_challenge={code_challenge}"

    async def exchange(
        self,
        callback_params: Mapping[str, str],
        expected_state: str,
        expected_nonce: str,
        code_verifier: str,
    ) -> TokenSet:
        self.exchange_calls.append(
            {
                "params": dict(callback_params),
                "expected_state": expected_state,
                "expected_nonce": expected_nonce,
                "code_verifier": code_verifier,
            }
        )
        if self.exchange_delay:
            await asyncio.sleep(self.exchange_delay)
        if self.fail_exchange:
            raise OIDCExchangeError("Token exchange failed: 400")
        return TokenSet(access_token="at", id_token="id", claims={**self.claims, "nonce": expected_nonce})

    async def fetch_user_info(self, token_set: TokenSet) -> IdentityClaims:
        self.userinfo_calls += 1
        return self.parse_user_info(token_set.claims)


@pytest.fixture
def repository() -> InMemoryPendingLinkRepository:
    return InMemoryPendingLinkRepository(ttl=TTL)


@pytest.fixture
def guard() -> CsrfGuard:
    return CsrfGuard(secret=COOKIE_SECRET, max_age=TTL)


@pytest.fixture
def reply_handle() -> FakeReplyHandle:
    return FakeReplyHandle()


@pytest.fixture
def channel_poster() -> FakeChannelPoster:
    return FakeChannelPoster()


@pytest.fixture
def adapter() -> FakeOIDCAdapter:
    return FakeOIDCAdapter()
