"""
Link callback service - business logic of the browser side of linking

- Start the login redirect for a pending link
- Resolve the provider callback: CSRF check, code exchange, userinfo
- Deliver the result to the chat user exactly once and retire the link

A CSRF mismatch or failed exchange leaves the pending link in place: the user
can open the login URL again (fresh cookies, nonce and PKCE pair) until the
link expires. Only one callback per link reaches the provider at a time.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

from loguru import logger

from oidc_link.common.exceptions import (
    AuthorizationDeniedException,
    CsrfMismatchException,
    ExchangeFailureException,
    InvalidOrExpiredLinkException,
)
from oidc_link.core.oidc import BaseOIDCAdapter, IdentityClaims, OIDCExchangeError
from oidc_link.repositories.pending_link import PendingLinkRepository
from oidc_link.services.csrf_guard import CsrfCookies, CsrfGuard, CsrfMismatchError, CsrfSession
from oidc_link.services.delivery import DeliveryOutcome, ResultDelivery

LOG_PREFIX = "[LinkCallback]"


@dataclass
class LinkResult:
    claims: IdentityClaims
    chat_user_id: int
    chat_user_name: str
    delivery: DeliveryOutcome


class LinkCallbackService:
    """Login redirect + callback resolution."""

    def __init__(
        self,
        repository: PendingLinkRepository,
        guard: CsrfGuard,
        adapter: BaseOIDCAdapter,
        delivery: ResultDelivery,
    ):
        self.repository = repository
        self.guard = guard
        self.adapter = adapter
        self.delivery = delivery

    # ==================== Login ====================

    async def begin_login(self, link_token: str) -> tuple[str, CsrfSession]:
        """
        Issue a CSRF session for a pending link and build the authorization URL.

        Raises:
            InvalidOrExpiredLinkException: unknown or expired link token
        """
        link = await self.repository.get(link_token)
        if link is None:
            logger.warning(f"{LOG_PREFIX} Login for unknown link {link_token[:8]}…")
            raise InvalidOrExpiredLinkException()

        session = self.guard.issue(link.link_token)
        authorization_url = self.adapter.build_authorization_url(
            state=session.state,
            nonce=session.nonce,
            code_challenge=session.code_challenge,
        )
        logger.info(f"{LOG_PREFIX} Redirecting link {link.token_hint} (user {link.chat_user_id}) to provider")
        return authorization_url, session

    # ==================== Callback ====================

    async def resolve(self, params: Mapping[str, str], cookies: CsrfCookies) -> LinkResult:
        """
        Resolve a provider redirect.

        Raises:
            InvalidOrExpiredLinkException: state missing, no pending link, or
                another callback for the same link is already being resolved
            CsrfMismatchException: cookies do not match the state
            AuthorizationDeniedException: provider redirected with an error
            ExchangeFailureException: code exchange / identity validation failed
        """
        # 1. state
        state: Optional[str] = params.get("state")
        if not state:
            logger.warning(f"{LOG_PREFIX} Callback without state")
            raise InvalidOrExpiredLinkException()

        # 2. pending link
        link = await self.repository.get(state)
        if link is None:
            logger.warning(f"{LOG_PREFIX} Callback for unknown or consumed link {state[:8]}…")
            raise InvalidOrExpiredLinkException()

        # 3. CSRF
        try:
            session = self.guard.verify(cookies.state, cookies.nonce, state)
        except CsrfMismatchError as e:
            logger.warning(f"{LOG_PREFIX} CSRF check failed for link {link.token_hint}: {e}")
            raise CsrfMismatchException()

        if params.get("error"):
            logger.warning(
                f"{LOG_PREFIX} Provider returned error for link {link.token_hint}: "
                f"{params.get('error')} - {params.get('error_description')}"
            )
            raise AuthorizationDeniedException()

        # 4. claim, exchange + userinfo
        if await self.repository.claim(link.link_token) is None:
            logger.warning(f"{LOG_PREFIX} Duplicate callback for link {link.token_hint}")
            raise InvalidOrExpiredLinkException()

        try:
            token_set = await self.adapter.exchange(
                params,
                expected_state=session.state,
                expected_nonce=session.nonce,
                code_verifier=session.code_verifier,
            )
            claims = await self.adapter.fetch_user_info(token_set)
        except OIDCExchangeError as e:
            await self.repository.release(link.link_token)
            logger.error(
                f"{LOG_PREFIX} Exchange failed for link {link.token_hint} (user {link.chat_user_id}): {e}"
            )
            raise ExchangeFailureException()
        except BaseException:
            await self.repository.release(link.link_token)
            raise

        # 5. deliver, 6. retire
        try:
            outcome = await self.delivery.deliver(link, claims)
        finally:
            await self.repository.remove(link.link_token)

        logger.info(
            f"{LOG_PREFIX} Linked discord user {link.chat_user_id} ({link.chat_user_name}) "
            f"to subject {claims.subject_id} ({claims.preferred_username}), delivery={outcome.value}"
        )
        return LinkResult(
            claims=claims,
            chat_user_id=link.chat_user_id,
            chat_user_name=link.chat_user_name,
            delivery=outcome,
        )
