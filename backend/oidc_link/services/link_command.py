"""
Link command service - handles the chat command that starts linking.

Allocates a pending link and answers the interaction with the login URL.
Everything after that is driven by the browser and the callback.
"""

from typing import Optional

from loguru import logger

from oidc_link.repositories.pending_link import PendingLinkRepository
from oidc_link.services.delivery import ReplyHandle

LOG_PREFIX = "[LinkCommand]"


class LinkCommandService:
    def __init__(self, repository: PendingLinkRepository, public_base_url: str):
        self.repository = repository
        self.public_base_url = public_base_url.rstrip("/")

    def login_url(self, link_token: str) -> str:
        return f"{self.public_base_url}/login/{link_token}"

    async def start(
        self,
        reply_handle: ReplyHandle,
        chat_user_id: int,
        chat_user_name: str,
        fallback_channel_id: Optional[int] = None,
    ) -> str:
        """
        Create the pending link and send the ephemeral login URL.

        Returns:
            The link token

        Raises:
            Exception: the ephemeral reply failed; the command is not retried and
                the pending link is left to expire
        """
        link_token = await self.repository.create(
            chat_user_id=chat_user_id,
            chat_user_name=chat_user_name,
            reply_handle=reply_handle,
            fallback_channel_id=fallback_channel_id,
        )
        url = self.login_url(link_token)

        try:
            await reply_handle.send_ephemeral(
                "Sign in with your identity provider to link your account. "
                "This link is personal and expires soon, do not share it.",
                link_url=url,
            )
        except Exception as e:
            logger.error(
                f"{LOG_PREFIX} Could not send login link to user {chat_user_id} ({chat_user_name}): "
                f"{type(e).__name__}: {e}"
            )
            raise

        logger.info(f"{LOG_PREFIX} Sent login link {link_token[:8]}… to user {chat_user_id} ({chat_user_name})")
        return link_token
