"""
Result delivery back to the chat platform.

Two capabilities, picked at delivery time by asking the reply handle whether it
can still be used:
- ReplyHandle: the originating interaction (bounded lifetime, ephemeral)
- ChannelPoster: a plain channel message (unbounded, best-effort, public)
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from loguru import logger

from oidc_link.common.exceptions import DeliveryError
from oidc_link.core.oidc import IdentityClaims
from oidc_link.models.pending_link import PendingLink
from oidc_link.repositories.pending_link import PendingLinkRepository

LOG_PREFIX = "[Delivery]"


class ReplyHandle(ABC):
    """Capability to answer the interaction that started a link."""

    @abstractmethod
    def is_repliable(self) -> bool:
        """False once the platform no longer accepts follow-ups for this interaction."""

    @abstractmethod
    async def send_ephemeral(self, content: str, *, link_url: Optional[str] = None) -> None:
        """Initial response, visible only to the requester."""

    @abstractmethod
    async def send_followup(self, content: str) -> None:
        """Follow-up message, visible only to the requester."""


class ChannelPoster(ABC):
    """Capability to post into a channel."""

    @abstractmethod
    async def post(self, channel_id: int, content: str, *, mention_user_id: Optional[int] = None) -> None:
        """
        Raises:
            DeliveryError: the channel is unknown or the platform rejected the message
        """


class DeliveryOutcome(str, Enum):
    REPLY = "reply"
    FALLBACK = "fallback"
    SKIPPED = "skipped"
    FAILED = "failed"


def format_reply_message(claims: IdentityClaims) -> str:
    return f"✅ Your account is now linked to **{claims.preferred_username}** (subject `{claims.subject_id}`)."


def format_fallback_message(chat_user_id: int, claims: IdentityClaims) -> str:
    return (
        f"<@{chat_user_id}> your account is now linked to **{claims.preferred_username}** "
        f"(subject `{claims.subject_id}`)."
    )


class ResultDelivery:
    """Delivers a successful link result exactly once."""

    def __init__(self, repository: PendingLinkRepository, channel_poster: ChannelPoster):
        self.repository = repository
        self.channel_poster = channel_poster

    async def deliver(self, link: PendingLink, claims: IdentityClaims) -> DeliveryOutcome:
        """
        Claim the link, then reply through the interaction if it is still
        repliable, otherwise post to the fallback channel.

        Never raises: a failed delivery does not undo a verified identity.
        """
        if not await self.repository.mark_responded(link.link_token):
            logger.warning(f"{LOG_PREFIX} Link {link.token_hint} already responded, not delivering again")
            return DeliveryOutcome.SKIPPED

        if link.reply_handle.is_repliable():
            try:
                await link.reply_handle.send_followup(format_reply_message(claims))
                logger.info(f"{LOG_PREFIX} Delivered link {link.token_hint} via interaction follow-up")
                return DeliveryOutcome.REPLY
            except Exception as e:
                logger.warning(
                    f"{LOG_PREFIX} Follow-up for link {link.token_hint} failed ({type(e).__name__}: {e}), "
                    "using fallback channel"
                )

        return await self._deliver_fallback(link, claims)

    async def _deliver_fallback(self, link: PendingLink, claims: IdentityClaims) -> DeliveryOutcome:
        try:
            if link.fallback_channel_id is None:
                raise DeliveryError("Interaction expired and no fallback channel is known")
            await self.channel_poster.post(
                link.fallback_channel_id,
                format_fallback_message(link.chat_user_id, claims),
                mention_user_id=link.chat_user_id,
            )
        except Exception as e:
            logger.error(
                f"{LOG_PREFIX} Delivery failed for link {link.token_hint} "
                f"(user {link.chat_user_id}, channel {link.fallback_channel_id}): {type(e).__name__}: {e}"
            )
            return DeliveryOutcome.FAILED

        logger.info(f"{LOG_PREFIX} Delivered link {link.token_hint} to channel {link.fallback_channel_id}")
        return DeliveryOutcome.FALLBACK


class DisabledChannelPoster(ChannelPoster):
    """Used when the Discord client is not running; every post fails."""

    async def post(self, channel_id: int, content: str, *, mention_user_id: Optional[int] = None) -> None:
        raise DeliveryError("Discord client is disabled")
