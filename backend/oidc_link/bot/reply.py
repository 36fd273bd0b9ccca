"""
Discord implementations of the delivery capabilities.

- InteractionReplyHandle: wraps the slash-command interaction (valid ~15 min)
- DiscordChannelPoster: plain channel messages through the bot's REST client
"""

from typing import Optional

import discord
from loguru import logger

from oidc_link.common.exceptions import DeliveryError
from oidc_link.services.delivery import ChannelPoster, ReplyHandle

LOG_PREFIX = "[DiscordReply]"

LOGIN_BUTTON_LABEL = "Sign in"


class InteractionReplyHandle(ReplyHandle):
    def __init__(self, interaction: discord.Interaction):
        self.interaction = interaction

    def is_repliable(self) -> bool:
        # The interaction token is what authorises follow-ups; once it expires only
        # channel messages remain.
        return not self.interaction.is_expired()

    async def send_ephemeral(self, content: str, *, link_url: Optional[str] = None) -> None:
        view = discord.utils.MISSING
        if link_url:
            view = discord.ui.View()
            view.add_item(discord.ui.Button(style=discord.ButtonStyle.link, label=LOGIN_BUTTON_LABEL, url=link_url))
            content = f"{content}\n{link_url}"

        if not self.interaction.response.is_done():
            await self.interaction.response.send_message(content, view=view, ephemeral=True)
        else:
            await self.interaction.followup.send(content, view=view, ephemeral=True)

    async def send_followup(self, content: str) -> None:
        await self.interaction.followup.send(content, ephemeral=True)

    def __repr__(self) -> str:
        return f"<InteractionReplyHandle id={self.interaction.id}>"


class DiscordChannelPoster(ChannelPoster):
    def __init__(self, client: discord.Client):
        self.client = client

    async def post(self, channel_id: int, content: str, *, mention_user_id: Optional[int] = None) -> None:
        try:
            channel = self.client.get_channel(channel_id) or await self.client.fetch_channel(channel_id)
        except discord.HTTPException as e:
            raise DeliveryError(f"Channel {channel_id} could not be resolved: {e}") from e

        if not isinstance(channel, discord.abc.Messageable):
            raise DeliveryError(f"Channel {channel_id} does not accept messages")

        allowed_mentions = discord.AllowedMentions.none()
        if mention_user_id is not None:
            allowed_mentions = discord.AllowedMentions(
                everyone=False, roles=False, users=[discord.Object(id=mention_user_id)]
            )

        try:
            await channel.send(content, allowed_mentions=allowed_mentions)
        except discord.HTTPException as e:
            raise DeliveryError(f"Posting to channel {channel_id} failed: {e}") from e

        logger.debug(f"{LOG_PREFIX} Posted to channel {channel_id}")
