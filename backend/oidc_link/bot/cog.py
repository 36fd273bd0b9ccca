"""
Slash command that starts the linking flow.

The command name comes from settings, so the command is built at runtime
instead of with the class-level `app_commands.command` decorator.
"""

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands
from loguru import logger

from oidc_link.bot.reply import InteractionReplyHandle
from oidc_link.services.link_command import LinkCommandService

LOG_PREFIX = "[LinkCog]"


class LinkCog(commands.Cog):
    def __init__(
        self,
        bot: commands.Bot,
        service: LinkCommandService,
        command_name: str = "link",
        guild_id: Optional[int] = None,
    ):
        self.bot = bot
        self.service = service
        self.guild = discord.Object(id=guild_id) if guild_id else None
        self.link_command = app_commands.Command(
            name=command_name,
            description="Link your Discord account to your identity provider account",
            callback=self._build_callback(),
        )

    def _build_callback(self):
        cog = self

        async def link(interaction: discord.Interaction) -> None:
            await cog.handle_link(interaction)

        return link

    async def cog_load(self) -> None:
        self.bot.tree.add_command(self.link_command, guild=self.guild, override=True)
        logger.info(f"{LOG_PREFIX} Registered /{self.link_command.name}")

    async def cog_unload(self) -> None:
        self.bot.tree.remove_command(self.link_command.name, guild=self.guild)

    async def handle_link(self, interaction: discord.Interaction) -> None:
        user = interaction.user
        try:
            await self.service.start(
                InteractionReplyHandle(interaction),
                chat_user_id=user.id,
                chat_user_name=user.name,
                fallback_channel_id=interaction.channel_id,
            )
        except Exception as e:
            # Already logged by the service; no retry, the pending link expires on its own
            logger.warning(f"{LOG_PREFIX} /{self.link_command.name} for user {user.id} failed: {type(e).__name__}")
