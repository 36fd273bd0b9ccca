"""
Discord bot client.

Runs inside the web server's event loop: the lifespan calls `login()` (fatal
on bad credentials) and schedules `connect()` as a background task.
"""

from typing import Optional

import discord
from discord.ext import commands
from loguru import logger

from oidc_link.bot.cog import LinkCog
from oidc_link.services.link_command import LinkCommandService

LOG_PREFIX = "[LinkBot]"


class LinkBot(commands.Bot):
    def __init__(
        self,
        command_service: LinkCommandService,
        *,
        command_name: str = "link",
        guild_id: Optional[int] = None,
        application_id: Optional[int] = None,
    ):
        # Slash commands only: no privileged intents needed
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=discord.Intents.default(),
            application_id=application_id,
        )
        self.command_service = command_service
        self.command_name = command_name
        self.guild_id = guild_id

    async def setup_hook(self) -> None:
        await self.add_cog(LinkCog(self, self.command_service, self.command_name, self.guild_id))

        if self.guild_id:
            guild = discord.Object(id=self.guild_id)
            synced = await self.tree.sync(guild=guild)
            logger.info(f"{LOG_PREFIX} Synced {len(synced)} command(s) to guild {self.guild_id}")
        else:
            synced = await self.tree.sync()
            logger.info(f"{LOG_PREFIX} Synced {len(synced)} global command(s)")

    async def on_ready(self) -> None:
        logger.info(f"{LOG_PREFIX} Connected as {self.user} ({self.user.id if self.user else '?'})")
