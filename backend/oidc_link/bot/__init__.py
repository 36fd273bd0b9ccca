"""
Discord side of the linking flow (discord.py).
"""

from oidc_link.bot.client import LinkBot
from oidc_link.bot.cog import LinkCog
from oidc_link.bot.reply import DiscordChannelPoster, InteractionReplyHandle

__all__ = ["DiscordChannelPoster", "InteractionReplyHandle", "LinkBot", "LinkCog"]
