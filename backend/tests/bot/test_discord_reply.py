"""Tests for the discord.py reply and channel adapters."""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from oidc_link.bot.cog import LinkCog
from oidc_link.bot.reply import DiscordChannelPoster, InteractionReplyHandle
from oidc_link.common.exceptions import DeliveryError


def _interaction(expired: bool = False, response_done: bool = False) -> MagicMock:
    interaction = MagicMock()
    interaction.id = 1
    interaction.is_expired.return_value = expired
    interaction.response.is_done.return_value = response_done
    interaction.response.send_message = AsyncMock()
    interaction.followup.send = AsyncMock()
    return interaction


class TestInteractionReplyHandle:
    def test_is_repliable_follows_interaction_expiry(self):
        assert InteractionReplyHandle(_interaction(expired=False)).is_repliable() is True
        assert InteractionReplyHandle(_interaction(expired=True)).is_repliable() is False

    @pytest.mark.asyncio
    async def test_send_ephemeral_with_link_button(self):
        interaction = _interaction()
        await InteractionReplyHandle(interaction).send_ephemeral("Sign in", link_url="https://x/login/t")

        interaction.response.send_message.assert_awaited_once()
        args, kwargs = interaction.response.send_message.call_args
        assert kwargs["ephemeral"] is True
        assert "https://x/login/t" in args[0]
        buttons = kwargs["view"].children
        assert len(buttons) == 1
        assert buttons[0].url == "https://x/login/t"

    @pytest.mark.asyncio
    async def test_send_ephemeral_after_ack_uses_followup(self):
        interaction = _interaction(response_done=True)
        await InteractionReplyHandle(interaction).send_ephemeral("hello")

        interaction.response.send_message.assert_not_awaited()
        interaction.followup.send.assert_awaited_once()
        assert interaction.followup.send.call_args.kwargs["ephemeral"] is True

    @pytest.mark.asyncio
    async def test_send_followup_is_ephemeral(self):
        interaction = _interaction()
        await InteractionReplyHandle(interaction).send_followup("linked")
        interaction.followup.send.assert_awaited_once_with("linked", ephemeral=True)


class TestDiscordChannelPoster:
    @pytest.mark.asyncio
    async def test_posts_with_user_mention_only(self):
        channel = MagicMock(spec=discord.TextChannel)
        channel.send = AsyncMock()
        client = MagicMock()
        client.get_channel.return_value = channel

        await DiscordChannelPoster(client).post(555, "<@42> linked", mention_user_id=42)

        channel.send.assert_awaited_once()
        mentions = channel.send.call_args.kwargs["allowed_mentions"]
        assert [u.id for u in mentions.users] == [42]
        assert mentions.everyone is False
        assert mentions.roles is False

    @pytest.mark.asyncio
    async def test_fetches_uncached_channel(self):
        channel = MagicMock(spec=discord.TextChannel)
        channel.send = AsyncMock()
        client = MagicMock()
        client.get_channel.return_value = None
        client.fetch_channel = AsyncMock(return_value=channel)

        await DiscordChannelPoster(client).post(555, "hi")

        client.fetch_channel.assert_awaited_once_with(555)
        channel.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_channel(self):
        client = MagicMock()
        client.get_channel.return_value = None
        client.fetch_channel = AsyncMock(
            side_effect=discord.NotFound(MagicMock(status=404, reason="Not Found"), "Unknown Channel")
        )
        with pytest.raises(DeliveryError):
            await DiscordChannelPoster(client).post(555, "hi")

    @pytest.mark.asyncio
    async def test_rejected_message(self):
        channel = MagicMock(spec=discord.TextChannel)
        channel.send = AsyncMock(
            side_effect=discord.Forbidden(MagicMock(status=403, reason="Forbidden"), "Missing Access")
        )
        client = MagicMock()
        client.get_channel.return_value = channel
        with pytest.raises(DeliveryError):
            await DiscordChannelPoster(client).post(555, "hi")

    @pytest.mark.asyncio
    async def test_channel_without_messages(self):
        client = MagicMock()
        client.get_channel.return_value = MagicMock(spec=discord.CategoryChannel)
        with pytest.raises(DeliveryError):
            await DiscordChannelPoster(client).post(555, "hi")


class TestLinkCog:
    def _cog(self, service) -> LinkCog:
        return LinkCog(MagicMock(), service, command_name="verify")

    def test_command_name_is_configurable(self):
        assert self._cog(MagicMock()).link_command.name == "verify"

    @pytest.mark.asyncio
    async def test_handle_link_starts_flow(self):
        service = MagicMock()
        service.start = AsyncMock(return_value="token")
        interaction = _interaction()
        interaction.user.id = 42
        interaction.user.name = "alice"
        interaction.channel_id = 555

        await self._cog(service).handle_link(interaction)

        service.start.assert_awaited_once()
        args, kwargs = service.start.call_args
        assert isinstance(args[0], InteractionReplyHandle)
        assert args[0].interaction is interaction
        assert kwargs == {"chat_user_id": 42, "chat_user_name": "alice", "fallback_channel_id": 555}

    @pytest.mark.asyncio
    async def test_handle_link_failure_is_not_raised(self):
        service = MagicMock()
        service.start = AsyncMock(side_effect=RuntimeError("Unknown interaction"))
        interaction = _interaction()
        interaction.user.id = 42

        await self._cog(service).handle_link(interaction)
        service.start.assert_awaited_once()
