"""
Unit tests for ticket creation from panels
"""

from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from cogs.tickets import CREATE_PREFIX, Tickets

GUILD_ID = 987654321
USER_ID = 123456789


def make_interaction(channel_category=None, custom_id=None):
    """Component interaction clicked in a panel channel"""
    interaction = MagicMock()
    interaction.type = discord.InteractionType.component
    interaction.data = {"custom_id": custom_id} if custom_id else {}
    interaction.guild.id = GUILD_ID
    interaction.guild.get_channel.return_value = None
    interaction.user.id = USER_ID
    interaction.channel.category_id = channel_category
    interaction.response.defer = AsyncMock()
    interaction.response.is_done.return_value = True
    interaction.followup.send = AsyncMock()
    return interaction


@pytest.fixture
def cog(tickets):
    return Tickets(MagicMock(), tickets)


@pytest.mark.asyncio
async def test_ticket_opens_in_panel_channel_category(cog, transport):
    await cog.create_ticket_for_user(make_interaction(channel_category=321))

    _, spec = transport.created[0]
    assert spec.parent_id == 321


@pytest.mark.asyncio
async def test_configured_category_beats_panel_channel(cog, tickets, transport):
    tickets.config.category = 654

    await cog.create_ticket_for_user(make_interaction(channel_category=321))

    assert transport.created[0][1].parent_id == 654


@pytest.mark.asyncio
async def test_category_bound_panel_button(cog, tickets, transport):
    tickets.config.category = 654

    await cog.on_interaction(make_interaction(channel_category=321, custom_id=f"{CREATE_PREFIX}777"))

    assert transport.created[0][1].parent_id == 777


@pytest.mark.asyncio
async def test_unrelated_components_are_ignored(cog, transport):
    await cog.on_interaction(make_interaction(custom_id="poll_vote_1_0"))
    await cog.on_interaction(make_interaction(custom_id=f"{CREATE_PREFIX}abc"))

    assert transport.created == []


@pytest.mark.asyncio
async def test_failed_create_still_answers_the_user(cog, transport):
    interaction = make_interaction()
    await cog.create_ticket_for_user(interaction)

    second = make_interaction()
    await cog.create_ticket_for_user(second)

    embed = second.followup.send.call_args.kwargs["embed"]
    assert "Conflict" in embed.title
    assert len(transport.created) == 1
