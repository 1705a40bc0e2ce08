"""
Transport layer for Crenors
Outbound Discord actions used by the leveling, poll and ticket managers
"""

import io
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Protocol, Set

import discord
from discord.ext import commands

from core.errors import ForbiddenError, NotFoundError, TransientError

logger = logging.getLogger(__name__)


@dataclass
class ChannelSpec:
    """Private text channel to create for a member"""
    name: str
    owner_id: int
    parent_id: Optional[int] = None
    staff_role_id: Optional[int] = None
    topic: Optional[str] = None


@dataclass
class Attachment:
    """File sent alongside a message"""
    filename: str
    data: bytes


@dataclass
class TranscriptLine:
    """One message of a channel history"""
    timestamp: datetime
    author: str
    content: str

    def render(self) -> str:
        return f"[{self.timestamp.isoformat()}] {self.author}: {self.content}"


class Transport(Protocol):
    """Actions the managers request from the chat platform"""

    async def send_message(self, channel_id: int, content: str, attachment: Optional[Attachment] = None) -> None:
        ...

    async def grant_role(self, guild_id: int, user_id: int, role_id: int) -> None:
        ...

    async def create_channel(self, guild_id: int, spec: ChannelSpec) -> int:
        ...

    async def delete_channel(self, channel_id: int) -> None:
        ...

    async def fetch_recent_messages(self, channel_id: int, limit: int) -> List[TranscriptLine]:
        ...

    async def member_role_ids(self, guild_id: int, user_id: int) -> Set[int]:
        ...


class DiscordTransport:
    """Transport backed by a discord.py bot"""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    async def _channel(self, channel_id: int):
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.bot.fetch_channel(channel_id)
            except discord.NotFound as e:
                raise NotFoundError(f"Channel {channel_id} not found") from e
            except discord.HTTPException as e:
                raise TransientError(f"Could not fetch channel {channel_id}") from e
        return channel

    def _guild(self, guild_id: int) -> discord.Guild:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise NotFoundError(f"Guild {guild_id} not found")
        return guild

    async def send_message(self, channel_id: int, content: str, attachment: Optional[Attachment] = None) -> None:
        channel = await self._channel(channel_id)
        file = None
        if attachment:
            file = discord.File(io.BytesIO(attachment.data), filename=attachment.filename)

        try:
            await channel.send(content, file=file)
        except discord.Forbidden as e:
            raise ForbiddenError(f"I can't send messages in <#{channel_id}>") from e
        except discord.HTTPException as e:
            raise TransientError("Failed to send message") from e

    async def grant_role(self, guild_id: int, user_id: int, role_id: int) -> None:
        guild = self._guild(guild_id)
        role = guild.get_role(role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found")

        member = guild.get_member(user_id)
        try:
            if member is None:
                member = await guild.fetch_member(user_id)
            await member.add_roles(role, reason="Level reward")
        except discord.NotFound as e:
            raise NotFoundError(f"Member {user_id} not found") from e
        except discord.Forbidden as e:
            raise ForbiddenError(f"I can't assign {role.name}") from e
        except discord.HTTPException as e:
            raise TransientError("Failed to assign role") from e

    async def create_channel(self, guild_id: int, spec: ChannelSpec) -> int:
        guild = self._guild(guild_id)

        owner = guild.get_member(spec.owner_id) or discord.Object(id=spec.owner_id)
        overwrites = {
            guild.default_role: discord.PermissionOverwrite(read_messages=False),
            owner: discord.PermissionOverwrite(read_messages=True, send_messages=True, read_message_history=True),
            guild.me: discord.PermissionOverwrite(read_messages=True, send_messages=True, read_message_history=True)
        }

        if spec.staff_role_id:
            staff_role = guild.get_role(spec.staff_role_id)
            if staff_role:
                overwrites[staff_role] = discord.PermissionOverwrite(read_messages=True, send_messages=True)

        category = guild.get_channel(spec.parent_id) if spec.parent_id else None
        if not isinstance(category, discord.CategoryChannel):
            category = None

        try:
            channel = await guild.create_text_channel(
                name=spec.name,
                category=category,
                overwrites=overwrites,
                topic=spec.topic
            )
        except discord.Forbidden as e:
            raise ForbiddenError("I don't have permission to create channels") from e
        except discord.HTTPException as e:
            raise TransientError("Failed to create channel") from e

        return channel.id

    async def delete_channel(self, channel_id: int) -> None:
        channel = await self._channel(channel_id)
        try:
            await channel.delete(reason="Ticket deleted")
        except discord.NotFound:
            logger.debug(f"Channel {channel_id} already deleted")
        except discord.Forbidden as e:
            raise ForbiddenError("I don't have permission to delete this channel") from e
        except discord.HTTPException as e:
            raise TransientError("Failed to delete channel") from e

    async def fetch_recent_messages(self, channel_id: int, limit: int) -> List[TranscriptLine]:
        """Latest messages of a channel, oldest first"""
        channel = await self._channel(channel_id)
        try:
            messages = [message async for message in channel.history(limit=limit)]
        except discord.Forbidden as e:
            raise ForbiddenError("I can't read this channel's history") from e
        except discord.HTTPException as e:
            raise TransientError("Failed to fetch channel history") from e

        return [
            TranscriptLine(timestamp=m.created_at, author=str(m.author), content=m.content)
            for m in reversed(messages)
        ]

    async def member_role_ids(self, guild_id: int, user_id: int) -> Set[int]:
        guild = self.bot.get_guild(guild_id)
        member = guild.get_member(user_id) if guild else None
        if member is None:
            return set()
        return {role.id for role in member.roles}
