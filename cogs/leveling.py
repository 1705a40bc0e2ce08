"""
Leveling Cog for Crenors
Message and voice XP, level-up announcements, rank and role rewards
"""

import discord
from discord import app_commands
from discord.ext import commands, tasks
from typing import Optional
import logging

from core.errors import BotError, ValidationError
from core.leveling import LevelingManager, LevelUp
from utils.embeds import EmbedFactory, send_embed
from utils.constants import LEVELING, PAGINATION
from utils.converters import TimeConverter
from utils.permissions import is_admin

logger = logging.getLogger(__name__)


class Leveling(commands.Cog):
    """Leveling system cog"""

    level = app_commands.Group(name="level", description="Levels, ranks and XP rewards")

    def __init__(self, bot: commands.Bot, manager: LevelingManager):
        self.bot = bot
        self.manager = manager

    async def cog_load(self):
        self.manager.subscribe(self.grant_level_rewards)
        self.voice_tick.start()

    async def cog_unload(self):
        self.voice_tick.cancel()
        self.manager.unsubscribe(self.grant_level_rewards)

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    @tasks.loop(seconds=LEVELING["tick_interval"])
    async def voice_tick(self):
        """Award voice XP for every full minute spent in voice"""
        for event in await self.manager.voice_accrual():
            await self.announce_level_up(event)

    @voice_tick.before_loop
    async def before_voice_tick(self):
        await self.bot.wait_until_ready()

        # Members already sitting in voice when the bot starts
        for guild in self.bot.guilds:
            for channel in guild.voice_channels:
                for member in channel.members:
                    if not member.bot:
                        self.manager.voice_join(guild.id, member.id)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        """Award XP for messages"""
        if message.author.bot or not message.guild:
            return

        role_ids = {role.id for role in getattr(message.author, 'roles', [])}
        event = await self.manager.message_award(message.guild.id, message.author.id, role_ids)
        if event:
            await self.announce_level_up(event, fallback=message.channel)

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """Track voice sessions"""
        if member.bot:
            return

        if before.channel is None and after.channel is not None:
            self.manager.voice_join(member.guild.id, member.id)
        elif before.channel is not None and after.channel is None:
            event = await self.manager.voice_leave(member.guild.id, member.id)
            if event:
                await self.announce_level_up(event)

    @commands.Cog.listener()
    async def on_member_join(self, member: discord.Member):
        if member.bot:
            return
        try:
            await self.manager.member_join(member.guild.id, member.id)
        except BotError as e:
            logger.warning(f"Could not create level record for {member}: {e}")

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member):
        self.manager.forget_member(member.guild.id, member.id)

    async def grant_level_rewards(self, event: LevelUp):
        """Level-up listener: hand out role rewards"""
        await self.manager.check_role_rewards(event.guild_id, event.user_id, event.new_level)

    async def announce_level_up(self, event: LevelUp, fallback: Optional[discord.abc.Messageable] = None):
        """Post the level-up embed to the configured channel, the fallback or the system channel"""
        config = self.manager.config
        if not config.level_up_message:
            return

        guild = self.bot.get_guild(event.guild_id)
        member = guild.get_member(event.user_id) if guild else None
        if member is None:
            return

        channel = guild.get_channel(config.level_up_channel) if config.level_up_channel else None
        channel = channel or fallback or guild.system_channel
        if channel is None:
            return

        try:
            await channel.send(embed=EmbedFactory.level_up(member, event.new_level, event.total_xp))
        except discord.HTTPException as e:
            logger.warning(f"Could not announce level up for {member}: {e}")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @level.command(name="rank", description="Show your rank or another member's")
    @app_commands.describe(user="Member to look up")
    async def rank(self, interaction: discord.Interaction, user: Optional[discord.Member] = None):
        """Show a rank card"""
        user = user or interaction.user
        try:
            stats = await self.manager.get_stats(interaction.guild.id, user.id)
            if stats is None:
                await send_embed(interaction, EmbedFactory.info(
                    "No Data", f"{user.mention} hasn't earned any XP yet"
                ))
                return
            position = await self.manager.rank(interaction.guild.id, user.id)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        await send_embed(interaction, EmbedFactory.rank_card(user, stats, position), ephemeral=False)

    @level.command(name="leaderboard", description="Show the XP leaderboard")
    @app_commands.describe(limit="Number of members to show")
    async def leaderboard(
        self,
        interaction: discord.Interaction,
        limit: app_commands.Range[int, 1, PAGINATION["leaderboard_max"]] = PAGINATION["leaderboard_size"]
    ):
        try:
            entries = await self.manager.leaderboard(interaction.guild.id, limit)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        embed = EmbedFactory.leaderboard(f"{interaction.guild.name} Leaderboard", entries)
        await send_embed(interaction, embed, ephemeral=False)

    @level.command(name="addrole", description="Grant a role when members reach a level (Admin)")
    @app_commands.describe(level="Level required", role="Role to grant")
    @is_admin()
    async def add_role(
        self,
        interaction: discord.Interaction,
        level: app_commands.Range[int, 1],
        role: discord.Role
    ):
        try:
            self.manager.add_role_reward(level, role.id)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        await send_embed(interaction, EmbedFactory.success(
            "Role Reward Added",
            f"Members reaching **Level {level}** will receive {role.mention}"
        ), ephemeral=False)
        logger.info(f"{interaction.user} added role reward {role} at level {level}")

    @level.command(name="removerole", description="Remove a level role reward (Admin)")
    @app_commands.describe(role="Role reward to remove")
    @is_admin()
    async def remove_role(self, interaction: discord.Interaction, role: discord.Role):
        if not self.manager.remove_role_reward(role.id):
            await send_embed(interaction, EmbedFactory.warning(
                "No Reward", f"{role.mention} is not a level reward"
            ))
            return

        await send_embed(interaction, EmbedFactory.success(
            "Role Reward Removed", f"{role.mention} is no longer a level reward"
        ), ephemeral=False)

    @level.command(name="boost", description="Start a temporary XP booster (Admin)")
    @app_commands.describe(
        multiplier="XP multiplier, greater than 1.0",
        duration="How long it lasts (e.g. 30m, 2h, 1d)",
        role="Only boost members with this role"
    )
    @is_admin()
    async def boost(
        self,
        interaction: discord.Interaction,
        multiplier: float,
        duration: str,
        role: Optional[discord.Role] = None
    ):
        seconds = TimeConverter.parse(duration)
        try:
            if seconds is None:
                raise ValidationError("Invalid duration. Use formats like 30m, 2h or 1d")
            booster = self.manager.add_booster(multiplier, seconds, role.id if role else None)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        scope = f"members with {role.mention}" if role else "everyone"
        await send_embed(interaction, EmbedFactory.success(
            "XP Booster Active",
            f"**{booster.multiplier}x** XP for {scope} for {TimeConverter.format_seconds(seconds)}\n"
            f"Ends <t:{int(booster.expires_at)}:R>"
        ), ephemeral=False)
        logger.info(f"{interaction.user} started a {multiplier}x booster for {seconds}s")


async def setup(bot: commands.Bot):
    """Setup function for cog loading"""
    await bot.add_cog(Leveling(bot, bot.leveling))
