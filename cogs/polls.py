"""
Polls Cog for Crenors
Button and select-menu polls with expiry
"""

import discord
from discord import app_commands
from discord.ext import commands, tasks
from typing import Optional
import logging

from core.errors import BotError, ForbiddenError, InvalidOptionError
from core.polls import PollManager
from database.models import Poll
from utils.embeds import EmbedFactory, send_embed
from utils.constants import POLLS
from utils.converters import OptionsConverter
from utils.permissions import PermissionChecker, is_moderator

logger = logging.getLogger(__name__)

VOTE_PREFIX = "poll_vote_"
RESULTS_PREFIX = "poll_results_"
END_PREFIX = "poll_end_"


class PollView(discord.ui.View):
    """Voting components for one poll; clicks are routed by custom id in Polls.on_interaction"""

    def __init__(self, poll: Poll):
        super().__init__(timeout=None)

        if len(poll.options) <= POLLS["max_buttons"]:
            for index, option in enumerate(poll.options):
                self.add_item(discord.ui.Button(
                    label=option[:80],
                    style=discord.ButtonStyle.primary,
                    custom_id=f"{VOTE_PREFIX}{poll.poll_id}_{index}",
                    row=0
                ))
        else:
            self.add_item(discord.ui.Select(
                placeholder="Choose an option...",
                min_values=1,
                max_values=1,
                options=[
                    discord.SelectOption(label=option[:100], value=str(index))
                    for index, option in enumerate(poll.options)
                ],
                custom_id=f"{VOTE_PREFIX}{poll.poll_id}",
                row=0
            ))

        self.add_item(discord.ui.Button(
            label="Results",
            style=discord.ButtonStyle.secondary,
            emoji="📊",
            custom_id=f"{RESULTS_PREFIX}{poll.poll_id}",
            row=1
        ))
        self.add_item(discord.ui.Button(
            label="End Poll",
            style=discord.ButtonStyle.danger,
            emoji="🔒",
            custom_id=f"{END_PREFIX}{poll.poll_id}",
            row=1
        ))


class Polls(commands.Cog):
    """Poll system cog"""

    poll = app_commands.Group(name="poll", description="Create and manage polls")

    def __init__(self, bot: commands.Bot, manager: PollManager):
        self.bot = bot
        self.manager = manager

    async def cog_load(self):
        try:
            await self.manager.restore()
        except BotError as e:
            logger.error(f"Could not restore active polls: {e}")
        self.expiry_sweep.start()

    async def cog_unload(self):
        self.expiry_sweep.cancel()

    @tasks.loop(seconds=POLLS["sweep_interval"])
    async def expiry_sweep(self):
        """End expired polls and replace their buttons with the results"""
        for poll in await self.manager.sweep_expired():
            await self.close_poll_message(poll)

    @expiry_sweep.before_loop
    async def before_expiry_sweep(self):
        await self.bot.wait_until_ready()

    async def close_poll_message(self, poll: Poll):
        """Swap the voting message for the final results"""
        if not poll.message_id:
            return

        channel = self.bot.get_channel(poll.channel_id)
        if channel is None:
            return

        embed = EmbedFactory.poll_results(PollManager.tally_poll(poll))
        try:
            await channel.get_partial_message(poll.message_id).edit(embed=embed, view=None)
        except discord.HTTPException as e:
            logger.warning(f"Could not update message of poll {poll.poll_id}: {e}")

    # ------------------------------------------------------------------
    # Component interactions
    # ------------------------------------------------------------------

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        """Route poll buttons and select menus"""
        if interaction.type != discord.InteractionType.component:
            return

        custom_id = (interaction.data or {}).get("custom_id", "")
        try:
            if custom_id.startswith(VOTE_PREFIX):
                await self._handle_vote(interaction, custom_id[len(VOTE_PREFIX):])
            elif custom_id.startswith(RESULTS_PREFIX):
                tally = await self.manager.tally(custom_id[len(RESULTS_PREFIX):])
                await send_embed(interaction, EmbedFactory.poll_results(tally))
            elif custom_id.startswith(END_PREFIX):
                await self._handle_end(interaction, custom_id[len(END_PREFIX):])
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))

    async def _handle_vote(self, interaction: discord.Interaction, ref: str):
        if "_" in ref:
            poll_id, index = ref.rsplit("_", 1)
        else:
            poll_id = ref
            values = (interaction.data or {}).get("values") or [""]
            index = values[0]

        poll = await self.manager.get(poll_id)
        try:
            option = poll.options[int(index)]
        except (ValueError, IndexError):
            raise InvalidOptionError("That option is not part of this poll")

        role_ids = [role.id for role in getattr(interaction.user, "roles", [])]
        await self.manager.vote(poll_id, interaction.user.id, option, role_ids)

        await send_embed(interaction, EmbedFactory.success("Vote Recorded", f"You voted for **{option}**"))

    async def _handle_end(self, interaction: discord.Interaction, poll_id: str):
        poll = await self.manager.get(poll_id)
        if poll.creator_id != interaction.user.id and not PermissionChecker.can_manage_messages(interaction.user):
            raise ForbiddenError("Only the poll creator or moderators can end this poll")

        if not await self.manager.end(poll_id):
            await send_embed(interaction, EmbedFactory.warning("Already Ended", "This poll has already ended"))
            return

        tally = await self.manager.tally(poll_id)
        await interaction.response.edit_message(embed=EmbedFactory.poll_results(tally), view=None)
        logger.info(f"{interaction.user} ended poll {poll_id}")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @poll.command(name="create", description="Create a poll")
    @app_commands.describe(
        question="Poll question",
        options="Options separated by | (2 to 25)",
        duration="Duration in hours (defaults to the server setting)"
    )
    async def create(
        self,
        interaction: discord.Interaction,
        question: str,
        options: str,
        duration: Optional[app_commands.Range[int, 1, POLLS["max_duration"]]] = None
    ):
        """Create a poll"""
        if not self.manager.config.enabled:
            await send_embed(interaction, EmbedFactory.error("Polls Disabled", "Polls are disabled on this server"))
            return

        if duration is None:
            duration = self.manager.config.default_duration

        try:
            poll = await self.manager.create(
                interaction.guild.id,
                interaction.channel.id,
                interaction.user.id,
                question,
                OptionsConverter.parse(options),
                duration
            )
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        await interaction.response.send_message(embed=EmbedFactory.poll(poll), view=PollView(poll))
        message = await interaction.original_response()

        try:
            await self.manager.attach_message(poll.poll_id, message.id)
        except BotError as e:
            logger.error(f"Could not store message of poll {poll.poll_id}: {e}")

        logger.info(f"{interaction.user} created poll {poll.poll_id} in {interaction.guild}")

    @poll.command(name="end", description="End a poll early (Moderator)")
    @app_commands.describe(poll_id="Poll ID shown in the poll footer")
    @is_moderator()
    async def end(self, interaction: discord.Interaction, poll_id: str):
        try:
            ended = await self.manager.end(poll_id)
            poll = await self.manager.get(poll_id)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        if not ended:
            await send_embed(interaction, EmbedFactory.warning("Already Ended", "This poll has already ended"))
            return

        await self.close_poll_message(poll)
        await send_embed(interaction, EmbedFactory.success("Poll Ended", f"Poll `{poll_id}` has ended"))

    @poll.command(name="results", description="Show poll results")
    @app_commands.describe(poll_id="Poll ID shown in the poll footer")
    async def results(self, interaction: discord.Interaction, poll_id: str):
        try:
            tally = await self.manager.tally(poll_id)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        await send_embed(interaction, EmbedFactory.poll_results(tally), ephemeral=False)

    @poll.command(name="settings", description="Configure polls (Moderator)")
    @app_commands.describe(
        default_duration="Default duration in hours",
        allow_multiple="Let members change their vote",
        require_role="Role required to vote",
        clear_role="Remove the voting role requirement"
    )
    @is_moderator()
    async def settings(
        self,
        interaction: discord.Interaction,
        default_duration: Optional[app_commands.Range[int, 1, POLLS["max_duration"]]] = None,
        allow_multiple: Optional[bool] = None,
        require_role: Optional[discord.Role] = None,
        clear_role: bool = False
    ):
        try:
            if default_duration is not None:
                self.manager.set_default_duration(default_duration)
            if allow_multiple is not None:
                self.manager.set_allow_multiple(allow_multiple)
            if require_role is not None:
                self.manager.set_require_role(require_role.id)
            elif clear_role:
                self.manager.set_require_role(None)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        config = self.manager.config
        role = f"<@&{config.require_role}>" if config.require_role else "None"
        duration = f"{config.default_duration}h" if config.default_duration else "No expiry"
        await send_embed(interaction, EmbedFactory.info(
            "Poll Settings",
            f"**Default Duration:** {duration}\n"
            f"**Allow Multiple:** {'Yes' if config.allow_multiple else 'No'}\n"
            f"**Required Role:** {role}"
        ))


async def setup(bot: commands.Bot):
    """Setup function for cog loading"""
    await bot.add_cog(Polls(bot, bot.polls))
