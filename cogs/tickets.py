"""
Tickets Cog for Crenors
Support ticket system with transcripts
"""

import discord
from discord import app_commands
from discord.ext import commands, tasks
from typing import Optional
import logging
import asyncio

from core.errors import BotError, ForbiddenError, NotFoundError
from core.tickets import TicketManager
from database.models import Ticket
from utils.embeds import EmbedFactory, send_embed
from utils.constants import TICKETS
from utils.permissions import PermissionChecker, is_admin

logger = logging.getLogger(__name__)

# Panels bound to a category carry its id: ticket_create:<category_id>
CREATE_PREFIX = "ticket_create:"


class TicketCreateView(discord.ui.View):
    """Persistent view for creating tickets"""

    def __init__(self, cog: 'Tickets'):
        super().__init__(timeout=None)
        self.cog = cog

    @discord.ui.button(label="Create Ticket", style=discord.ButtonStyle.green, custom_id="ticket_create", emoji="🎫")
    async def create_ticket(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self.cog.create_ticket_for_user(interaction)


class TicketCategoryPanelView(discord.ui.View):
    """Create button for a panel bound to a category; clicks are routed in Tickets.on_interaction"""

    def __init__(self, category_id: int):
        super().__init__(timeout=None)
        self.add_item(discord.ui.Button(
            label="Create Ticket",
            style=discord.ButtonStyle.green,
            emoji="🎫",
            custom_id=f"{CREATE_PREFIX}{category_id}"
        ))


class TicketOpenView(discord.ui.View):
    """Persistent controls of an open ticket"""

    def __init__(self, cog: 'Tickets'):
        super().__init__(timeout=None)
        self.cog = cog

    @discord.ui.button(label="Close Ticket", style=discord.ButtonStyle.danger, custom_id="ticket_close", emoji="🔒")
    async def close_ticket(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self.cog.close_ticket_for_user(interaction)


class TicketClosedView(discord.ui.View):
    """Persistent controls of a closed ticket"""

    def __init__(self, cog: 'Tickets'):
        super().__init__(timeout=None)
        self.cog = cog

    @discord.ui.button(label="Reopen", style=discord.ButtonStyle.green, custom_id="ticket_reopen", emoji="🔓")
    async def reopen_ticket(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self.cog.reopen_ticket_for_user(interaction)

    @discord.ui.button(label="Delete", style=discord.ButtonStyle.danger, custom_id="ticket_delete", emoji="🗑️")
    async def delete_ticket(self, interaction: discord.Interaction, button: discord.ui.Button):
        await self.cog.delete_ticket_for_user(interaction)


class Tickets(commands.Cog):
    """Support ticket system cog"""

    tickets = app_commands.Group(name="tickets", description="Support ticket system")

    def __init__(self, bot: commands.Bot, manager: TicketManager):
        self.bot = bot
        self.manager = manager

    async def cog_load(self):
        # Buttons keep working after a restart
        self.bot.add_view(TicketCreateView(self))
        self.bot.add_view(TicketOpenView(self))
        self.bot.add_view(TicketClosedView(self))
        self.auto_close_sweep.start()

    async def cog_unload(self):
        self.auto_close_sweep.cancel()

    @tasks.loop(seconds=TICKETS["sweep_interval"])
    async def auto_close_sweep(self):
        """Warn inactive tickets"""
        warned = await self.manager.sweep_auto_close()
        if warned:
            logger.info(f"Sent auto-close warnings to {len(warned)} tickets")

    @auto_close_sweep.before_loop
    async def before_auto_close_sweep(self):
        await self.bot.wait_until_ready()

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel):
        try:
            await self.manager.channel_deleted(channel.id)
        except BotError as e:
            logger.error(f"Could not mark ticket for deleted channel {channel.id}: {e}")

    # ------------------------------------------------------------------
    # Ticket actions (buttons and commands)
    # ------------------------------------------------------------------

    async def _require_ticket(self, interaction: discord.Interaction) -> Ticket:
        ticket = await self.manager.get_by_channel(interaction.channel.id)
        if ticket is None:
            raise NotFoundError("This can only be used in ticket channels")
        return ticket

    def _is_staff(self, member: discord.Member) -> bool:
        return PermissionChecker.is_ticket_staff(member, self.manager.config.support_role)

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction):
        """Route create buttons of category-bound panels"""
        if interaction.type != discord.InteractionType.component:
            return

        custom_id = (interaction.data or {}).get("custom_id", "")
        if not custom_id.startswith(CREATE_PREFIX):
            return

        try:
            category_id = int(custom_id[len(CREATE_PREFIX):])
        except ValueError:
            logger.warning(f"Ignoring malformed ticket panel id {custom_id}")
            return

        await self.create_ticket_for_user(interaction, category_id)

    async def create_ticket_for_user(self, interaction: discord.Interaction, category_id: Optional[int] = None):
        """
        Create a ticket for the interacting user

        The channel goes into the panel's bound category, else the configured
        category, else the category of the channel the panel was posted in.
        """
        if not self.manager.config.enabled:
            await send_embed(interaction, EmbedFactory.error("Not Available", "The ticket system is disabled"))
            return

        parent_id = (
            category_id
            or self.manager.config.category
            or getattr(interaction.channel, "category_id", None)
        )

        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            ticket = await self.manager.create_ticket(interaction.guild.id, interaction.user.id, parent_id)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        channel = interaction.guild.get_channel(ticket.channel_id)
        if channel is not None:
            support_role = self.manager.config.support_role
            content = f"{interaction.user.mention}" + (f" <@&{support_role}>" if support_role else "")
            try:
                await channel.send(content=content, embed=EmbedFactory.ticket_created(ticket), view=TicketOpenView(self))
            except discord.HTTPException as e:
                logger.warning(f"Could not post welcome message in ticket #{ticket.number}: {e}")

        await send_embed(interaction, EmbedFactory.success(
            "Ticket Created",
            f"Your ticket has been created: <#{ticket.channel_id}>"
        ))

    async def close_ticket_for_user(self, interaction: discord.Interaction):
        """Close the ticket of the current channel (owner or staff)"""
        try:
            ticket = await self._require_ticket(interaction)
            if ticket.user_id != interaction.user.id and not self._is_staff(interaction.user):
                raise ForbiddenError("Only the ticket owner or staff can close this ticket")

            await interaction.response.defer(thinking=True)
            ticket = await self.manager.close_ticket(interaction.channel.id, interaction.user.id)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        await interaction.followup.send(
            embed=EmbedFactory.ticket_closed(ticket, interaction.user.id),
            view=TicketClosedView(self)
        )

    async def reopen_ticket_for_user(self, interaction: discord.Interaction):
        """Reopen the ticket of the current channel (staff)"""
        try:
            await self._require_ticket(interaction)
            if not self._is_staff(interaction.user):
                raise ForbiddenError("Only staff can reopen tickets")

            ticket = await self.manager.reopen_ticket(interaction.channel.id)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        await interaction.response.send_message(
            embed=EmbedFactory.ticket_reopened(ticket),
            view=TicketOpenView(self)
        )

    async def delete_ticket_for_user(self, interaction: discord.Interaction):
        """Delete the ticket channel (staff)"""
        try:
            ticket = await self._require_ticket(interaction)
            if not self._is_staff(interaction.user):
                raise ForbiddenError("Only staff can delete tickets")
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        await interaction.response.send_message(embed=EmbedFactory.warning(
            "Ticket Deleting",
            f"Ticket #{ticket.number} will be deleted in 5 seconds..."
        ))

        await asyncio.sleep(5)

        try:
            await self.manager.delete_ticket(ticket.channel_id)
        except BotError as e:
            logger.error(f"Error deleting ticket #{ticket.number}: {e}")
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        logger.info(f"Ticket #{ticket.number} deleted by {interaction.user}")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @tickets.command(name="panel", description="Send the ticket creation panel (Admin)")
    @app_commands.describe(
        title="Panel title",
        description="Panel text",
        category="Category for tickets opened from this panel"
    )
    @is_admin()
    async def panel(
        self,
        interaction: discord.Interaction,
        title: str = "Support Tickets",
        description: str = "Need help? Click the button below to create a support ticket!",
        category: Optional[discord.CategoryChannel] = None
    ):
        view = TicketCategoryPanelView(category.id) if category else TicketCreateView(self)
        await interaction.channel.send(embed=EmbedFactory.ticket_panel(title, description), view=view)
        await send_embed(interaction, EmbedFactory.success("Panel Sent", "Ticket panel created"))

    @tickets.command(name="setup", description="Configure the ticket system (Admin)")
    @app_commands.describe(
        transcript_channel="Channel that receives transcripts",
        category="Category for ticket channels",
        support_role="Role with access to all tickets"
    )
    @is_admin()
    async def setup_tickets(
        self,
        interaction: discord.Interaction,
        transcript_channel: discord.TextChannel,
        category: Optional[discord.CategoryChannel] = None,
        support_role: Optional[discord.Role] = None
    ):
        self.manager.configure(
            transcript_channel.id,
            category.id if category else None,
            support_role.id if support_role else None
        )

        config = self.manager.config
        await send_embed(interaction, EmbedFactory.success(
            "Ticket System Setup",
            f"**Transcript Channel:** {transcript_channel.mention}\n"
            f"**Category:** {f'<#{config.category}>' if config.category else 'None'}\n"
            f"**Support Role:** {f'<@&{config.support_role}>' if config.support_role else 'None'}"
        ), ephemeral=False)
        logger.info(f"Ticket system setup in {interaction.guild}")

    @tickets.command(name="autoclose", description="Configure inactive ticket warnings (Admin)")
    @app_commands.describe(enabled="Turn warnings on or off", hours="Hours before a ticket is considered inactive")
    @is_admin()
    async def autoclose(
        self,
        interaction: discord.Interaction,
        enabled: bool,
        hours: Optional[app_commands.Range[int, 1, 720]] = None
    ):
        try:
            self.manager.set_auto_close(enabled, hours)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        auto_close = self.manager.config.auto_close
        state = f"enabled after **{auto_close.hours:g}h**" if auto_close.enabled else "disabled"
        await send_embed(interaction, EmbedFactory.success("Auto-Close Updated", f"Inactive ticket warnings {state}"))

    @tickets.command(name="stats", description="Ticket statistics (Admin)")
    @is_admin()
    async def stats(self, interaction: discord.Interaction):
        try:
            stats = await self.manager.stats(interaction.guild.id)
        except BotError as e:
            await send_embed(interaction, EmbedFactory.from_error(e))
            return

        await send_embed(interaction, EmbedFactory.ticket_stats(stats))

    @tickets.command(name="close", description="Close this ticket")
    async def close(self, interaction: discord.Interaction):
        await self.close_ticket_for_user(interaction)

    @tickets.command(name="reopen", description="Reopen this ticket (Staff)")
    async def reopen(self, interaction: discord.Interaction):
        await self.reopen_ticket_for_user(interaction)

    @tickets.command(name="delete", description="Delete this ticket (Staff)")
    async def delete(self, interaction: discord.Interaction):
        await self.delete_ticket_for_user(interaction)


async def setup(bot: commands.Bot):
    """Setup function for cog loading"""
    await bot.add_cog(Tickets(bot, bot.tickets))
