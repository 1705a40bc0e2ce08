"""
Embed utilities for Crenors
Creates consistent, themed embeds
"""

import discord
from typing import Optional, List, Dict, Any, TYPE_CHECKING
from datetime import datetime, timezone

from utils.constants import EMBED_LIMITS, EMOJIS, XP_PER_LEVEL

if TYPE_CHECKING:
    from core.errors import BotError
    from core.polls import PollTally
    from database.models import Poll, Ticket, UserLevel


class EmbedColor:
    """Color palette for embeds"""
    PRIMARY = 0x5865F2  # Discord Blurple
    SUCCESS = 0x57F287  # Green
    WARNING = 0xFEE75C  # Yellow
    ERROR = 0xED4245    # Red
    INFO = 0x5865F2     # Blue
    LEVELING = 0xFEE75C  # Gold
    POLL = 0x00D9FF      # Cyan


class EmbedFactory:
    """Factory for creating themed embeds"""

    @staticmethod
    def create(
        title: Optional[str] = None,
        description: Optional[str] = None,
        color: int = EmbedColor.PRIMARY,
        footer: Optional[str] = None,
        thumbnail: Optional[str] = None,
        fields: Optional[List[Dict[str, Any]]] = None,
        timestamp: bool = True
    ) -> discord.Embed:
        """
        Create a custom embed

        Args:
            title: Embed title
            description: Embed description
            color: Embed color (hex)
            footer: Footer text
            thumbnail: Thumbnail URL
            fields: List of field dictionaries
            timestamp: Whether to add timestamp

        Returns:
            Configured Discord embed
        """
        if title and len(title) > EMBED_LIMITS["title"]:
            title = title[:EMBED_LIMITS["title"] - 3] + "..."
        if description and len(description) > EMBED_LIMITS["description"]:
            description = description[:EMBED_LIMITS["description"] - 3] + "..."

        embed = discord.Embed(
            title=title,
            description=description,
            color=color,
            timestamp=datetime.now(timezone.utc) if timestamp else None
        )

        if footer:
            embed.set_footer(text=footer)

        if thumbnail:
            embed.set_thumbnail(url=thumbnail)

        if fields:
            for field in fields[:EMBED_LIMITS["fields"]]:
                embed.add_field(
                    name=field.get("name", ""),
                    value=field.get("value", ""),
                    inline=field.get("inline", True)
                )

        return embed

    @staticmethod
    def success(title: str, description: str) -> discord.Embed:
        """Create success embed"""
        return EmbedFactory.create(
            title=f"{EMOJIS['success']} {title}",
            description=description,
            color=EmbedColor.SUCCESS
        )

    @staticmethod
    def error(title: str, description: str) -> discord.Embed:
        """Create error embed"""
        return EmbedFactory.create(
            title=f"{EMOJIS['error']} {title}",
            description=description,
            color=EmbedColor.ERROR
        )

    @staticmethod
    def from_error(error: "BotError") -> discord.Embed:
        """Render a manager error with its user-facing title"""
        return EmbedFactory.error(error.title, error.message or "Something went wrong")

    @staticmethod
    def warning(title: str, description: str) -> discord.Embed:
        """Create warning embed"""
        return EmbedFactory.create(
            title=f"{EMOJIS['warning']} {title}",
            description=description,
            color=EmbedColor.WARNING
        )

    @staticmethod
    def info(title: str, description: str) -> discord.Embed:
        """Create info embed"""
        return EmbedFactory.create(
            title=f"{EMOJIS['info']} {title}",
            description=description,
            color=EmbedColor.INFO
        )

    # ------------------------------------------------------------------
    # Leveling
    # ------------------------------------------------------------------

    @staticmethod
    def level_up(user: discord.Member, new_level: int, xp: int) -> discord.Embed:
        """Create level up embed"""
        return EmbedFactory.create(
            title=f"{EMOJIS['level_up']} Level Up!",
            description=f"{user.mention} just reached **Level {new_level}**!",
            color=EmbedColor.LEVELING,
            thumbnail=user.display_avatar.url,
            fields=[
                {"name": "Level", "value": str(new_level), "inline": True},
                {"name": "Total XP", "value": f"{xp:,}", "inline": True}
            ]
        )

    @staticmethod
    def rank_card(user: discord.Member, stats: "UserLevel", rank: int) -> discord.Embed:
        """Create rank card embed"""
        progress = stats.xp / XP_PER_LEVEL * 100
        progress_bar = "█" * int(progress / 10) + "░" * (10 - int(progress / 10))

        return EmbedFactory.create(
            title=f"📊 Rank Card - {user.display_name}",
            color=EmbedColor.LEVELING,
            thumbnail=user.display_avatar.url,
            fields=[
                {"name": "Rank", "value": f"#{rank}", "inline": True},
                {"name": "Level", "value": str(stats.level), "inline": True},
                {"name": "XP", "value": f"{stats.xp}/{XP_PER_LEVEL}", "inline": True},
                {"name": "Progress", "value": f"{progress_bar} {progress:.1f}%", "inline": False},
                {"name": "Messages", "value": f"{stats.message_count:,}", "inline": True},
                {"name": "Voice Minutes", "value": f"{stats.voice_minutes:,}", "inline": True}
            ]
        )

    @staticmethod
    def leaderboard(title: str, entries: List["UserLevel"]) -> discord.Embed:
        """Create leaderboard embed"""
        description = ""
        for i, entry in enumerate(entries, 1):
            medal = "🥇" if i == 1 else "🥈" if i == 2 else "🥉" if i == 3 else f"{i}."
            description += (
                f"{medal} <@{entry.user_id}> - Level **{entry.level}** "
                f"({entry.total_xp:,} XP)\n"
            )

        return EmbedFactory.create(
            title=f"{EMOJIS['trophy']} {title}",
            description=description or "No entries yet",
            color=EmbedColor.LEVELING
        )

    # ------------------------------------------------------------------
    # Polls
    # ------------------------------------------------------------------

    @staticmethod
    def poll(poll: "Poll") -> discord.Embed:
        """Create the embed shown above the voting buttons"""
        description = "\n".join(f"**{i}.** {option}" for i, option in enumerate(poll.options, 1))
        fields = []
        if poll.expires_at:
            fields.append({"name": "Ends", "value": f"<t:{int(poll.expires_at)}:R>", "inline": True})
        if poll.creator_id:
            fields.append({"name": "Created by", "value": f"<@{poll.creator_id}>", "inline": True})

        return EmbedFactory.create(
            title=f"{EMOJIS['poll']} {poll.question}",
            description=description,
            color=EmbedColor.POLL,
            footer=f"Poll ID: {poll.poll_id}",
            fields=fields
        )

    @staticmethod
    def poll_results(tally: "PollTally") -> discord.Embed:
        """Create results embed with one bar per option"""
        lines = []
        for result in tally.results:
            bar = "█" * (result.percentage // 10) + "░" * (10 - result.percentage // 10)
            lines.append(f"**{result.option}**\n{bar} {result.percentage}% ({result.count} votes)")

        status = "Ended" if tally.ended else "Active"
        return EmbedFactory.create(
            title=f"{EMOJIS['poll']} Results: {tally.question}",
            description="\n\n".join(lines),
            color=EmbedColor.WARNING if tally.ended else EmbedColor.POLL,
            footer=f"Poll ID: {tally.poll_id} | {status} | Total votes: {tally.total_votes}"
        )

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    @staticmethod
    def ticket_panel(title: str, description: str) -> discord.Embed:
        return EmbedFactory.create(
            title=f"{EMOJIS['ticket']} {title}",
            description=description,
            color=EmbedColor.PRIMARY
        )

    @staticmethod
    def ticket_created(ticket: "Ticket") -> discord.Embed:
        """Create the welcome embed posted in a new ticket channel"""
        return EmbedFactory.create(
            title=f"{EMOJIS['ticket']} Support Ticket #{ticket.number}",
            description=f"Hello <@{ticket.user_id}>!\n\n"
                        f"Thank you for creating a support ticket. Please describe your issue "
                        f"and a staff member will assist you shortly.",
            color=EmbedColor.SUCCESS,
            footer=f"Ticket ID: {ticket.ticket_id}"
        )

    @staticmethod
    def ticket_closed(ticket: "Ticket", closed_by: Optional[int]) -> discord.Embed:
        closer = f"<@{closed_by}>" if closed_by else "the system"
        return EmbedFactory.create(
            title=f"{EMOJIS['lock']} Ticket Closed",
            description=f"Ticket #{ticket.number} was closed by {closer}.",
            color=EmbedColor.WARNING
        )

    @staticmethod
    def ticket_reopened(ticket: "Ticket") -> discord.Embed:
        return EmbedFactory.create(
            title=f"{EMOJIS['unlock']} Ticket Reopened",
            description=f"Ticket #{ticket.number} is open again.",
            color=EmbedColor.SUCCESS
        )

    @staticmethod
    def ticket_stats(stats: Dict[str, int]) -> discord.Embed:
        return EmbedFactory.create(
            title=f"{EMOJIS['ticket']} Ticket Statistics",
            color=EmbedColor.INFO,
            fields=[
                {"name": "Open", "value": str(stats.get("open", 0)), "inline": True},
                {"name": "Closed", "value": str(stats.get("closed", 0)), "inline": True},
                {"name": "Deleted", "value": str(stats.get("deleted", 0)), "inline": True},
                {"name": "Total", "value": str(stats.get("total", 0)), "inline": False}
            ]
        )


async def send_embed(
    interaction: discord.Interaction,
    embed: discord.Embed,
    ephemeral: bool = True,
    view: Optional[discord.ui.View] = None
) -> None:
    """Answer an interaction, falling back to a followup once it was responded to or deferred"""
    kwargs: Dict[str, Any] = {"embed": embed, "ephemeral": ephemeral}
    if view is not None:
        kwargs["view"] = view

    if interaction.response.is_done():
        await interaction.followup.send(**kwargs)
    else:
        await interaction.response.send_message(**kwargs)
