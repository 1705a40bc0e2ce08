"""
Permission checks and utilities for Crenors
"""

import discord
from discord import app_commands
from typing import Optional


def is_admin():
    """Check if user has administrator permission"""
    async def predicate(interaction: discord.Interaction) -> bool:
        return interaction.user.guild_permissions.administrator
    return app_commands.check(predicate)


def is_moderator():
    """Check if user can manage messages (poll settings, ending polls)"""
    async def predicate(interaction: discord.Interaction) -> bool:
        perms = interaction.user.guild_permissions
        return perms.administrator or perms.manage_messages
    return app_commands.check(predicate)


class PermissionChecker:
    """Utility class for permission checking outside app-command checks"""

    @staticmethod
    def can_manage_messages(member: discord.Member) -> bool:
        perms = member.guild_permissions
        return perms.administrator or perms.manage_messages

    @staticmethod
    def is_ticket_staff(member: discord.Member, support_role_id: Optional[int]) -> bool:
        """
        Check if member may manage tickets they do not own

        Args:
            member: Member to check
            support_role_id: Configured support role, if any

        Returns:
            True for administrators, channel managers and support role holders
        """
        perms = member.guild_permissions
        if perms.administrator or perms.manage_channels:
            return True
        return bool(support_role_id) and any(role.id == support_role_id for role in member.roles)
