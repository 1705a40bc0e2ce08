"""
Settings Cog for Crenors
Runtime configuration reload
"""

import discord
from discord import app_commands
from discord.ext import commands
import logging

import yaml

from utils.embeds import EmbedFactory, send_embed
from utils.permissions import is_admin

logger = logging.getLogger(__name__)


class Settings(commands.Cog):
    """Configuration commands cog"""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @app_commands.command(name="config-reload", description="Reload config.yaml (Admin)")
    @is_admin()
    async def config_reload(self, interaction: discord.Interaction):
        """Re-read the config file and push it to every module"""
        try:
            self.bot.config_manager.reload()
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Config reload failed: {e}")
            await send_embed(interaction, EmbedFactory.error("Reload Failed", f"Could not read the config file: {e}"))
            return

        await send_embed(interaction, EmbedFactory.success(
            "Config Reloaded",
            "Leveling, poll and ticket settings were reloaded from the config file"
        ))
        logger.info(f"{interaction.user} reloaded the configuration")


async def setup(bot: commands.Bot):
    """Setup function for cog loading"""
    await bot.add_cog(Settings(bot))
