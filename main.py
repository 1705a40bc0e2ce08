"""
Crenors - Main Entry Point
Community Discord bot with leveling, polls and support tickets
"""

import discord
from discord import app_commands
from discord.ext import commands
import asyncio
import os
import socket
import sys
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

from core.config import LevelingConfig, PollsConfig, TicketsConfig
from core.leveling import LevelingManager
from core.polls import PollManager
from core.tickets import TicketManager
from core.transport import DiscordTransport
from database.db_manager import DatabaseManager
from utils.config_manager import ConfigManager
from utils.embeds import EmbedFactory, send_embed
from utils.logger import BotLogger

BASE_DIR = Path(__file__).resolve().parent
ENV_FILE = BASE_DIR / '.env'
load_dotenv(dotenv_path=ENV_FILE)

DEFAULT_MONGODB_URI = 'mongodb://localhost:27017'

ACTIVITY_TYPES = {
    'playing': discord.ActivityType.playing,
    'watching': discord.ActivityType.watching,
    'listening': discord.ActivityType.listening,
    'competing': discord.ActivityType.competing
}

TRUE_VALUES = {"1", "true", "yes", "on", "y"}
FALSE_VALUES = {"0", "false", "no", "off", "n"}


def parse_bool(value, default: bool = False) -> bool:
    """Parse bool-like values from config/env safely."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in TRUE_VALUES:
            return True
        if normalized in FALSE_VALUES:
            return False
    return default


def get_bool_setting(config_value, env_name: str, default: bool = False) -> bool:
    """Boolean setting where the environment variable wins over config.yaml"""
    env_value = os.getenv(env_name)
    if env_value is not None:
        return parse_bool(env_value, default=default)
    return parse_bool(config_value, default=default)


def build_intents(bot_config: dict) -> discord.Intents:
    """
    Gateway intents for the enabled features

    Message content drives message XP and members drives join/leave
    tracking; both are privileged and can be switched off through
    DISCORD_INTENT_MESSAGE_CONTENT / DISCORD_INTENT_MEMBERS.
    """
    intent_config = bot_config.get('intents', {})

    intents = discord.Intents.default()
    intents.message_content = get_bool_setting(
        intent_config.get('message_content', True), 'DISCORD_INTENT_MESSAGE_CONTENT', default=True
    )
    intents.members = get_bool_setting(
        intent_config.get('members', True), 'DISCORD_INTENT_MEMBERS', default=True
    )
    intents.voice_states = True
    return intents


def resolve_mongodb_uri(db_config: dict) -> str:
    uri = os.getenv('MONGODB_URI') or db_config.get('mongodb_uri')
    if not uri or uri.startswith('${'):
        return DEFAULT_MONGODB_URI
    return uri


def resolve_token(config_manager: ConfigManager) -> Optional[str]:
    """DISCORD_BOT_TOKEN from the environment, else bot.token from config.yaml"""
    token = (os.getenv('DISCORD_BOT_TOKEN') or '').strip()
    if token:
        return token

    config_token = config_manager.get('bot.token')
    if isinstance(config_token, str):
        config_token = config_token.strip()
        if config_token and not config_token.startswith('${'):
            return config_token
    return None


def is_dns_resolution_error(exc: BaseException) -> bool:
    """Check exception chain for DNS resolution failures."""
    current = exc
    visited = set()

    while current and id(current) not in visited:
        visited.add(id(current))

        if isinstance(current, socket.gaierror):
            return True

        message = str(current).lower()
        if "getaddrinfo failed" in message or "name or service not known" in message:
            return True

        current = current.__cause__ or current.__context__

    return False


class Crenors(commands.Bot):
    """Bot that owns the database, the transport and the three feature managers"""

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        bot_config = self.config.get('bot', {})

        super().__init__(
            command_prefix=bot_config.get('prefix', '!'),
            intents=build_intents(bot_config),
            help_command=None
        )

        self.start_time = discord.utils.utcnow()
        self.logger = BotLogger(self.config.get('logging', {}))

        db_config = self.config.get('database', {})
        self.db = DatabaseManager(
            resolve_mongodb_uri(db_config),
            db_config.get('database_name', 'Crenors'),
            db_config.get('pool_size', 10)
        )
        self.transport = DiscordTransport(self)

        modules = self.config.get('modules', {})
        self.leveling = LevelingManager(
            self.db, self.transport, LevelingConfig.from_dict(modules.get('leveling')), config_manager
        )
        self.polls = PollManager(self.db, PollsConfig.from_dict(modules.get('polls')), config_manager)
        self.tickets = TicketManager(
            self.db, self.transport, TicketsConfig.from_dict(modules.get('tickets')), config_manager
        )

        config_manager.subscribe(self.apply_config)

    @property
    def config(self) -> dict:
        return self.config_manager.config

    def apply_config(self, config: dict):
        """Push new module settings to every manager"""
        modules = config.get('modules', {})
        self.leveling.apply_config(LevelingConfig.from_dict(modules.get('leveling')))
        self.polls.apply_config(PollsConfig.from_dict(modules.get('polls')))
        self.tickets.apply_config(TicketsConfig.from_dict(modules.get('tickets')))

    async def setup_hook(self):
        """Connect the database, then load cogs so their loops start with a live store"""
        self.logger.info("Starting Crenors...")
        self.logger.info(
            f"Intents: message_content={self.intents.message_content}, members={self.intents.members}"
        )
        self._warn_for_disabled_required_intents()

        try:
            await self.db.connect()
        except Exception as e:
            self.logger.error(f"Failed to connect to database: {e}", exc_info=True)
            sys.exit(1)

        self.tree.on_error = self.on_app_command_error
        await self.load_cogs()

    async def load_cogs(self):
        """Load every module in cogs/ as an extension"""
        cogs_dir = BASE_DIR / 'cogs'
        names = sorted(path.stem for path in cogs_dir.glob('*.py') if path.stem != '__init__')

        for name in names:
            try:
                await self.load_extension(f'cogs.{name}')
                self.logger.cog_load(name)
            except Exception as e:
                self.logger.error(f"Failed to load cog {name}: {e}", exc_info=True)

        self.logger.info(f"Loaded {len(self.cogs)}/{len(names)} cogs")

    async def on_ready(self):
        self.logger.info(f"Logged in as {self.user} (ID: {self.user.id}) in {len(self.guilds)} guilds")

        bot_config = self.config.get('bot', {})
        activity = discord.Activity(
            type=ACTIVITY_TYPES.get(bot_config.get('activity_type', 'watching'), discord.ActivityType.watching),
            name=bot_config.get('activity', 'your community')
        )
        await self.change_presence(activity=activity, status=discord.Status.online)

        try:
            synced = await self.tree.sync()
            self.logger.info(f"Synced {len(synced)} commands")
        except discord.HTTPException as e:
            self.logger.error(f"Failed to sync commands: {e}", exc_info=True)

    async def on_app_command_completion(self, interaction: discord.Interaction, command):
        self.logger.command(str(interaction.user), command.qualified_name, str(interaction.guild))

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        if isinstance(error, app_commands.CheckFailure):
            embed = EmbedFactory.error("No Permission", "You don't have permission to use this command.")
        else:
            name = interaction.command.qualified_name if interaction.command else '?'
            self.logger.error(f"Command error in /{name}: {error}", exc_info=True)
            embed = EmbedFactory.error("Error", "Something went wrong while running this command.")

        try:
            await send_embed(interaction, embed)
        except discord.HTTPException:
            self.logger.warning("Could not report command error to the user")

    async def on_error(self, event, *args, **kwargs):
        self.logger.error(f"Error in event {event}", exc_info=True)

    async def close(self):
        self.logger.info("Shutting down bot...")
        await self.db.disconnect()
        await super().close()

    def _warn_for_disabled_required_intents(self):
        if not self.leveling.config.enabled:
            return
        if not self.intents.message_content:
            self.logger.warning("Message Content intent is disabled. Message XP may not work.")
        if not self.intents.members:
            self.logger.warning("Members intent is disabled. Join and leave tracking may not work.")


async def main():
    """Main entry point"""
    config_manager = ConfigManager(str(BASE_DIR / 'config.yaml'))

    token = resolve_token(config_manager)
    if not token:
        print(
            "Error: DISCORD_BOT_TOKEN is missing or empty. "
            f"Checked .env at {ENV_FILE} and config.yaml bot.token."
        )
        sys.exit(1)

    bot = Crenors(config_manager)

    async with bot:
        try:
            await bot.start(token)
        except discord.errors.PrivilegedIntentsRequired as e:
            error_msg = (
                "Privileged intents requested but not enabled in the Discord Developer Portal. "
                "Enable them there, or set bot.intents.* to false in config.yaml "
                "or the DISCORD_INTENT_* environment variables."
            )
            bot.logger.error(error_msg)
            raise RuntimeError(error_msg) from e
        except Exception as e:
            if is_dns_resolution_error(e):
                error_msg = "DNS lookup failed while connecting to discord.com. Check DNS/VPN/proxy settings and retry."
                bot.logger.error(error_msg)
                raise RuntimeError(error_msg) from e
            raise


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutting down gracefully...")
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)
