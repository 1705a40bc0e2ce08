"""Utilities package for Crenors"""

from .logger import setup_logger, BotLogger
from .embeds import EmbedFactory, EmbedColor
from .permissions import is_admin, is_moderator, PermissionChecker
from .converters import TimeConverter, OptionsConverter
from .config_manager import ConfigManager
from .constants import *

__all__ = [
    'setup_logger',
    'BotLogger',
    'EmbedFactory',
    'EmbedColor',
    'is_admin',
    'is_moderator',
    'PermissionChecker',
    'TimeConverter',
    'OptionsConverter',
    'ConfigManager'
]
