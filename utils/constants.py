"""
Constants and configuration values for Crenors
"""

from typing import Dict, Any

# Bot Information
BOT_NAME = "Crenors"
BOT_VERSION = "1.0.0"
BOT_DESCRIPTION = "Community bot with leveling, polls and support tickets"

# Emoji Constants
EMOJIS = {
    "success": "✅",
    "error": "❌",
    "warning": "⚠️",
    "info": "ℹ️",
    "level_up": "🎉",
    "trophy": "🏆",
    "poll": "📊",
    "ticket": "🎫",
    "lock": "🔒",
    "unlock": "🔓",
    "delete": "🗑️"
}

# Leveling Constants
LEVELING: Dict[str, Any] = {
    "xp_per_level": 1000,
    "message_xp": 15,
    "voice_xp": 10,       # per full minute
    "xp_cooldown": 60,    # seconds
    "tick_interval": 60   # seconds
}

XP_PER_LEVEL = LEVELING["xp_per_level"]

# Upper bound for the in-memory message cooldown map
COOLDOWN_CACHE_LIMIT = 10000

# Poll Constants
POLLS: Dict[str, Any] = {
    "min_options": 2,
    "max_options": 25,
    "max_buttons": 5,
    "default_duration": 24,   # hours
    "max_duration": 168,      # hours
    "sweep_interval": 60      # seconds
}

# Ticket Constants
TICKETS: Dict[str, Any] = {
    "transcript_limit": 100,
    "auto_close_hours": 24,
    "sweep_interval": 60,     # seconds
    "transcript_failed": "Failed to generate transcript"
}

# Store retry budget for compare-and-set writes
CAS_RETRIES = 5

# Pagination
PAGINATION = {
    "leaderboard_size": 10,
    "leaderboard_max": 20
}

# Embed Limits
EMBED_LIMITS = {
    "title": 256,
    "description": 4096,
    "fields": 25,
    "field_name": 256,
    "field_value": 1024,
    "footer": 2048
}


def level_for_xp(total_xp: int) -> int:
    """Level reached with the given total XP"""
    return total_xp // XP_PER_LEVEL


def xp_to_next_level(total_xp: int) -> int:
    """XP still needed to reach the next level"""
    return XP_PER_LEVEL - (total_xp % XP_PER_LEVEL)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives"""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)
