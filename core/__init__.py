"""Core state machines for Crenors"""

from .leveling import LevelingManager, LevelUp
from .polls import PollManager, PollTally
from .tickets import TicketManager

__all__ = [
    'LevelingManager',
    'LevelUp',
    'PollManager',
    'PollTally',
    'TicketManager'
]
