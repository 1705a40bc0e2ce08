"""Database package for Crenors"""

from .db_manager import DatabaseManager, XPUpdate, TRANSIENT_DB_ERRORS
from .models import UserLevel, Poll, Ticket

__all__ = [
    'DatabaseManager',
    'XPUpdate',
    'TRANSIENT_DB_ERRORS',
    'UserLevel',
    'Poll',
    'Ticket'
]
