"""
Data models for Crenors
Defines structure for database documents
"""

from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime

from utils.constants import XP_PER_LEVEL


def _now() -> float:
    return datetime.now().timestamp()


@dataclass
class UserLevel:
    """Leveling record for one member of one guild"""
    user_id: int
    guild_id: int
    total_xp: int = 0
    level: int = 0
    message_count: int = 0
    voice_minutes: int = 0
    created_at: float = field(default_factory=_now)
    updated_at: float = field(default_factory=_now)

    @property
    def xp(self) -> int:
        """XP earned inside the current level"""
        return self.total_xp % XP_PER_LEVEL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserLevel":
        return cls(
            user_id=data["user_id"],
            guild_id=data["guild_id"],
            total_xp=data.get("total_xp", 0),
            level=data.get("level", 0),
            message_count=data.get("message_count", 0),
            voice_minutes=data.get("voice_minutes", 0),
            created_at=data.get("created_at", 0.0),
            updated_at=data.get("updated_at", 0.0)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "user_id": self.user_id,
            "guild_id": self.guild_id,
            "xp": self.xp,
            "level": self.level,
            "total_xp": self.total_xp,
            "message_count": self.message_count,
            "voice_minutes": self.voice_minutes,
            "created_at": self.created_at,
            "updated_at": self.updated_at
        }


@dataclass
class Poll:
    """Poll model"""
    poll_id: str
    guild_id: int
    channel_id: int
    question: str
    options: List[str]
    creator_id: Optional[int] = None
    message_id: Optional[int] = None
    votes: Dict[str, str] = field(default_factory=dict)  # user id -> option
    status: str = "active"  # active, ended
    created_at: float = field(default_factory=_now)
    expires_at: Optional[float] = None
    ended_at: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Poll":
        return cls(
            poll_id=data["_id"],
            guild_id=data["guild_id"],
            channel_id=data["channel_id"],
            question=data["question"],
            options=list(data["options"]),
            creator_id=data.get("creator_id"),
            message_id=data.get("message_id"),
            votes=dict(data.get("votes") or {}),
            status=data.get("status", "active"),
            created_at=data.get("created_at", 0.0),
            expires_at=data.get("expires_at"),
            ended_at=data.get("ended_at")
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "_id": self.poll_id,
            "guild_id": self.guild_id,
            "channel_id": self.channel_id,
            "message_id": self.message_id,
            "creator_id": self.creator_id,
            "question": self.question,
            "options": self.options,
            "votes": self.votes,
            "status": self.status,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "ended_at": self.ended_at
        }


@dataclass
class Ticket:
    """Support ticket model"""
    ticket_id: str
    number: int
    guild_id: int
    user_id: int
    channel_id: int
    status: str = "open"  # open, closed, deleted
    created_at: float = field(default_factory=_now)
    closed_at: Optional[float] = None
    closed_by: Optional[int] = None
    transcript: Optional[str] = None
    auto_close_warned_at: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ticket":
        return cls(
            ticket_id=str(data["_id"]),
            number=data.get("number", 0),
            guild_id=data["guild_id"],
            user_id=data["user_id"],
            channel_id=data["channel_id"],
            status=data.get("status", "open"),
            created_at=data.get("created_at", 0.0),
            closed_at=data.get("closed_at"),
            closed_by=data.get("closed_by"),
            transcript=data.get("transcript"),
            auto_close_warned_at=data.get("auto_close_warned_at")
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "_id": self.ticket_id,
            "number": self.number,
            "guild_id": self.guild_id,
            "user_id": self.user_id,
            "channel_id": self.channel_id,
            "status": self.status,
            "created_at": self.created_at,
            "closed_at": self.closed_at,
            "closed_by": self.closed_by,
            "transcript": self.transcript,
            "auto_close_warned_at": self.auto_close_warned_at
        }
