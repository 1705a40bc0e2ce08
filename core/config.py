"""
Typed module configuration for Crenors
Built from the `modules.*` sections of config.yaml
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from utils.constants import LEVELING, POLLS, TICKETS


def _optional_id(value: Any) -> Optional[int]:
    """Discord ids may arrive as ints or strings in YAML"""
    if value in (None, "", 0):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class RoleReward:
    """Role granted once a level is reached"""
    level: int
    role_id: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleReward":
        return cls(level=int(data["level"]), role_id=int(data["role_id"]))

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "role_id": self.role_id}


@dataclass
class XPBooster:
    """Temporary XP multiplier, optionally scoped to a role"""
    multiplier: float
    expires_at: float
    duration: float = 0
    role_id: Optional[int] = None

    def is_active(self, now: float) -> bool:
        return self.expires_at > now

    def applies_to(self, role_ids) -> bool:
        return self.role_id is None or self.role_id in role_ids

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "XPBooster":
        return cls(
            multiplier=float(data["multiplier"]),
            expires_at=float(data["expires_at"]),
            duration=float(data.get("duration", 0)),
            role_id=_optional_id(data.get("role_id"))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "multiplier": self.multiplier,
            "expires_at": self.expires_at,
            "duration": self.duration,
            "role_id": self.role_id
        }


@dataclass
class LevelingConfig:
    """Leveling module settings"""
    enabled: bool = True
    message_xp: int = LEVELING["message_xp"]
    voice_xp: int = LEVELING["voice_xp"]
    xp_cooldown: float = LEVELING["xp_cooldown"]
    level_up_message: bool = True
    level_up_channel: Optional[int] = None
    role_rewards: List[RoleReward] = field(default_factory=list)
    xp_boosters: List[XPBooster] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LevelingConfig":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", True)),
            message_xp=int(data.get("message_xp", LEVELING["message_xp"])),
            voice_xp=int(data.get("voice_xp", LEVELING["voice_xp"])),
            xp_cooldown=float(data.get("xp_cooldown", LEVELING["xp_cooldown"])),
            level_up_message=bool(data.get("level_up_message", True)),
            level_up_channel=_optional_id(data.get("level_up_channel")),
            role_rewards=[RoleReward.from_dict(r) for r in data.get("role_rewards") or []],
            xp_boosters=[XPBooster.from_dict(b) for b in data.get("xp_boosters") or []]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "message_xp": self.message_xp,
            "voice_xp": self.voice_xp,
            "xp_cooldown": self.xp_cooldown,
            "level_up_message": self.level_up_message,
            "level_up_channel": self.level_up_channel,
            "role_rewards": [r.to_dict() for r in self.role_rewards],
            "xp_boosters": [b.to_dict() for b in self.xp_boosters]
        }


@dataclass
class PollsConfig:
    """Poll module settings"""
    enabled: bool = True
    default_duration: Optional[int] = POLLS["default_duration"]
    allow_multiple: bool = False
    require_role: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PollsConfig":
        data = data or {}
        duration = data.get("default_duration", POLLS["default_duration"])
        return cls(
            enabled=bool(data.get("enabled", True)),
            default_duration=int(duration) if duration else None,
            allow_multiple=bool(data.get("allow_multiple", False)),
            require_role=_optional_id(data.get("require_role"))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "default_duration": self.default_duration,
            "allow_multiple": self.allow_multiple,
            "require_role": self.require_role
        }


@dataclass
class AutoCloseConfig:
    enabled: bool = False
    hours: float = TICKETS["auto_close_hours"]


@dataclass
class TicketsConfig:
    """Ticket module settings"""
    enabled: bool = True
    transcript_channel: Optional[int] = None
    category: Optional[int] = None
    support_role: Optional[int] = None
    auto_close: AutoCloseConfig = field(default_factory=AutoCloseConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TicketsConfig":
        data = data or {}
        auto_close = data.get("auto_close") or {}
        return cls(
            enabled=bool(data.get("enabled", True)),
            transcript_channel=_optional_id(data.get("transcript_channel")),
            category=_optional_id(data.get("category")),
            support_role=_optional_id(data.get("support_role")),
            auto_close=AutoCloseConfig(
                enabled=bool(auto_close.get("enabled", False)),
                hours=float(auto_close.get("hours", TICKETS["auto_close_hours"]))
            )
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "transcript_channel": self.transcript_channel,
            "category": self.category,
            "support_role": self.support_role,
            "auto_close": {
                "enabled": self.auto_close.enabled,
                "hours": self.auto_close.hours
            }
        }
