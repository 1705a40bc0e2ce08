"""
Leveling manager for Crenors
XP awards, level transitions, boosters and role rewards
"""

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from core.config import LevelingConfig, RoleReward, XPBooster
from core.errors import BotError, NotFoundError, TransientError, ValidationError
from core.transport import Transport
from database.db_manager import DatabaseManager
from database.models import UserLevel
from utils.constants import COOLDOWN_CACHE_LIMIT, level_for_xp, round_half_up

logger = logging.getLogger(__name__)

SOURCE_MESSAGE = "message"
SOURCE_VOICE = "voice"


@dataclass
class LevelUp:
    """Emitted when an award moves a member to a higher level"""
    guild_id: int
    user_id: int
    old_level: int
    new_level: int
    total_xp: int


@dataclass
class VoiceSession:
    joined_at: float
    last_accrued: float


LevelUpListener = Callable[[LevelUp], Awaitable[None]]
MemberKey = Tuple[int, int]


class LevelingManager:
    """Turns message and voice activity into durable XP and levels"""

    def __init__(
        self,
        db: DatabaseManager,
        transport: Transport,
        config: LevelingConfig,
        config_manager=None,
        clock: Callable[[], float] = time.time
    ):
        self.db = db
        self.transport = transport
        self.config = config
        self.config_manager = config_manager
        self.clock = clock
        self._cooldowns: Dict[MemberKey, float] = {}
        self._voice_sessions: Dict[MemberKey, VoiceSession] = {}
        self._listeners: List[LevelUpListener] = []

    def apply_config(self, config: LevelingConfig) -> None:
        self.config = config

    def subscribe(self, listener: LevelUpListener) -> None:
        """Register a coroutine called for every LevelUp"""
        self._listeners.append(listener)

    def unsubscribe(self, listener: LevelUpListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # XP awards
    # ------------------------------------------------------------------

    def effective_multiplier(self, role_ids: Iterable[int] = ()) -> float:
        """Highest active booster applicable to a member holding role_ids, else 1.0"""
        now = self.clock()
        role_ids = set(role_ids)
        multipliers = [
            booster.multiplier for booster in self.config.xp_boosters
            if booster.is_active(now) and booster.applies_to(role_ids)
        ]
        return max(multipliers, default=1.0)

    async def award_xp(
        self,
        guild_id: int,
        user_id: int,
        base_amount: int,
        source: str = SOURCE_MESSAGE,
        role_ids: Optional[Set[int]] = None,
        minutes: int = 0
    ) -> Optional[LevelUp]:
        """
        Apply an XP award and report a level up

        Args:
            guild_id: Guild id
            user_id: User id
            base_amount: XP before boosters
            source: SOURCE_MESSAGE or SOURCE_VOICE
            role_ids: Member roles for role-scoped boosters (looked up if None)
            minutes: Voice minutes covered by this award

        Returns:
            LevelUp if the member reached a higher level, else None

        Raises:
            ValidationError: negative amount
            TransientError: the store could not apply the award
        """
        if base_amount < 0:
            raise ValidationError("XP amount cannot be negative")

        if role_ids is None:
            role_ids = await self._booster_roles(guild_id, user_id)

        amount = round_half_up(base_amount * self.effective_multiplier(role_ids))
        update = await self.db.apply_xp(
            guild_id,
            user_id,
            amount,
            self.clock(),
            messages=1 if source == SOURCE_MESSAGE else 0,
            voice_minutes=minutes
        )

        if update.created:
            return None

        old_level = level_for_xp(update.old_total)
        new_level = level_for_xp(update.new_total)
        if new_level <= old_level:
            return None

        event = LevelUp(guild_id, user_id, old_level, new_level, update.new_total)
        logger.info(f"User {user_id} leveled up to {new_level} in guild {guild_id}")
        await self._dispatch(event)
        return event

    async def message_award(
        self,
        guild_id: int,
        user_id: int,
        role_ids: Optional[Set[int]] = None
    ) -> Optional[LevelUp]:
        """Award message XP unless the member is still on cooldown"""
        if not self.config.enabled:
            return None

        key = (guild_id, user_id)
        now = self.clock()
        last = self._cooldowns.get(key)
        if last is not None and now - last < self.config.xp_cooldown:
            return None

        self._cooldowns[key] = now
        self._prune_cooldowns(now)

        try:
            return await self.award_xp(guild_id, user_id, self.config.message_xp, SOURCE_MESSAGE, role_ids)
        except TransientError as e:
            logger.warning(f"Skipped message XP for {user_id} in {guild_id}: {e}")
            return None

    def _prune_cooldowns(self, now: float) -> None:
        if len(self._cooldowns) <= COOLDOWN_CACHE_LIMIT:
            return

        window = self.config.xp_cooldown
        self._cooldowns = {k: ts for k, ts in self._cooldowns.items() if now - ts < window}

        if len(self._cooldowns) > COOLDOWN_CACHE_LIMIT:
            newest = sorted(self._cooldowns.items(), key=lambda item: item[1])[-COOLDOWN_CACHE_LIMIT:]
            self._cooldowns = dict(newest)

    # ------------------------------------------------------------------
    # Voice
    # ------------------------------------------------------------------

    def voice_join(self, guild_id: int, user_id: int) -> None:
        """Start tracking a member who joined a voice channel"""
        if not self.config.enabled:
            return
        now = self.clock()
        self._voice_sessions.setdefault((guild_id, user_id), VoiceSession(joined_at=now, last_accrued=now))

    async def voice_leave(self, guild_id: int, user_id: int) -> Optional[LevelUp]:
        """Stop tracking a member and award the remaining whole minutes"""
        session = self._voice_sessions.pop((guild_id, user_id), None)
        if session is None or not self.config.enabled:
            return None

        minutes = int((self.clock() - session.last_accrued) // 60)
        if minutes < 1:
            return None

        try:
            return await self.award_xp(
                guild_id, user_id, self.config.voice_xp * minutes, SOURCE_VOICE, minutes=minutes
            )
        except TransientError as e:
            logger.warning(f"Skipped voice XP for {user_id} in {guild_id}: {e}")
            return None

    async def voice_accrual(self) -> List[LevelUp]:
        """Scheduler tick: award whole minutes for everyone currently in voice"""
        if not self.config.enabled:
            return []

        level_ups = []
        now = self.clock()
        for (guild_id, user_id), session in list(self._voice_sessions.items()):
            minutes = int((now - session.last_accrued) // 60)
            if minutes < 1:
                continue

            session.last_accrued += minutes * 60
            try:
                event = await self.award_xp(
                    guild_id, user_id, self.config.voice_xp * minutes, SOURCE_VOICE, minutes=minutes
                )
            except BotError as e:
                logger.warning(f"Voice XP tick failed for {user_id} in {guild_id}: {e}")
                continue
            except Exception as e:
                logger.error(f"Unexpected error in voice XP tick for {user_id}: {e}", exc_info=True)
                continue

            if event:
                level_ups.append(event)

        return level_ups

    def in_voice(self, guild_id: int, user_id: int) -> bool:
        return (guild_id, user_id) in self._voice_sessions

    def forget_member(self, guild_id: int, user_id: int) -> None:
        """Drop volatile state for a member who left the guild"""
        self._voice_sessions.pop((guild_id, user_id), None)
        self._cooldowns.pop((guild_id, user_id), None)

    async def member_join(self, guild_id: int, user_id: int) -> bool:
        """Create an empty record for a new member. Returns True if created"""
        if not self.config.enabled:
            return False
        return await self.db.ensure_user(guild_id, user_id, self.clock())

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    async def get_stats(self, guild_id: int, user_id: int) -> Optional[UserLevel]:
        data = await self.db.get_user_level(guild_id, user_id)
        return UserLevel.from_dict(data) if data else None

    async def rank(self, guild_id: int, user_id: int) -> int:
        """1-based position by total XP (ties broken by lower user id)"""
        position = await self.db.get_rank(guild_id, user_id)
        if position is None:
            raise NotFoundError("User not found in the leveling system")
        return position

    async def leaderboard(self, guild_id: int, limit: int = 10) -> List[UserLevel]:
        if limit < 1:
            raise ValidationError("Limit must be at least 1")
        records = await self.db.get_leaderboard(guild_id, limit)
        return [UserLevel.from_dict(r) for r in records]

    # ------------------------------------------------------------------
    # Role rewards and boosters
    # ------------------------------------------------------------------

    def add_role_reward(self, level: int, role_id: int) -> RoleReward:
        """Grant role_id at level; an existing reward for the role is replaced"""
        if level < 1:
            raise ValidationError("Reward level must be 1 or greater")

        reward = RoleReward(level=level, role_id=role_id)
        rewards = [r for r in self.config.role_rewards if r.role_id != role_id]
        rewards.append(reward)
        self.config.role_rewards = sorted(rewards, key=lambda r: r.level)
        self._persist()
        return reward

    def remove_role_reward(self, role_id: int) -> bool:
        """Remove the reward for role_id. Returns False if there was none"""
        rewards = [r for r in self.config.role_rewards if r.role_id != role_id]
        if len(rewards) == len(self.config.role_rewards):
            return False

        self.config.role_rewards = rewards
        self._persist()
        return True

    def add_booster(self, multiplier: float, duration: float, role_id: Optional[int] = None) -> XPBooster:
        """
        Add a temporary XP multiplier

        Args:
            multiplier: Must be greater than 1.0
            duration: Lifetime in seconds
            role_id: Restrict to members holding this role

        Returns:
            The new booster
        """
        if multiplier <= 1.0:
            raise ValidationError("Multiplier must be greater than 1.0")
        if duration <= 0:
            raise ValidationError("Duration must be positive")

        now = self.clock()
        booster = XPBooster(multiplier=multiplier, expires_at=now + duration, duration=duration, role_id=role_id)
        self.config.xp_boosters = [b for b in self.config.xp_boosters if b.is_active(now)] + [booster]
        self._persist()
        return booster

    def active_boosters(self) -> List[XPBooster]:
        now = self.clock()
        return [b for b in self.config.xp_boosters if b.is_active(now)]

    async def check_role_rewards(
        self,
        guild_id: int,
        user_id: int,
        new_level: int,
        role_ids: Optional[Set[int]] = None
    ) -> List[int]:
        """Grant every reward up to new_level the member is missing. Returns granted role ids"""
        if role_ids is None:
            role_ids = await self.transport.member_role_ids(guild_id, user_id)

        granted = []
        for reward in sorted(self.config.role_rewards, key=lambda r: r.level):
            if reward.level > new_level or reward.role_id in role_ids:
                continue
            try:
                await self.transport.grant_role(guild_id, user_id, reward.role_id)
                granted.append(reward.role_id)
                logger.info(f"Granted role {reward.role_id} to {user_id} for reaching level {new_level}")
            except Exception as e:
                logger.error(f"Failed to grant reward role {reward.role_id} to {user_id}: {e}")

        return granted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _booster_roles(self, guild_id: int, user_id: int) -> Set[int]:
        # Roles only matter while a role-scoped booster is running
        if not any(b.role_id for b in self.active_boosters()):
            return set()
        try:
            return await self.transport.member_role_ids(guild_id, user_id)
        except Exception as e:
            logger.warning(f"Could not resolve roles for {user_id}: {e}")
            return set()

    async def _dispatch(self, event: LevelUp) -> None:
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Level up listener failed for {event.user_id}: {e}", exc_info=True)

    def _persist(self) -> None:
        if self.config_manager is not None:
            self.config_manager.set("modules.leveling", self.config.to_dict())
