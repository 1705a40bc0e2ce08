"""
Poll manager for Crenors
Poll creation, voting, tallying and expiry
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from pymongo.errors import DuplicateKeyError

from core.config import PollsConfig
from core.errors import (
    AlreadyVotedError, BotError, ExpiredError, ForbiddenError, InvalidOptionError,
    NotFoundError, TransientError, ValidationError
)
from database.db_manager import DatabaseManager
from database.models import Poll
from utils.constants import CAS_RETRIES, POLLS, round_half_up

logger = logging.getLogger(__name__)


@dataclass
class OptionResult:
    option: str
    count: int
    percentage: int


@dataclass
class PollTally:
    """Vote breakdown of a poll"""
    poll_id: str
    question: str
    results: List[OptionResult]
    total_votes: int
    expires_at: Optional[float] = None
    ended: bool = False


class PollManager:
    """Lifecycle of polls: active until ended manually or by expiry"""

    def __init__(
        self,
        db: DatabaseManager,
        config: PollsConfig,
        config_manager=None,
        clock: Callable[[], float] = time.time
    ):
        self.db = db
        self.config = config
        self.config_manager = config_manager
        self.clock = clock
        self._expiry: Dict[str, float] = {}  # active poll id -> expires_at
        self._last_id = 0

    def apply_config(self, config: PollsConfig) -> None:
        self.config = config

    @property
    def tracked_polls(self) -> Dict[str, float]:
        return dict(self._expiry)

    async def restore(self) -> int:
        """Rebuild expiry tracking from active polls in the store"""
        self._expiry = await self.db.get_poll_expiries()
        logger.info(f"Tracking {len(self._expiry)} active polls with an expiry")
        return len(self._expiry)

    async def create(
        self,
        guild_id: int,
        channel_id: int,
        creator_id: Optional[int],
        question: str,
        options: Iterable[str],
        duration_hours: Optional[float] = None
    ) -> Poll:
        """
        Create an active poll

        Args:
            guild_id: Guild id
            channel_id: Channel the poll is posted in
            creator_id: User who created the poll
            question: Poll question
            options: Between 2 and 25 choices
            duration_hours: Lifetime in hours, None for no expiry

        Returns:
            The stored poll
        """
        question = (question or "").strip()
        options = list(options)

        if not question:
            raise ValidationError("The poll question cannot be empty")
        if not POLLS["min_options"] <= len(options) <= POLLS["max_options"]:
            raise ValidationError(
                f"A poll needs between {POLLS['min_options']} and {POLLS['max_options']} options"
            )
        if duration_hours is not None and duration_hours <= 0:
            raise ValidationError("Duration must be positive")

        now = self.clock()
        expires_at = now + duration_hours * 3600 if duration_hours else None

        poll_id = max(int(now * 1000), self._last_id + 1)
        for _ in range(CAS_RETRIES):
            poll = Poll(
                poll_id=str(poll_id),
                guild_id=guild_id,
                channel_id=channel_id,
                question=question,
                options=options,
                creator_id=creator_id,
                created_at=now,
                expires_at=expires_at
            )
            try:
                await self.db.insert_poll(poll.to_dict())
                break
            except DuplicateKeyError:
                poll_id += 1
        else:
            raise TransientError("Could not allocate a poll id")

        self._last_id = poll_id
        if expires_at is not None:
            self._expiry[poll.poll_id] = expires_at

        logger.info(f"Poll {poll.poll_id} created in channel {channel_id}: {question}")
        return poll

    async def attach_message(self, poll_id: str, message_id: int) -> None:
        """Remember the message that displays the poll"""
        await self.db.set_poll_message(poll_id, message_id)

    async def get(self, poll_id: str) -> Poll:
        data = await self.db.get_poll(poll_id)
        if not data:
            raise NotFoundError("Poll not found")
        return Poll.from_dict(data)

    async def vote(self, poll_id: str, user_id: int, option: str, user_roles: Iterable[int] = ()) -> Poll:
        """
        Record a vote

        Raises:
            NotFoundError: unknown poll
            ExpiredError: poll ended or past its expiry
            ForbiddenError: voter lacks the required role
            AlreadyVotedError: voter already voted and multiple votes are off
            InvalidOptionError: option is not one of the poll's options
        """
        poll = await self.get(poll_id)

        if not poll.is_active:
            raise ExpiredError("This poll has ended")
        if poll.is_expired(self.clock()):
            raise ExpiredError("This poll has expired")

        require_role = self.config.require_role
        if require_role and require_role not in set(user_roles):
            raise ForbiddenError("You do not have the required role to vote")

        user_key = str(user_id)
        allow_multiple = self.config.allow_multiple
        if not allow_multiple and user_key in poll.votes:
            raise AlreadyVotedError("You have already voted in this poll")

        if option not in poll.options:
            raise InvalidOptionError(f"'{option}' is not an option of this poll")

        stored = await self.db.record_vote(poll_id, user_key, option, overwrite=allow_multiple)
        if not stored:
            latest = await self.get(poll_id)
            if not latest.is_active:
                raise ExpiredError("This poll has ended")
            raise AlreadyVotedError("You have already voted in this poll")

        poll.votes[user_key] = option
        logger.info(f"User {user_id} voted in poll {poll_id}")
        return poll

    async def tally(self, poll_id: str) -> PollTally:
        """Per-option counts and rounded percentages"""
        poll = await self.get(poll_id)
        return self.tally_poll(poll)

    @staticmethod
    def tally_poll(poll: Poll) -> PollTally:
        counts = Counter(poll.votes.values())
        total = len(poll.votes)

        results = []
        for option in poll.options:
            count = counts.get(option, 0)
            percentage = round_half_up(100 * count / total) if total else 0
            results.append(OptionResult(option=option, count=count, percentage=percentage))

        return PollTally(
            poll_id=poll.poll_id,
            question=poll.question,
            results=results,
            total_votes=total,
            expires_at=poll.expires_at,
            ended=not poll.is_active
        )

    async def end(self, poll_id: str) -> bool:
        """End a poll. Returns False if it had already ended"""
        return await self._end(poll_id) is not None

    async def _end(self, poll_id: str) -> Optional[Poll]:
        poll = await self.get(poll_id)
        changed = await self.db.end_poll(poll_id, self.clock())
        self._expiry.pop(poll_id, None)

        if not changed:
            return None

        poll.status = "ended"
        logger.info(f"Poll {poll_id} ended")
        return poll

    async def sweep_expired(self) -> List[Poll]:
        """Scheduler tick: end tracked polls whose expiry has passed"""
        now = self.clock()
        due = [poll_id for poll_id, expires_at in self._expiry.items() if expires_at <= now]

        ended = []
        for poll_id in due:
            try:
                poll = await self._end(poll_id)
            except NotFoundError:
                self._expiry.pop(poll_id, None)
                continue
            except BotError as e:
                logger.warning(f"Could not end expired poll {poll_id}: {e}")
                continue
            except Exception as e:
                logger.error(f"Unexpected error ending poll {poll_id}: {e}", exc_info=True)
                continue

            if poll:
                ended.append(poll)

        return ended

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_default_duration(self, hours: Optional[int]) -> None:
        if hours is not None and not 1 <= hours <= POLLS["max_duration"]:
            raise ValidationError(f"Default duration must be between 1 and {POLLS['max_duration']} hours")
        self.config.default_duration = hours
        self._persist()

    def set_allow_multiple(self, allow: bool) -> None:
        self.config.allow_multiple = allow
        self._persist()

    def set_require_role(self, role_id: Optional[int]) -> None:
        self.config.require_role = role_id
        self._persist()

    def _persist(self) -> None:
        if self.config_manager is not None:
            self.config_manager.set("modules.polls", self.config.to_dict())
