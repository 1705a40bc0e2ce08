"""
Database manager for Crenors
Async MongoDB access through motor
"""

import functools
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import (
    AutoReconnect, NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure,
    DuplicateKeyError, PyMongoError
)

from core.errors import TransientError
from utils.constants import CAS_RETRIES, XP_PER_LEVEL

logger = logging.getLogger(__name__)
TRANSIENT_DB_ERRORS = (AutoReconnect, NetworkTimeout, ServerSelectionTimeoutError, ConnectionFailure)


@dataclass
class XPUpdate:
    """Outcome of one durable XP award"""
    old_total: int
    new_total: int
    created: bool


def wrap_errors(func):
    """Re-raise driver failures as TransientError; duplicate keys pass through"""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DuplicateKeyError:
            raise
        except TRANSIENT_DB_ERRORS as e:
            logger.warning(f"Transient MongoDB error in {func.__name__}: {e}")
            raise TransientError("The database is temporarily unavailable") from e
        except PyMongoError as e:
            logger.error(f"MongoDB error in {func.__name__}: {e}", exc_info=True)
            raise TransientError("A database error occurred") from e
    return wrapper


class DatabaseManager:
    """Owns the MongoDB client and the bot's collections"""

    def __init__(self, uri: str, database_name: str, pool_size: int = 10, client=None):
        self.uri = uri
        self.database_name = database_name
        self.pool_size = pool_size
        self.client = client
        self._owns_client = client is None
        self.db = None

    async def connect(self):
        """Connect to MongoDB and create indexes"""
        if self.client is None:
            self.client = AsyncIOMotorClient(self.uri, maxPoolSize=self.pool_size)
            await self.client.admin.command("ping")

        self.db = self.client[self.database_name]
        await self._create_indexes()
        logger.info(f"Connected to MongoDB database '{self.database_name}'")

    async def disconnect(self):
        """Close the client if this manager created it"""
        if self.client is not None and self._owns_client:
            self.client.close()
        self.client = None
        self.db = None

    async def _create_indexes(self):
        await self.db.users.create_index(
            [("guild_id", ASCENDING), ("user_id", ASCENDING)], unique=True
        )
        await self.db.users.create_index([("guild_id", ASCENDING), ("total_xp", DESCENDING)])
        await self.db.polls.create_index([("status", ASCENDING)])
        await self.db.tickets.create_index([("channel_id", ASCENDING)])
        await self.db.tickets.create_index(
            [("guild_id", ASCENDING), ("user_id", ASCENDING), ("status", ASCENDING)]
        )

    # ------------------------------------------------------------------
    # Leveling
    # ------------------------------------------------------------------

    @wrap_errors
    async def get_user_level(self, guild_id: int, user_id: int) -> Optional[Dict[str, Any]]:
        """Get a member's leveling document"""
        return await self.db.users.find_one({"guild_id": guild_id, "user_id": user_id})

    @wrap_errors
    async def ensure_user(self, guild_id: int, user_id: int, now: float) -> bool:
        """Create a zeroed leveling document if none exists. Returns True if created"""
        result = await self.db.users.update_one(
            {"guild_id": guild_id, "user_id": user_id},
            {"$setOnInsert": self._seed(0, now)},
            upsert=True
        )
        return result.upserted_id is not None

    @wrap_errors
    async def apply_xp(
        self,
        guild_id: int,
        user_id: int,
        amount: int,
        now: float,
        messages: int = 0,
        voice_minutes: int = 0
    ) -> XPUpdate:
        """
        Add XP to a member in a single write per attempt

        Total and level are written together. Concurrent awards for the same
        member are serialised with a compare-and-set on total_xp.

        Args:
            guild_id: Guild id
            user_id: User id
            amount: XP to add (already multiplied)
            now: Timestamp for updated_at
            messages: Increment for message_count
            voice_minutes: Increment for voice_minutes

        Returns:
            XPUpdate with the totals before and after the award
        """
        key = {"guild_id": guild_id, "user_id": user_id}

        seed = self._seed(amount, now)
        seed["message_count"] = messages
        seed["voice_minutes"] = voice_minutes
        result = await self.db.users.update_one(key, {"$setOnInsert": seed}, upsert=True)
        if result.upserted_id is not None:
            return XPUpdate(old_total=0, new_total=amount, created=True)

        for attempt in range(1, CAS_RETRIES + 1):
            current = await self.db.users.find_one(key)
            old_total = current.get("total_xp", 0)
            new_total = old_total + amount

            result = await self.db.users.update_one(
                {**key, "total_xp": old_total},
                {
                    "$set": {
                        "total_xp": new_total,
                        "xp": new_total % XP_PER_LEVEL,
                        "level": new_total // XP_PER_LEVEL,
                        "updated_at": now
                    },
                    "$inc": {"message_count": messages, "voice_minutes": voice_minutes}
                }
            )
            if result.matched_count:
                return XPUpdate(old_total=old_total, new_total=new_total, created=False)

            logger.debug(f"XP write contention for {guild_id}/{user_id} (attempt {attempt}/{CAS_RETRIES})")

        raise TransientError("Could not apply XP because of concurrent updates")

    @wrap_errors
    async def get_leaderboard(self, guild_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        """Top members by total XP, ties by user id"""
        cursor = self.db.users.find({"guild_id": guild_id}).sort(
            [("total_xp", DESCENDING), ("user_id", ASCENDING)]
        ).limit(limit)
        return await cursor.to_list(length=limit)

    @wrap_errors
    async def get_rank(self, guild_id: int, user_id: int) -> Optional[int]:
        """1-based leaderboard position, None if the member has no record"""
        user = await self.db.users.find_one({"guild_id": guild_id, "user_id": user_id})
        if not user:
            return None

        total = user.get("total_xp", 0)
        ahead = await self.db.users.count_documents({"guild_id": guild_id, "total_xp": {"$gt": total}})
        tied_ahead = await self.db.users.count_documents({
            "guild_id": guild_id,
            "total_xp": total,
            "user_id": {"$lt": user_id}
        })
        return ahead + tied_ahead + 1

    @staticmethod
    def _seed(total_xp: int, now: float) -> Dict[str, Any]:
        return {
            "xp": total_xp % XP_PER_LEVEL,
            "level": total_xp // XP_PER_LEVEL,
            "total_xp": total_xp,
            "message_count": 0,
            "voice_minutes": 0,
            "created_at": now,
            "updated_at": now
        }

    # ------------------------------------------------------------------
    # Polls
    # ------------------------------------------------------------------

    @wrap_errors
    async def insert_poll(self, poll_data: Dict[str, Any]) -> str:
        """Insert a poll document. Raises DuplicateKeyError on id collision"""
        result = await self.db.polls.insert_one(poll_data)
        return str(result.inserted_id)

    @wrap_errors
    async def get_poll(self, poll_id: str) -> Optional[Dict[str, Any]]:
        return await self.db.polls.find_one({"_id": poll_id})

    @wrap_errors
    async def set_poll_message(self, poll_id: str, message_id: int) -> None:
        await self.db.polls.update_one({"_id": poll_id}, {"$set": {"message_id": message_id}})

    @wrap_errors
    async def record_vote(self, poll_id: str, user_key: str, option: str, overwrite: bool) -> bool:
        """
        Store a vote on an active poll

        Without overwrite the write only applies if the user has no vote yet.
        Returns True if the vote was stored.
        """
        field = f"votes.{user_key}"
        query: Dict[str, Any] = {"_id": poll_id, "status": "active"}
        if not overwrite:
            query[field] = {"$exists": False}

        result = await self.db.polls.update_one(query, {"$set": {field: option}})
        return result.matched_count > 0

    @wrap_errors
    async def end_poll(self, poll_id: str, now: float) -> bool:
        """Mark an active poll as ended. Returns False if it already was"""
        result = await self.db.polls.update_one(
            {"_id": poll_id, "status": "active"},
            {"$set": {"status": "ended", "ended_at": now}}
        )
        return result.modified_count > 0

    @wrap_errors
    async def get_poll_expiries(self) -> Dict[str, float]:
        """Expiry of every active poll that has one, keyed by poll id"""
        cursor = self.db.polls.find(
            {"status": "active", "expires_at": {"$ne": None}},
            {"_id": 1, "expires_at": 1}
        )
        return {doc["_id"]: doc["expires_at"] async for doc in cursor}

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    @wrap_errors
    async def next_ticket_number(self, guild_id: int) -> int:
        """Increment and return the guild's ticket counter"""
        counter = await self.db.counters.find_one_and_update(
            {"_id": f"ticket:{guild_id}"},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return counter["value"]

    @wrap_errors
    async def create_ticket(self, ticket_data: Dict[str, Any]) -> str:
        """Insert a ticket document"""
        result = await self.db.tickets.insert_one(ticket_data)
        return str(result.inserted_id)

    @wrap_errors
    async def get_ticket_by_channel(self, channel_id: int) -> Optional[Dict[str, Any]]:
        return await self.db.tickets.find_one({"channel_id": channel_id})

    @wrap_errors
    async def find_open_ticket(self, guild_id: int, user_id: int) -> Optional[Dict[str, Any]]:
        return await self.db.tickets.find_one({
            "guild_id": guild_id,
            "user_id": user_id,
            "status": "open"
        })

    @wrap_errors
    async def transition_ticket(self, ticket_id: str, from_status: str, update: Dict[str, Any]) -> bool:
        """Apply update only while the ticket is in from_status"""
        result = await self.db.tickets.update_one(
            {"_id": ticket_id, "status": from_status},
            {"$set": update}
        )
        return result.modified_count > 0

    @wrap_errors
    async def mark_ticket_deleted(self, channel_id: int) -> bool:
        result = await self.db.tickets.update_one(
            {"channel_id": channel_id, "status": {"$ne": "deleted"}},
            {"$set": {"status": "deleted"}}
        )
        return result.modified_count > 0

    @wrap_errors
    async def get_stale_open_tickets(self, created_before: float) -> List[Dict[str, Any]]:
        """Open tickets created before the cutoff that have not been warned yet"""
        cursor = self.db.tickets.find({
            "status": "open",
            "created_at": {"$lt": created_before},
            "auto_close_warned_at": None
        })
        return [doc async for doc in cursor]

    @wrap_errors
    async def mark_auto_close_warned(self, ticket_id: str, now: float) -> None:
        await self.db.tickets.update_one({"_id": ticket_id}, {"$set": {"auto_close_warned_at": now}})

    @wrap_errors
    async def count_tickets(self, guild_id: int) -> Dict[str, int]:
        """Ticket counts per status for a guild"""
        counts = {}
        for status in ("open", "closed", "deleted"):
            counts[status] = await self.db.tickets.count_documents({"guild_id": guild_id, "status": status})
        counts["total"] = sum(counts.values())
        return counts
