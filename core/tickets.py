"""
Ticket manager for Crenors
Support ticket lifecycle with transcript capture
"""

import asyncio
import logging
import time
import weakref
from typing import Callable, Dict, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from core.config import AutoCloseConfig, TicketsConfig
from core.errors import ConflictError, InvalidStateError, NotFoundError, TransientError, ValidationError
from core.transport import Attachment, ChannelSpec, Transport
from database.db_manager import DatabaseManager
from database.models import Ticket
from utils.constants import TICKETS

logger = logging.getLogger(__name__)

AUTO_CLOSE_WARNING = (
    "⚠️ **Ticket Auto-Close Warning**\n"
    "This ticket has been inactive and will be automatically closed soon."
)


class TicketManager:
    """Open, close, reopen and delete support tickets"""

    def __init__(
        self,
        db: DatabaseManager,
        transport: Transport,
        config: TicketsConfig,
        config_manager=None,
        clock: Callable[[], float] = time.time
    ):
        self.db = db
        self.transport = transport
        self.config = config
        self.config_manager = config_manager
        self.clock = clock
        self._locks: "weakref.WeakValueDictionary[Tuple[int, int], asyncio.Lock]" = weakref.WeakValueDictionary()

    def apply_config(self, config: TicketsConfig) -> None:
        self.config = config

    def _lock(self, guild_id: int, user_id: int) -> asyncio.Lock:
        key = (guild_id, user_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get_by_channel(self, channel_id: int) -> Optional[Ticket]:
        data = await self.db.get_ticket_by_channel(channel_id)
        return Ticket.from_dict(data) if data else None

    async def _require(self, channel_id: int) -> Ticket:
        ticket = await self.get_by_channel(channel_id)
        if ticket is None:
            raise NotFoundError("This is not a valid ticket channel")
        return ticket

    async def create_ticket(self, guild_id: int, user_id: int, parent_id: Optional[int] = None) -> Ticket:
        """
        Open a ticket and its private channel

        Args:
            guild_id: Guild id
            user_id: Ticket owner
            parent_id: Category for the channel (defaults to the configured one)

        Returns:
            The new ticket

        Raises:
            ConflictError: the user already has an open ticket
            TransientError: the ticket number collides with a stored ticket
        """
        async with self._lock(guild_id, user_id):
            existing = await self.db.find_open_ticket(guild_id, user_id)
            if existing:
                raise ConflictError(f"You already have an open ticket: <#{existing['channel_id']}>")

            number = await self.db.next_ticket_number(guild_id)
            spec = ChannelSpec(
                name=f"ticket-{number}",
                owner_id=user_id,
                parent_id=parent_id or self.config.category,
                staff_role_id=self.config.support_role,
                topic=f"Support ticket #{number} for <@{user_id}>"
            )
            channel_id = await self.transport.create_channel(guild_id, spec)

            ticket = Ticket(
                ticket_id=f"{guild_id}-{number}",
                number=number,
                guild_id=guild_id,
                user_id=user_id,
                channel_id=channel_id,
                created_at=self.clock()
            )
            try:
                await self.db.create_ticket(ticket.to_dict())
            except Exception as e:
                logger.error(f"Failed to store ticket #{number}, removing its channel")
                try:
                    await self.transport.delete_channel(channel_id)
                except Exception as cleanup_error:
                    logger.error(f"Could not remove orphaned ticket channel {channel_id}: {cleanup_error}")
                if isinstance(e, DuplicateKeyError):
                    raise TransientError(f"Ticket number {number} is already in use, please try again") from e
                raise

        logger.info(f"Ticket #{number} created for {user_id} in guild {guild_id}")
        return ticket

    async def close_ticket(self, channel_id: int, closed_by: Optional[int] = None) -> Ticket:
        """Close an open ticket, storing and forwarding its transcript"""
        ticket = await self._require(channel_id)
        if ticket.status != "open":
            raise InvalidStateError("This ticket is not open")

        transcript = await self.capture_transcript(channel_id)
        now = self.clock()
        changed = await self.db.transition_ticket(ticket.ticket_id, "open", {
            "status": "closed",
            "closed_at": now,
            "closed_by": closed_by,
            "transcript": transcript
        })
        if not changed:
            raise InvalidStateError("This ticket is not open")

        ticket.status = "closed"
        ticket.closed_at = now
        ticket.closed_by = closed_by
        ticket.transcript = transcript

        if self.config.transcript_channel:
            await self._forward_transcript(ticket)

        logger.info(f"Ticket #{ticket.number} closed by {closed_by}")
        return ticket

    async def reopen_ticket(self, channel_id: int) -> Ticket:
        """Reopen a closed ticket"""
        ticket = await self._require(channel_id)
        if ticket.status != "closed":
            raise InvalidStateError("This ticket is not closed")

        async with self._lock(ticket.guild_id, ticket.user_id):
            other = await self.db.find_open_ticket(ticket.guild_id, ticket.user_id)
            if other:
                raise ConflictError(f"The ticket owner already has an open ticket: <#{other['channel_id']}>")

            changed = await self.db.transition_ticket(ticket.ticket_id, "closed", {
                "status": "open",
                "closed_at": None,
                "closed_by": None
            })
            if not changed:
                raise InvalidStateError("This ticket is not closed")

        ticket.status = "open"
        ticket.closed_at = None
        ticket.closed_by = None
        logger.info(f"Ticket #{ticket.number} reopened")
        return ticket

    async def delete_ticket(self, channel_id: int) -> Ticket:
        """Delete the ticket channel and mark the record deleted"""
        ticket = await self._require(channel_id)
        if ticket.status == "deleted":
            return ticket

        await self.transport.delete_channel(channel_id)
        await self.db.mark_ticket_deleted(channel_id)
        ticket.status = "deleted"
        logger.info(f"Ticket #{ticket.number} deleted")
        return ticket

    async def channel_deleted(self, channel_id: int) -> bool:
        """Channel removed outside the bot. Returns True if a ticket was marked deleted"""
        changed = await self.db.mark_ticket_deleted(channel_id)
        if changed:
            logger.info(f"Ticket channel {channel_id} was deleted, ticket marked deleted")
        return changed

    async def capture_transcript(self, channel_id: int) -> str:
        """Render the channel's recent history as plain text, oldest first"""
        try:
            lines = await self.transport.fetch_recent_messages(channel_id, TICKETS["transcript_limit"])
        except Exception as e:
            logger.error(f"Error generating transcript for {channel_id}: {e}")
            return TICKETS["transcript_failed"]
        return "\n".join(line.render() for line in lines)

    async def _forward_transcript(self, ticket: Ticket) -> None:
        content = (
            f"📄 **Ticket Transcript**\n"
            f"**Ticket:** #{ticket.number}\n"
            f"**User:** <@{ticket.user_id}>\n"
            f"**Status:** Closed"
        )
        attachment = Attachment(
            filename=f"ticket-{ticket.number}-transcript.txt",
            data=(ticket.transcript or "").encode("utf-8")
        )
        try:
            await self.transport.send_message(self.config.transcript_channel, content, attachment)
        except Exception as e:
            logger.error(f"Error sending transcript for ticket #{ticket.number}: {e}")

    async def sweep_auto_close(self) -> List[Ticket]:
        """Scheduler tick: warn open tickets older than the auto-close threshold"""
        auto_close = self.config.auto_close
        if not auto_close.enabled:
            return []

        now = self.clock()
        cutoff = now - auto_close.hours * 3600
        try:
            stale = await self.db.get_stale_open_tickets(cutoff)
        except Exception as e:
            logger.error(f"Error checking auto-close: {e}")
            return []

        warned = []
        for data in stale:
            ticket = Ticket.from_dict(data)
            try:
                await self.transport.send_message(ticket.channel_id, AUTO_CLOSE_WARNING)
                await self.db.mark_auto_close_warned(ticket.ticket_id, now)
            except Exception as e:
                logger.warning(f"Auto-close warning failed for ticket #{ticket.number}: {e}")
                continue

            ticket.auto_close_warned_at = now
            warned.append(ticket)

        return warned

    async def stats(self, guild_id: int) -> Dict[str, int]:
        return await self.db.count_tickets(guild_id)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_transcript_channel(self, channel_id: Optional[int]) -> None:
        self.config.transcript_channel = channel_id
        self._persist()

    def configure(
        self,
        transcript_channel: Optional[int],
        category: Optional[int] = None,
        support_role: Optional[int] = None
    ) -> None:
        """Set the transcript channel, plus category and support role when given"""
        self.config.transcript_channel = transcript_channel
        if category is not None:
            self.config.category = category
        if support_role is not None:
            self.config.support_role = support_role
        self._persist()

    def set_auto_close(self, enabled: bool, hours: Optional[float] = None) -> None:
        if hours is not None and hours <= 0:
            raise ValidationError("Hours must be positive")
        self.config.auto_close = AutoCloseConfig(
            enabled=enabled,
            hours=hours if hours is not None else self.config.auto_close.hours
        )
        self._persist()

    def _persist(self) -> None:
        if self.config_manager is not None:
            self.config_manager.set("modules.tickets", self.config.to_dict())
