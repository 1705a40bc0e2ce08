"""
Unit tests for the ticket manager
"""

import asyncio
from datetime import datetime, timezone

import pytest
from pymongo.errors import DuplicateKeyError

from core.config import AutoCloseConfig, TicketsConfig
from core.errors import ConflictError, InvalidStateError, NotFoundError, TransientError
from core.tickets import TicketManager
from utils.config_manager import ConfigManager

GUILD_ID = 987654321
USER_ID = 123456789
STAFF_ID = 111
TRANSCRIPT_CHANNEL = 9000


@pytest.mark.asyncio
async def test_create_ticket(tickets, transport):
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)

    assert ticket.status == "open"
    assert ticket.number == 1
    assert ticket.ticket_id == f"{GUILD_ID}-1"

    guild_id, spec = transport.created[0]
    assert guild_id == GUILD_ID
    assert spec.name == "ticket-1"
    assert spec.owner_id == USER_ID

    stored = await tickets.get_by_channel(ticket.channel_id)
    assert stored.ticket_id == ticket.ticket_id


@pytest.mark.asyncio
async def test_ticket_numbers_increase_per_guild(tickets):
    first = await tickets.create_ticket(GUILD_ID, 1)
    second = await tickets.create_ticket(GUILD_ID, 2)
    other_guild = await tickets.create_ticket(GUILD_ID + 1, 1)

    assert (first.number, second.number, other_guild.number) == (1, 2, 1)


@pytest.mark.asyncio
async def test_second_open_ticket_conflicts(tickets, transport):
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)

    with pytest.raises(ConflictError):
        await tickets.create_ticket(GUILD_ID, USER_ID)
    assert len(transport.created) == 1

    await tickets.close_ticket(ticket.channel_id, STAFF_ID)
    replacement = await tickets.create_ticket(GUILD_ID, USER_ID)
    assert replacement.number == 2


@pytest.mark.asyncio
async def test_failed_insert_removes_channel(tickets, transport, monkeypatch):
    async def broken_insert(data):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(tickets.db, "create_ticket", broken_insert)

    with pytest.raises(RuntimeError):
        await tickets.create_ticket(GUILD_ID, USER_ID)

    created_channel = transport._next_channel
    assert transport.deleted == [created_channel]


@pytest.mark.asyncio
async def test_close_captures_transcript(tickets, transport, clock):
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)
    first = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    second = datetime(2024, 1, 1, 12, 5, tzinfo=timezone.utc)
    transport.add_history(ticket.channel_id, first, "alice", "I need help")
    transport.add_history(ticket.channel_id, second, "staff", "On it")

    closed = await tickets.close_ticket(ticket.channel_id, STAFF_ID)

    assert closed.status == "closed"
    assert closed.closed_by == STAFF_ID
    assert closed.closed_at == clock()
    assert closed.transcript == (
        "[2024-01-01T12:00:00+00:00] alice: I need help\n"
        "[2024-01-01T12:05:00+00:00] staff: On it"
    )

    stored = await tickets.get_by_channel(ticket.channel_id)
    assert stored.status == "closed"
    assert stored.transcript == closed.transcript


@pytest.mark.asyncio
async def test_transcript_failure_is_recorded(tickets, transport):
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)
    transport.fail_history = True

    closed = await tickets.close_ticket(ticket.channel_id)
    assert closed.transcript == "Failed to generate transcript"


@pytest.mark.asyncio
async def test_transcript_forwarded_as_attachment(db, transport, clock):
    tickets = TicketManager(db, transport, TicketsConfig(transcript_channel=TRANSCRIPT_CHANNEL), clock=clock)
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)
    transport.add_history(ticket.channel_id, datetime(2024, 1, 1, tzinfo=timezone.utc), "alice", "hello")

    await tickets.close_ticket(ticket.channel_id, STAFF_ID)

    channel_id, content, attachment = transport.sent[-1]
    assert channel_id == TRANSCRIPT_CHANNEL
    assert "#1" in content
    assert attachment.filename == "ticket-1-transcript.txt"
    assert attachment.data == b"[2024-01-01T00:00:00+00:00] alice: hello"


@pytest.mark.asyncio
async def test_forward_failure_does_not_block_close(db, transport, clock):
    tickets = TicketManager(db, transport, TicketsConfig(transcript_channel=TRANSCRIPT_CHANNEL), clock=clock)
    transport.fail_send.add(TRANSCRIPT_CHANNEL)
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)

    closed = await tickets.close_ticket(ticket.channel_id)
    assert closed.status == "closed"


@pytest.mark.asyncio
async def test_invalid_lifecycle_transitions(tickets):
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)

    with pytest.raises(InvalidStateError):
        await tickets.reopen_ticket(ticket.channel_id)

    await tickets.close_ticket(ticket.channel_id)
    with pytest.raises(InvalidStateError):
        await tickets.close_ticket(ticket.channel_id)


@pytest.mark.asyncio
async def test_unknown_channel(tickets):
    with pytest.raises(NotFoundError):
        await tickets.close_ticket(404)
    with pytest.raises(NotFoundError):
        await tickets.delete_ticket(404)


@pytest.mark.asyncio
async def test_reopen(tickets):
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)
    await tickets.close_ticket(ticket.channel_id, STAFF_ID)

    reopened = await tickets.reopen_ticket(ticket.channel_id)

    assert reopened.status == "open"
    stored = await tickets.get_by_channel(ticket.channel_id)
    assert (stored.status, stored.closed_at) == ("open", None)


@pytest.mark.asyncio
async def test_reopen_conflicts_with_newer_ticket(tickets):
    old = await tickets.create_ticket(GUILD_ID, USER_ID)
    await tickets.close_ticket(old.channel_id)
    await tickets.create_ticket(GUILD_ID, USER_ID)

    with pytest.raises(ConflictError):
        await tickets.reopen_ticket(old.channel_id)


@pytest.mark.asyncio
async def test_delete_ticket(tickets, transport):
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)

    deleted = await tickets.delete_ticket(ticket.channel_id)

    assert deleted.status == "deleted"
    assert transport.deleted == [ticket.channel_id]
    assert (await tickets.get_by_channel(ticket.channel_id)).status == "deleted"

    # Deleted tickets no longer block a new one
    await tickets.create_ticket(GUILD_ID, USER_ID)


@pytest.mark.asyncio
async def test_external_channel_delete(tickets, transport):
    ticket = await tickets.create_ticket(GUILD_ID, USER_ID)

    assert await tickets.channel_deleted(ticket.channel_id) is True
    assert await tickets.channel_deleted(ticket.channel_id) is False
    assert await tickets.channel_deleted(404) is False
    assert transport.deleted == []


@pytest.mark.asyncio
async def test_auto_close_warns_once(db, transport, clock):
    config = TicketsConfig(auto_close=AutoCloseConfig(enabled=True, hours=24))
    tickets = TicketManager(db, transport, config, clock=clock)
    stale = await tickets.create_ticket(GUILD_ID, 1)
    clock.advance(20 * 3600)
    fresh = await tickets.create_ticket(GUILD_ID, 2)
    clock.advance(5 * 3600)

    warned = await tickets.sweep_auto_close()

    assert [t.ticket_id for t in warned] == [stale.ticket_id]
    assert [channel for channel, _, _ in transport.sent] == [stale.channel_id]
    assert (await tickets.get_by_channel(stale.channel_id)).status == "open"

    clock.advance(3600)
    assert await tickets.sweep_auto_close() == []

    clock.advance(20 * 3600)
    warned = await tickets.sweep_auto_close()
    assert [t.ticket_id for t in warned] == [fresh.ticket_id]


@pytest.mark.asyncio
async def test_auto_close_disabled(tickets, transport, clock):
    await tickets.create_ticket(GUILD_ID, USER_ID)
    clock.advance(48 * 3600)

    assert await tickets.sweep_auto_close() == []
    assert transport.sent == []


@pytest.mark.asyncio
async def test_auto_close_continues_after_send_failure(db, transport, clock):
    config = TicketsConfig(auto_close=AutoCloseConfig(enabled=True, hours=1))
    tickets = TicketManager(db, transport, config, clock=clock)
    first = await tickets.create_ticket(GUILD_ID, 1)
    second = await tickets.create_ticket(GUILD_ID, 2)
    transport.fail_send.add(first.channel_id)
    clock.advance(7200)

    warned = await tickets.sweep_auto_close()

    assert [t.ticket_id for t in warned] == [second.ticket_id]
    assert (await tickets.get_by_channel(first.channel_id)).auto_close_warned_at is None


@pytest.mark.asyncio
async def test_stats(tickets):
    a = await tickets.create_ticket(GUILD_ID, 1)
    b = await tickets.create_ticket(GUILD_ID, 2)
    await tickets.create_ticket(GUILD_ID, 3)
    await tickets.close_ticket(a.channel_id)
    await tickets.delete_ticket(b.channel_id)

    assert await tickets.stats(GUILD_ID) == {"open": 1, "closed": 1, "deleted": 1, "total": 3}


@pytest.mark.asyncio
async def test_settings_persist(db, transport, clock, tmp_path):
    config_manager = ConfigManager(str(tmp_path / "config.yaml"))
    tickets = TicketManager(db, transport, TicketsConfig(), config_manager, clock=clock)

    tickets.configure(TRANSCRIPT_CHANNEL, category=321, support_role=654)
    tickets.set_auto_close(True, 12)

    saved = config_manager.get("modules.tickets")
    assert saved["transcript_channel"] == TRANSCRIPT_CHANNEL
    assert saved["category"] == 321
    assert saved["support_role"] == 654
    assert saved["auto_close"] == {"enabled": True, "hours": 12}


@pytest.mark.asyncio
async def test_concurrent_creates_open_one_ticket(tickets, transport):
    results = await asyncio.gather(
        *(tickets.create_ticket(GUILD_ID, USER_ID) for _ in range(3)),
        return_exceptions=True
    )

    assert sorted(type(r).__name__ for r in results) == ["ConflictError", "ConflictError", "Ticket"]
    assert len(transport.created) == 1


@pytest.mark.asyncio
async def test_parent_category_reaches_channel_spec(tickets, transport):
    await tickets.create_ticket(GUILD_ID, 1, parent_id=321)
    tickets.config.category = 654
    await tickets.create_ticket(GUILD_ID, 2)
    await tickets.create_ticket(GUILD_ID, 3, parent_id=321)

    assert [spec.parent_id for _, spec in transport.created] == [321, 654, 321]


@pytest.mark.asyncio
async def test_ticket_id_collision_is_reported_as_transient(tickets, transport, monkeypatch):
    async def colliding_insert(data):
        raise DuplicateKeyError("E11000 duplicate key")

    monkeypatch.setattr(tickets.db, "create_ticket", colliding_insert)

    with pytest.raises(TransientError):
        await tickets.create_ticket(GUILD_ID, USER_ID)
    assert transport.deleted == [transport._next_channel]
