"""
Shared fixtures: in-memory MongoDB, recording transport and a controllable clock
"""

import pytest
from mongomock_motor import AsyncMongoMockClient

from core.config import LevelingConfig, PollsConfig, TicketsConfig
from core.leveling import LevelingManager
from core.polls import PollManager
from core.tickets import TicketManager
from core.transport import TranscriptLine
from database.db_manager import DatabaseManager


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records every outbound action"""

    def __init__(self):
        self.sent = []           # (channel_id, content, attachment)
        self.granted = []        # (guild_id, user_id, role_id)
        self.created = []        # (guild_id, ChannelSpec)
        self.deleted = []        # channel ids
        self.roles = {}          # (guild_id, user_id) -> set of role ids
        self.history = {}        # channel_id -> list of TranscriptLine
        self.fail_history = False
        self.fail_send = set()   # channel ids whose sends raise
        self.fail_grant = set()  # role ids whose grants raise
        self._next_channel = 5000

    async def send_message(self, channel_id, content, attachment=None):
        if channel_id in self.fail_send:
            raise RuntimeError("send failed")
        self.sent.append((channel_id, content, attachment))

    async def grant_role(self, guild_id, user_id, role_id):
        if role_id in self.fail_grant:
            raise RuntimeError("grant failed")
        self.granted.append((guild_id, user_id, role_id))
        self.roles.setdefault((guild_id, user_id), set()).add(role_id)

    async def create_channel(self, guild_id, spec):
        self._next_channel += 1
        self.created.append((guild_id, spec))
        return self._next_channel

    async def delete_channel(self, channel_id):
        self.deleted.append(channel_id)

    async def fetch_recent_messages(self, channel_id, limit):
        if self.fail_history:
            raise RuntimeError("history unavailable")
        return list(self.history.get(channel_id, []))[-limit:]

    async def member_role_ids(self, guild_id, user_id):
        return set(self.roles.get((guild_id, user_id), set()))

    def add_history(self, channel_id, timestamp, author, content):
        self.history.setdefault(channel_id, []).append(TranscriptLine(timestamp, author, content))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
async def db():
    """DatabaseManager backed by an in-memory MongoDB"""
    manager = DatabaseManager("mongodb://localhost:27017", "crenors_test", client=AsyncMongoMockClient())
    await manager.connect()
    yield manager
    await manager.disconnect()


@pytest.fixture
def leveling(db, transport, clock):
    return LevelingManager(db, transport, LevelingConfig(), clock=clock)


@pytest.fixture
def polls(db, clock):
    return PollManager(db, PollsConfig(), clock=clock)


@pytest.fixture
def tickets(db, transport, clock):
    return TicketManager(db, transport, TicketsConfig(), clock=clock)
