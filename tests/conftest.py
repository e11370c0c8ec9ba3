from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date

import pytest

from discord_bot.cogs.birthday.gateway import (
    ChannelInfo,
    GatewayError,
    MemberInfo,
    RoleInfo,
)
from shared.models.birthday import BirthdayRecord
from shared.models.guild_settings import GuildNotificationSettings


class FakeGateway:
    """In-memory Discord: guilds, roles, members, channels and sent messages."""

    def __init__(self):
        self.guilds: set[int] = set()
        self.roles: dict[int, dict[int, RoleInfo]] = defaultdict(dict)
        self.hoisted: dict[int, bool] = {}
        self.members: dict[int, set[int]] = defaultdict(set)
        self.member_roles: dict[tuple[int, int], set[int]] = defaultdict(set)
        self.channels: dict[tuple[int, int], ChannelInfo] = {}
        self.sent: list[tuple[int, int, str]] = []
        self.calls: list[tuple[str, int]] = []
        self.failures: dict[tuple[str, int], Exception] = {}
        self.top_position = 10
        self._next_id = 9000

    # --- test setup helpers ---

    def add_guild(self, guild_id, members=(), channel_id=None, postable=True, text_based=True):
        self.guilds.add(guild_id)
        self.members[guild_id].update(members)
        if channel_id is not None:
            self.channels[(guild_id, channel_id)] = ChannelInfo(
                id=channel_id, name="birthdays", text_based=text_based, can_send=postable
            )

    def add_guild_role(self, guild_id, role_id, name="Birthday", color=0x123456, position=4):
        role = RoleInfo(id=role_id, name=name, color=color, position=position)
        self.roles[guild_id][role_id] = role
        return role

    def fail(self, method, guild_id, exc=None):
        self.failures[(method, guild_id)] = exc or GatewayError(f"{method} failed")

    def roles_named(self, guild_id, name):
        return [r for r in self.roles[guild_id].values() if r.name == name]

    def _check(self, method, guild_id):
        self.calls.append((method, guild_id))
        exc = self.failures.get((method, guild_id))
        if exc is not None:
            raise exc

    # --- DiscordGateway ---

    async def has_guild(self, guild_id):
        self._check("has_guild", guild_id)
        return guild_id in self.guilds

    async def get_role(self, guild_id, role_id):
        self._check("get_role", guild_id)
        return self.roles[guild_id].get(role_id)

    async def top_assignable_position(self, guild_id):
        self._check("top_assignable_position", guild_id)
        return self.top_position

    async def delete_role(self, guild_id, role_id, reason):
        self._check("delete_role", guild_id)
        self.roles[guild_id].pop(role_id, None)
        for key, role_ids in self.member_roles.items():
            if key[0] == guild_id:
                role_ids.discard(role_id)

    async def create_role(self, guild_id, *, name, color, hoist, position, reason):
        self._check("create_role", guild_id)
        self._next_id += 1
        role = RoleInfo(id=self._next_id, name=name, color=color, position=position)
        self.roles[guild_id][role.id] = role
        self.hoisted[role.id] = hoist
        return role

    async def fetch_member(self, guild_id, user_id):
        self._check("fetch_member", guild_id)
        if user_id not in self.members[guild_id]:
            return None
        return MemberInfo(id=user_id, display_name=f"user{user_id}")

    async def add_role(self, guild_id, user_id, role_id, reason):
        self._check("add_role", guild_id)
        self.member_roles[(guild_id, user_id)].add(role_id)

    async def fetch_channel(self, guild_id, channel_id):
        self._check("fetch_channel", guild_id)
        return self.channels.get((guild_id, channel_id))

    async def send_message(self, guild_id, channel_id, content):
        self._check("send_message", guild_id)
        self.sent.append((guild_id, channel_id, content))


class InMemoryBirthdayStore:
    """Birthday directory over a list of records."""

    def __init__(self):
        self.records: list[BirthdayRecord] = []
        self.read_error: Exception | None = None
        self.read_gate = None
        self.commit_errors: dict[int, Exception] = {}
        self.commits: list[tuple[int, list[int], int]] = []

    def add(self, guild_id, user_id, birthday: date, last_year_notified=0):
        record = BirthdayRecord(
            guild_id=guild_id,
            user_id=user_id,
            birthday_date=birthday,
            last_year_notified=last_year_notified,
        )
        self.records.append(record)
        return record

    async def find_due_birthdays(self, today):
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.read_error is not None:
            raise self.read_error
        grouped: dict[int, list[BirthdayRecord]] = {}
        for record in self.records:
            if record.is_due(today):
                grouped.setdefault(record.guild_id, []).append(record)
        for records in grouped.values():
            records.sort(key=lambda r: str(r.user_id))
        return grouped

    async def commit_notified(self, guild_id, user_ids, year):
        if guild_id in self.commit_errors:
            raise self.commit_errors[guild_id]
        self.commits.append((guild_id, list(user_ids), year))
        updated = 0
        for record in self.records:
            if record.guild_id == guild_id and record.user_id in user_ids:
                record.last_year_notified = year
                updated += 1
        return updated


class InMemorySettingsStore:
    def __init__(self):
        self.settings: dict[int, GuildNotificationSettings] = {}
        self.role_write_errors: dict[int, Exception] = {}

    def configure(self, guild_id, channel_id=None, role_id=None):
        settings = GuildNotificationSettings(
            guild_id=guild_id, birthday_channel_id=channel_id, birthday_role_id=role_id
        )
        self.settings[guild_id] = settings
        return settings

    async def get_settings(self, guild_id):
        return self.settings.get(guild_id)

    async def set_birthday_role(self, guild_id, role_id):
        if guild_id in self.role_write_errors:
            raise self.role_write_errors[guild_id]
        settings = self.settings.setdefault(guild_id, GuildNotificationSettings(guild_id=guild_id))
        settings.birthday_role_id = role_id


class FakeConnection:
    """Records queries; returns canned rows/status like an asyncpg connection."""

    def __init__(self, rows=None, row=None, status="UPDATE 0"):
        self.rows = rows or []
        self.row = row
        self.status = status
        self.calls: list[tuple[str, str, tuple]] = []

    async def fetch(self, query, *args):
        self.calls.append(("fetch", query, args))
        return self.rows

    async def fetchrow(self, query, *args):
        self.calls.append(("fetchrow", query, args))
        return self.row

    async def execute(self, query, *args):
        self.calls.append(("execute", query, args))
        return self.status


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self, timeout=None):
        yield self.conn


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def birthday_store():
    return InMemoryBirthdayStore()


@pytest.fixture
def settings_store():
    return InMemorySettingsStore()


@pytest.fixture
def fake_conn():
    return FakeConnection()


@pytest.fixture
def fake_pool(fake_conn):
    return FakePool(fake_conn)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    from shared.repositories.guild_settings import _settings_cache

    _settings_cache.clear()
    yield
    _settings_cache.clear()
