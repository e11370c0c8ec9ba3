"""Repository for the guild_settings table."""

from __future__ import annotations

import asyncpg

from shared.cache import AsyncTTLCache
from shared.models.guild_settings import GuildNotificationSettings

# --- In-process caches ---
_settings_cache = AsyncTTLCache(maxsize=256, ttl=120)


def _key(guild_id: int) -> str:
    return f"guild_settings:{guild_id}"


class GuildSettingsRepository:
    """Pure SQL operations for per-guild birthday settings."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get_settings(self, guild_id: int) -> GuildNotificationSettings | None:
        """Get guild settings, or None if the guild was never configured."""

        async def load() -> GuildNotificationSettings | None:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM guild_settings WHERE guild_id = $1",
                    guild_id,
                )
            return GuildNotificationSettings(**dict(row)) if row else None

        return await _settings_cache.get_or_load(_key(guild_id), load)

    async def set_birthday_channel(self, guild_id: int, channel_id: int) -> None:
        """Set the announcement channel, creating the settings row if needed."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO guild_settings (guild_id, birthday_channel_id)
                VALUES ($1, $2)
                ON CONFLICT (guild_id) DO UPDATE SET
                    birthday_channel_id = EXCLUDED.birthday_channel_id,
                    updated_at = NOW()
                """,
                guild_id,
                channel_id,
            )
        _settings_cache.invalidate(_key(guild_id))

    async def set_birthday_role(self, guild_id: int, role_id: int) -> None:
        """Store the currently active birthday role, creating the row if needed."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO guild_settings (guild_id, birthday_role_id)
                VALUES ($1, $2)
                ON CONFLICT (guild_id) DO UPDATE SET
                    birthday_role_id = EXCLUDED.birthday_role_id,
                    updated_at = NOW()
                """,
                guild_id,
                role_id,
            )
        _settings_cache.invalidate(_key(guild_id))

    async def delete_settings(self, guild_id: int) -> None:
        """Delete guild settings."""
        async with self.pool.acquire() as conn:
            await conn.execute("DELETE FROM guild_settings WHERE guild_id = $1", guild_id)
        _settings_cache.invalidate(_key(guild_id))
