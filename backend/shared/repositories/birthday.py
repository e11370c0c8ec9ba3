"""Repository for the birthdays table."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

import asyncpg

from shared.models.birthday import BirthdayRecord

_COLUMNS = "guild_id, user_id, birthday_date, last_year_notified, created_at, updated_at"


def _subject_order(record: BirthdayRecord) -> str:
    # Mention order and truncation depend on this: string order, not numeric.
    return str(record.user_id)


def _parse_row_count(status: str) -> int:
    """Turn an asyncpg command status such as ``UPDATE 3`` into ``3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


class BirthdayRepository:
    """Pure SQL operations for member birthdays.

    Birthdays are scoped per guild: the primary key is ``(guild_id, user_id)``.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ==================== Scheduler Operations ====================

    async def find_due_birthdays(self, today: date) -> dict[int, list[BirthdayRecord]]:
        """Birthdays falling on ``today`` that were not announced this year.

        Returns ``{guild_id: [record, ...]}`` with each guild's records ordered
        by user id compared as text. Database errors propagate; callers must
        not act on a partial result.
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS}
                FROM birthdays
                WHERE EXTRACT(MONTH FROM birthday_date) = $1
                  AND EXTRACT(DAY FROM birthday_date) = $2
                  AND last_year_notified <> $3
                ORDER BY guild_id, user_id::text
                """,
                today.month,
                today.day,
                today.year,
            )

        grouped: dict[int, list[BirthdayRecord]] = {}
        for row in rows:
            record = BirthdayRecord(**dict(row))
            grouped.setdefault(record.guild_id, []).append(record)
        for records in grouped.values():
            records.sort(key=_subject_order)
        return grouped

    async def commit_notified(self, guild_id: int, user_ids: Sequence[int], year: int) -> int:
        """Mark the given members of one guild as announced for ``year``.

        Returns the number of rows updated. Errors propagate.
        """
        if not user_ids:
            return 0

        async with self.pool.acquire() as conn:
            status: str = await conn.execute(
                """
                UPDATE birthdays
                SET last_year_notified = $1, updated_at = NOW()
                WHERE guild_id = $2 AND user_id = ANY($3::bigint[])
                """,
                year,
                guild_id,
                list(user_ids),
            )
        return _parse_row_count(status)

    # ==================== Member Operations ====================

    async def get_birthday(self, guild_id: int, user_id: int) -> BirthdayRecord | None:
        """Get a member's birthday in a guild."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM birthdays WHERE guild_id = $1 AND user_id = $2",
                guild_id,
                user_id,
            )
        return BirthdayRecord(**dict(row)) if row else None

    async def upsert_birthday(self, guild_id: int, user_id: int, birthday_date: date) -> None:
        """Insert or update a member's birthday.

        Moving the birthday to another month/day clears the notified year so
        the new date is announced; re-saving the same date keeps it.
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO birthdays (guild_id, user_id, birthday_date)
                VALUES ($1, $2, $3)
                ON CONFLICT (guild_id, user_id) DO UPDATE SET
                    birthday_date = EXCLUDED.birthday_date,
                    last_year_notified = CASE
                        WHEN to_char(birthdays.birthday_date, 'MM-DD')
                           = to_char(EXCLUDED.birthday_date, 'MM-DD')
                        THEN birthdays.last_year_notified
                        ELSE 0
                    END,
                    updated_at = NOW()
                """,
                guild_id,
                user_id,
                birthday_date,
            )

    async def delete_birthday(self, guild_id: int, user_id: int) -> bool:
        """Delete a member's birthday. Returns True if a row was deleted."""
        async with self.pool.acquire() as conn:
            result: str = await conn.execute(
                "DELETE FROM birthdays WHERE guild_id = $1 AND user_id = $2",
                guild_id,
                user_id,
            )
        return result == "DELETE 1"

    async def list_guild_birthdays(self, guild_id: int) -> list[BirthdayRecord]:
        """All birthdays of a guild in calendar order."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_COLUMNS}
                FROM birthdays
                WHERE guild_id = $1
                ORDER BY EXTRACT(MONTH FROM birthday_date),
                         EXTRACT(DAY FROM birthday_date),
                         user_id::text
                """,
                guild_id,
            )
        return [BirthdayRecord(**dict(row)) for row in rows]

    async def delete_guild_birthdays(self, guild_id: int) -> int:
        """Delete every birthday of a guild. Returns the number of rows deleted."""
        async with self.pool.acquire() as conn:
            status: str = await conn.execute("DELETE FROM birthdays WHERE guild_id = $1", guild_id)
        return _parse_row_count(status)
