"""Migration runner for the bot schema."""

from __future__ import annotations

import logging
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"

# Arbitrary constant shared by every process that runs migrations
_ADVISORY_LOCK_KEY = 7_318_204


class MigrationRunner:
    """Apply ``versions/NNN_description.sql`` files once each, in order.

    Applied versions are recorded in ``schema_migrations``. Each file runs in
    its own transaction under a Postgres advisory lock, so two bot processes
    starting together do not apply the same file twice.
    """

    TRACKING_TABLE = "schema_migrations"

    def __init__(self, pool: asyncpg.Pool, migrations_dir: Path | None = None) -> None:
        self.pool = pool
        self.migrations_dir = migrations_dir or VERSIONS_DIR

    async def ensure_table(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.TRACKING_TABLE} (
                    version    TEXT PRIMARY KEY,
                    name       TEXT NOT NULL,
                    applied_at TIMESTAMPTZ DEFAULT NOW()
                )
                """
            )

    async def get_applied(self) -> set[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT version FROM {self.TRACKING_TABLE}")  # noqa: S608
        return {row["version"] for row in rows}

    def discover(self) -> list[Path]:
        """SQL files sorted by name; the NNN_ prefix gives the order."""
        return sorted(self.migrations_dir.glob("*.sql"))

    async def run_pending(self) -> list[str]:
        """Apply all pending migrations. Returns the newly applied versions."""
        await self.ensure_table()
        applied = await self.get_applied()

        sql_files = self.discover()
        if not sql_files:
            logger.info(f"No migration files found in {self.migrations_dir}")
            return []

        newly_applied: list[str] = []
        for sql_path in sql_files:
            version = sql_path.stem
            if version in applied:
                continue
            sql = sql_path.read_text(encoding="utf-8")
            if await self._apply_one(version, sql_path.name, sql):
                newly_applied.append(version)

        if newly_applied:
            logger.info(f"Applied {len(newly_applied)} migration(s): {', '.join(newly_applied)}")
        else:
            logger.info("Database is up to date")
        return newly_applied

    async def _apply_one(self, version: str, name: str, sql: str) -> bool:
        """Execute one migration inside a transaction.

        Returns False when another process applied it while we waited
        for the lock.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("SELECT pg_advisory_xact_lock($1)", _ADVISORY_LOCK_KEY)
                already = await conn.fetchval(
                    f"SELECT 1 FROM {self.TRACKING_TABLE} WHERE version = $1",  # noqa: S608
                    version,
                )
                if already:
                    logger.debug(f"Migration {version} applied concurrently, skipping")
                    return False

                logger.info(f"Applying migration: {version}")
                await conn.execute(sql)
                await conn.execute(
                    f"INSERT INTO {self.TRACKING_TABLE} (version, name) VALUES ($1, $2)",
                    version,
                    name,
                )
        return True
