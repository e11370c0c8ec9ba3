"""asyncpg pool for the bot.

The bot holds one long-lived pool. Birthday ticks and slash commands
borrow connections from it; migrations run on it once at startup.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import Any, ClassVar
from urllib.parse import urlparse

import asyncpg

logger = logging.getLogger(__name__)

# Errors worth another connect attempt
RETRYABLE_ERRORS = (OSError, asyncio.TimeoutError, asyncpg.PostgresError)


@dataclass
class PoolConfig:
    """Pool sizing, timeouts and connect retry policy."""

    min_size: int = 1
    max_size: int = 5
    timeout: float = 5.0
    command_timeout: float = 15.0
    max_inactive_connection_lifetime: float = 300.0
    max_retries: int = 3
    retry_delay: float = 3.0
    # "require" for hosted Postgres, None for a local server
    ssl: str | None = None

    _SERVICE_PRESETS: ClassVar[dict[str, dict]] = {
        "discord": {"min_size": 1, "max_size": 4},
    }

    @classmethod
    def for_service(cls, service: str, **overrides) -> PoolConfig:
        """Build a config from a service preset plus overrides.

        Override keys that are not config fields are dropped.
        """
        known = {f.name for f in fields(cls) if not f.name.startswith("_")}
        values = {**cls._SERVICE_PRESETS.get(service, {}), **overrides}
        return cls(**{k: v for k, v in values.items() if k in known})

    def retry_delays(self) -> list[float]:
        """Sleep before each retry: retry_delay, doubled every attempt."""
        return [self.retry_delay * 2**n for n in range(self.max_retries - 1)]


def safe_dsn(database_url: str) -> str:
    """host:port/dbname, without credentials, for logs."""
    parsed = urlparse(database_url)
    return f"{parsed.hostname or 'unknown'}:{parsed.port or 5432}{parsed.path}"


class DatabaseManager:
    """Owns the pool: connect with backoff, hand it out, close it."""

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None

    async def _on_connect(self, conn: asyncpg.Connection) -> None:
        # Server-side cap matching the client-side command timeout
        await conn.execute(f"SET statement_timeout = {int(self.config.command_timeout * 1000)}")

    async def _open_pool(self) -> asyncpg.Pool:
        cfg = self.config
        options: dict[str, Any] = {
            "min_size": cfg.min_size,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "max_inactive_connection_lifetime": cfg.max_inactive_connection_lifetime,
            "init": self._on_connect,
        }
        if cfg.ssl:
            options["ssl"] = cfg.ssl

        pool = await asyncpg.create_pool(self.database_url, **options)
        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except RETRYABLE_ERRORS:
            await pool.close()
            raise
        return pool

    async def connect(self) -> None:
        """Open the pool, retrying transient failures with backoff."""
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        target = safe_dsn(self.database_url)
        delays = self.config.retry_delays()
        attempts = len(delays) + 1
        logger.info(f"Connecting to database: {target}")

        for attempt in range(1, attempts + 1):
            try:
                self._pool = await self._open_pool()
            except RETRYABLE_ERRORS as e:
                reason = f"{type(e).__name__}: {e or repr(e)}"
                if attempt == attempts:
                    logger.error(f"Cannot connect to {target} after {attempts} attempts: {reason}")
                    raise
                delay = delays[attempt - 1]
                logger.warning(
                    f"Connect attempt {attempt}/{attempts} to {target} failed ({reason}), "
                    f"retrying in {delay:g}s"
                )
                await asyncio.sleep(delay)
            else:
                logger.info(
                    f"Database pool ready (size={self.config.min_size}-{self.config.max_size})"
                )
                return

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        logger.info("Database pool closed")

    @property
    def pool(self) -> asyncpg.Pool:
        """The open pool; raises ``RuntimeError`` before :meth:`connect`."""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool
