"""
Spolka Discord Bot
discord.py 2.x with slash commands and a PostgreSQL backend
"""

import asyncio
import logging
import os

import asyncpg
import discord
from discord.ext import commands
from dotenv import load_dotenv
from pydantic import ValidationError

from shared.database import DatabaseManager, PoolConfig
from shared.migrations import MigrationRunner

from .config import ENV_FILE, BotSettings, get_settings
from .core import setup_logging

logger = logging.getLogger("discord_bot")


class SpolkaBot(commands.Bot):
    """Spolka Discord bot client"""

    def __init__(self, settings: BotSettings):
        intents = discord.Intents.default()
        intents.members = True  # birthday role assignment fetches members

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
            allowed_mentions=discord.AllowedMentions(everyone=False, roles=False),
        )

        self.settings = settings
        self.db = DatabaseManager(
            settings.database_url,
            PoolConfig.for_service("discord", ssl=settings.database_ssl),
        )
        self.initial_extensions = [
            "discord_bot.cogs.birthday",
        ]

    @property
    def db_pool(self) -> asyncpg.Pool:
        return self.db.pool

    async def setup_hook(self):
        """Connect the database, migrate, load cogs and sync slash commands"""
        await self.db.connect()
        await MigrationRunner(self.db.pool).run_pending()

        loaded = []
        failed = []
        for extension in self.initial_extensions:
            try:
                await self.load_extension(extension)
                loaded.append(extension.split(".")[-1])
            except commands.ExtensionError as e:
                logger.exception(f"Failed to load {extension}")
                failed.append(f"{extension.split('.')[-1]} ({e})")

        if loaded:
            logger.info(f"Loaded cogs: {', '.join(loaded)}")
        if failed:
            logger.error(f"Failed cogs: {', '.join(failed)}")

        guild_id = self.settings.discord_guild_id
        if guild_id:
            # Dev guild sync is instant
            guild = discord.Object(id=guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info(f"Synced slash commands to guild {guild_id}")
        else:
            await self.tree.sync()
            logger.info("Synced slash commands globally")

    async def on_ready(self):
        logger.info(f"Bot ready: {self.user} (ID: {self.user.id if self.user else '?'})")
        logger.info(f"Connected to {len(self.guilds)} guild(s) | discord.py {discord.__version__}")

    async def close(self):
        await super().close()
        await self.db.disconnect()


async def main() -> int:
    """Bot entry point"""
    load_dotenv(dotenv_path=ENV_FILE, encoding="utf-8")
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    try:
        settings = get_settings()
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    setup_logging(settings.log_level)

    async with SpolkaBot(settings) as bot:
        try:
            await bot.start(settings.discord_bot_token)
        except asyncio.CancelledError:
            if not bot.is_closed():
                await bot.close()
    return 0


def run() -> None:
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
