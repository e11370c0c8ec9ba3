"""Shared repository layer for the bot services."""

from .birthday import BirthdayRepository
from .guild_settings import GuildSettingsRepository

__all__ = [
    "BirthdayRepository",
    "GuildSettingsRepository",
]
