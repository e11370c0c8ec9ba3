"""Shared data models for the bot services."""

from .birthday import BirthdayRecord
from .guild_settings import GuildNotificationSettings

__all__ = [
    "BirthdayRecord",
    "GuildNotificationSettings",
]
