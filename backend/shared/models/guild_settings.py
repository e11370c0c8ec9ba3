"""Data model for the guild_settings table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class GuildNotificationSettings:
    """Guild-level birthday notification settings.

    ``birthday_role_id`` always points at the currently active rotating
    role; it is rewritten every time the role is rotated.
    """

    guild_id: int
    birthday_channel_id: int | None = None
    birthday_role_id: int | None = None
    language_code: str = "en"
    created_at: datetime | None = None
    updated_at: datetime | None = None
