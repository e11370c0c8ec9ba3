"""Data models for the birthday feature tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime


@dataclass
class BirthdayRecord:
    """A member's birthday in one guild."""

    guild_id: int
    user_id: int
    birthday_date: date
    last_year_notified: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def month(self) -> int:
        return self.birthday_date.month

    @property
    def day(self) -> int:
        return self.birthday_date.day

    def is_due(self, today: date) -> bool:
        """Birthday falls on ``today`` and was not announced this year."""
        return (
            self.birthday_date.month == today.month
            and self.birthday_date.day == today.day
            and self.last_year_notified != today.year
        )

    def age_on(self, today: date) -> int:
        years = today.year - self.birthday_date.year
        if (today.month, today.day) < (self.birthday_date.month, self.birthday_date.day):
            years -= 1
        return years
