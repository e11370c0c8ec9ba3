"""Birthday input validation and display helpers."""

from __future__ import annotations

from datetime import date

from shared.models.birthday import BirthdayRecord

MIN_BIRTH_YEAR = 1900


class InvalidBirthdate(ValueError):
    """User supplied a date that cannot be a birthday."""


def parse_birthdate(year: int, month: int, day: int, today: date) -> date:
    """Validate user input and return the birthday as a date."""
    if year < MIN_BIRTH_YEAR:
        raise InvalidBirthdate(f"Year must be {MIN_BIRTH_YEAR} or later.")
    try:
        birthday = date(year, month, day)
    except ValueError as e:
        raise InvalidBirthdate(f"{year}-{month:02d}-{day:02d} is not a valid date.") from e
    if birthday > today:
        raise InvalidBirthdate("Birthday cannot be in the future.")
    return birthday


def format_birthday(birthday: date) -> str:
    return birthday.strftime("%d.%m.%Y")


def describe_birthday(record: BirthdayRecord, today: date, *, own: bool, name: str) -> str:
    """Reply text for ``/birthday get``."""
    subject = "Your birthday is" if own else f"{name}'s birthday is"
    text = f"{subject} on {format_birthday(record.birthday_date)}."
    if (record.month, record.day) == (today.month, today.day):
        text += f" 🎉 Happy birthday! 🎉 {'You are' if own else 'They are'} {record.age_on(today)} today!"
    return text
