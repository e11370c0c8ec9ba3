"""Birthday feature constants."""

import discord

# Theme
BIRTHDAY_COLOR = discord.Color.from_str("#FFD700")
DEFAULT_ROLE_COLOR = 0xFFBF00  # amber, used when no previous role exists

# Rotating role
ROLE_NAME_TEMPLATE = "Birthday {day:02d}.{month:02d}"
ROLE_REASON = "Birthday role rotation"

# Announcement
MAX_MENTIONS = 10
MESSAGE_PREFIX = "Happy birthday to"
MESSAGE_SUFFIX = "🎉🎂"

# Per-member cooldown for write commands, in seconds
COMMAND_COOLDOWN = 60.0
