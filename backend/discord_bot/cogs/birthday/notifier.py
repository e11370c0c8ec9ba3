"""Per-guild birthday announcement: role rotation and mention message."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

import asyncpg

from shared.models.birthday import BirthdayRecord
from shared.models.guild_settings import GuildNotificationSettings
from shared.repositories.guild_settings import GuildSettingsRepository

from .constants import (
    DEFAULT_ROLE_COLOR,
    MAX_MENTIONS,
    MESSAGE_PREFIX,
    MESSAGE_SUFFIX,
    ROLE_NAME_TEMPLATE,
    ROLE_REASON,
)
from .gateway import DiscordGateway, GatewayError, RoleInfo, is_text_postable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationResult:
    role_rotated: bool = False
    mentioned: bool = False

    @property
    def handled(self) -> bool:
        """Something visible happened, so the birthdays count as announced."""
        return self.role_rotated or self.mentioned


def birthday_role_name(today: date) -> str:
    return ROLE_NAME_TEMPLATE.format(day=today.day, month=today.month)


def format_birthday_message(user_ids: Sequence[int]) -> str:
    """Build the announcement, mentioning at most ``MAX_MENTIONS`` users.

    ``user_ids`` must already be in announcement order.
    """
    mentions = ", ".join(f"<@{uid}>" for uid in user_ids[:MAX_MENTIONS])
    others = len(user_ids) - MAX_MENTIONS
    if others > 0:
        return f"{MESSAGE_PREFIX} {mentions} and {others} others! {MESSAGE_SUFFIX}"
    return f"{MESSAGE_PREFIX} {mentions} {MESSAGE_SUFFIX}"


class BirthdayNotifier:
    """Announces one guild's due birthdays.

    Never marks birthdays as notified; the scheduler commits after a
    handled result. Failures of individual steps are logged and reflected
    in the returned :class:`NotificationResult` rather than raised.
    """

    def __init__(self, gateway: DiscordGateway, settings_repo: GuildSettingsRepository) -> None:
        self.gateway = gateway
        self.settings_repo = settings_repo

    async def notify_guild(
        self,
        guild_id: int,
        records: Sequence[BirthdayRecord],
        settings: GuildNotificationSettings,
        today: date,
    ) -> NotificationResult:
        if not records:
            return NotificationResult()

        if not await self.gateway.has_guild(guild_id):
            logger.warning(f"Guild {guild_id} is not available, skipping birthday announcement")
            return NotificationResult()

        role_rotated = await self._rotate_role(guild_id, records, settings, today)
        mentioned = await self._announce(guild_id, records, settings)
        return NotificationResult(role_rotated=role_rotated, mentioned=mentioned)

    # ==================== Role Rotation ====================

    async def _retire_previous_role(
        self, guild_id: int, settings: GuildNotificationSettings
    ) -> RoleInfo | None:
        """Delete the stored role if it still exists; return its snapshot."""
        if not settings.birthday_role_id:
            logger.info(f"Guild {guild_id} has no previous birthday role")
            return None

        try:
            previous = await self.gateway.get_role(guild_id, settings.birthday_role_id)
        except GatewayError as e:
            logger.warning(f"Cannot look up birthday role in guild {guild_id}: {e}")
            return None
        if previous is None:
            logger.info(
                f"Stored birthday role {settings.birthday_role_id} no longer exists "
                f"in guild {guild_id}"
            )
            return None

        try:
            await self.gateway.delete_role(guild_id, previous.id, reason=ROLE_REASON)
        except GatewayError as e:
            # Rotation continues with a new role even if the old one stays behind
            logger.warning(f"Cannot delete old birthday role {previous.id} in guild {guild_id}: {e}")
        return previous

    async def _rotate_role(
        self,
        guild_id: int,
        records: Sequence[BirthdayRecord],
        settings: GuildNotificationSettings,
        today: date,
    ) -> bool:
        previous = await self._retire_previous_role(guild_id, settings)
        name = birthday_role_name(today)

        try:
            if previous is not None:
                color, position = previous.color, previous.position
            else:
                color = DEFAULT_ROLE_COLOR
                position = await self.gateway.top_assignable_position(guild_id)
            role = await self.gateway.create_role(
                guild_id,
                name=name,
                color=color,
                hoist=True,
                position=position,
                reason=ROLE_REASON,
            )
        except GatewayError as e:
            logger.error(f"Cannot create birthday role '{name}' in guild {guild_id}: {e}")
            return False

        try:
            await self.settings_repo.set_birthday_role(guild_id, role.id)
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
            logger.error(
                f"Birthday role '{role.name}' ({role.id}) was created in guild {guild_id} "
                f"but could not be saved to settings; delete it manually: {e}"
            )
            return False

        for record in records:
            try:
                member = await self.gateway.fetch_member(guild_id, record.user_id)
                if member is None:
                    logger.warning(f"Member {record.user_id} is no longer in guild {guild_id}")
                    continue
                await self.gateway.add_role(guild_id, member.id, role.id, reason=ROLE_REASON)
            except GatewayError as e:
                logger.warning(f"Cannot give birthday role to {record.user_id} in guild {guild_id}: {e}")

        logger.info(f"Rotated birthday role in guild {guild_id} to '{role.name}' ({role.id})")
        return True

    # ==================== Announcement ====================

    async def _announce(
        self,
        guild_id: int,
        records: Sequence[BirthdayRecord],
        settings: GuildNotificationSettings,
    ) -> bool:
        channel_id = settings.birthday_channel_id
        if not channel_id:
            logger.warning(f"Guild {guild_id} has no birthday channel configured")
            return False

        try:
            channel = await self.gateway.fetch_channel(guild_id, channel_id)
        except GatewayError as e:
            logger.warning(f"Cannot fetch birthday channel {channel_id} in guild {guild_id}: {e}")
            return False
        if not is_text_postable(channel):
            logger.warning(
                f"Birthday channel {channel_id} in guild {guild_id} is missing "
                f"or not a text channel the bot can post in"
            )
            return False

        content = format_birthday_message([r.user_id for r in records])
        try:
            await self.gateway.send_message(guild_id, channel_id, content)
        except GatewayError as e:
            logger.error(f"Cannot send birthday message in guild {guild_id}: {e}")
            return False

        logger.info(f"Announced {len(records)} birthday(s) in guild {guild_id}")
        return True
