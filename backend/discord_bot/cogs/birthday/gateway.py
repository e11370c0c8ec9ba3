"""Discord operations used by the birthday pipeline.

The notifier talks to Discord only through :class:`DiscordGateway`, which
returns plain snapshots (or ``None`` for things that do not exist) instead of
live discord.py objects. :class:`DiscordPyGateway` is the production
implementation; tests use an in-memory one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import discord
from discord.ext import commands

logger = logging.getLogger(__name__)

BIRTHDAY_ALLOWED_MENTIONS = discord.AllowedMentions(users=True, roles=False, everyone=False)


class GatewayError(Exception):
    """A Discord call failed (permissions, rate limit, server error)."""


@dataclass(frozen=True)
class RoleInfo:
    id: int
    name: str
    color: int
    position: int


@dataclass(frozen=True)
class MemberInfo:
    id: int
    display_name: str


@dataclass(frozen=True)
class ChannelInfo:
    id: int
    name: str
    text_based: bool
    can_send: bool


def is_text_postable(channel: ChannelInfo | None) -> bool:
    """True when a message can be posted to ``channel``."""
    return channel is not None and channel.text_based and channel.can_send


class DiscordGateway(Protocol):
    async def has_guild(self, guild_id: int) -> bool: ...

    async def get_role(self, guild_id: int, role_id: int) -> RoleInfo | None: ...

    async def top_assignable_position(self, guild_id: int) -> int: ...

    async def delete_role(self, guild_id: int, role_id: int, reason: str) -> None: ...

    async def create_role(
        self,
        guild_id: int,
        *,
        name: str,
        color: int,
        hoist: bool,
        position: int,
        reason: str,
    ) -> RoleInfo: ...

    async def fetch_member(self, guild_id: int, user_id: int) -> MemberInfo | None: ...

    async def add_role(self, guild_id: int, user_id: int, role_id: int, reason: str) -> None: ...

    async def fetch_channel(self, guild_id: int, channel_id: int) -> ChannelInfo | None: ...

    async def send_message(self, guild_id: int, channel_id: int, content: str) -> None: ...


def _role_info(role: discord.Role) -> RoleInfo:
    return RoleInfo(id=role.id, name=role.name, color=role.colour.value, position=role.position)


class DiscordPyGateway:
    """:class:`DiscordGateway` backed by a running discord.py bot."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    def _guild(self, guild_id: int) -> discord.Guild:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise GatewayError(f"Guild {guild_id} is not available")
        return guild

    async def has_guild(self, guild_id: int) -> bool:
        return self.bot.get_guild(guild_id) is not None

    async def get_role(self, guild_id: int, role_id: int) -> RoleInfo | None:
        role = self._guild(guild_id).get_role(role_id)
        return _role_info(role) if role else None

    async def top_assignable_position(self, guild_id: int) -> int:
        guild = self._guild(guild_id)
        return max(guild.me.top_role.position - 1, 1)

    async def delete_role(self, guild_id: int, role_id: int, reason: str) -> None:
        role = self._guild(guild_id).get_role(role_id)
        if role is None:
            return
        try:
            await role.delete(reason=reason)
        except discord.NotFound:
            return
        except discord.HTTPException as e:
            raise GatewayError(f"Cannot delete role {role_id}: {e}") from e

    async def create_role(
        self,
        guild_id: int,
        *,
        name: str,
        color: int,
        hoist: bool,
        position: int,
        reason: str,
    ) -> RoleInfo:
        guild = self._guild(guild_id)
        try:
            role = await guild.create_role(
                name=name,
                colour=discord.Colour(color),
                hoist=hoist,
                reason=reason,
            )
        except discord.HTTPException as e:
            raise GatewayError(f"Cannot create role '{name}': {e}") from e

        # create_role has no position argument; move it afterwards
        if position > 0 and role.position != position:
            try:
                role = await role.edit(position=position, reason=reason) or role
            except (discord.HTTPException, ValueError) as e:
                logger.warning(f"Created role {role.id} but could not move it to {position}: {e}")
        return _role_info(role)

    async def fetch_member(self, guild_id: int, user_id: int) -> MemberInfo | None:
        guild = self._guild(guild_id)
        member = guild.get_member(user_id)
        if member is None:
            try:
                member = await guild.fetch_member(user_id)
            except discord.NotFound:
                return None
            except discord.HTTPException as e:
                raise GatewayError(f"Cannot fetch member {user_id}: {e}") from e
        return MemberInfo(id=member.id, display_name=member.display_name)

    async def add_role(self, guild_id: int, user_id: int, role_id: int, reason: str) -> None:
        member = self._guild(guild_id).get_member(user_id)
        try:
            if member is not None:
                await member.add_roles(discord.Object(id=role_id), reason=reason)
            else:
                await self.bot.http.add_role(guild_id, user_id, role_id, reason=reason)
        except discord.HTTPException as e:
            raise GatewayError(f"Cannot add role {role_id} to {user_id}: {e}") from e

    async def _resolve_channel(self, guild: discord.Guild, channel_id: int):
        channel = guild.get_channel_or_thread(channel_id)
        if channel is not None:
            return channel
        try:
            return await guild.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden):
            return None
        except discord.HTTPException as e:
            raise GatewayError(f"Cannot fetch channel {channel_id}: {e}") from e

    async def fetch_channel(self, guild_id: int, channel_id: int) -> ChannelInfo | None:
        guild = self._guild(guild_id)
        channel = await self._resolve_channel(guild, channel_id)
        if channel is None:
            return None
        text_based = isinstance(channel, discord.abc.Messageable)
        can_send = text_based and channel.permissions_for(guild.me).send_messages
        return ChannelInfo(
            id=channel.id,
            name=getattr(channel, "name", str(channel.id)),
            text_based=text_based,
            can_send=bool(can_send),
        )

    async def send_message(self, guild_id: int, channel_id: int, content: str) -> None:
        guild = self._guild(guild_id)
        channel = await self._resolve_channel(guild, channel_id)
        if not isinstance(channel, discord.abc.Messageable):
            raise GatewayError(f"Channel {channel_id} cannot receive messages")
        try:
            await channel.send(content, allowed_mentions=BIRTHDAY_ALLOWED_MENTIONS)
        except discord.HTTPException as e:
            raise GatewayError(f"Cannot send to channel {channel_id}: {e}") from e
