import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from discord_bot.cogs.birthday.gateway import (
    BIRTHDAY_ALLOWED_MENTIONS,
    DiscordPyGateway,
    GatewayError,
    RoleInfo,
)

GUILD_ID = 1


def _response(status, reason):
    return MagicMock(status=status, reason=reason)


def _not_found():
    return discord.NotFound(_response(404, "Not Found"), "Unknown")


def _forbidden():
    return discord.Forbidden(_response(403, "Forbidden"), "Missing Permissions")


def _role(role_id=77, name="Birthday 14.03", color=0xFFBF00, position=3):
    role = MagicMock()
    role.id = role_id
    role.name = name
    role.colour.value = color
    role.position = position
    role.delete = AsyncMock()
    role.edit = AsyncMock(return_value=None)
    return role


def _text_channel(channel_id=500, can_send=True):
    channel = MagicMock(spec=discord.TextChannel)
    channel.id = channel_id
    channel.name = "birthdays"
    channel.send = AsyncMock()
    channel.permissions_for.return_value.send_messages = can_send
    return channel


@pytest.fixture
def guild():
    guild = MagicMock()
    guild.get_role.return_value = None
    guild.get_member.return_value = None
    guild.get_channel_or_thread.return_value = None
    guild.fetch_member = AsyncMock()
    guild.fetch_channel = AsyncMock()
    guild.create_role = AsyncMock()
    return guild


@pytest.fixture
def bot(guild):
    bot = MagicMock()
    bot.get_guild.side_effect = lambda gid: guild if gid == GUILD_ID else None
    bot.http.add_role = AsyncMock()
    return bot


def test_has_guild(bot):
    gateway = DiscordPyGateway(bot)
    assert asyncio.run(gateway.has_guild(GUILD_ID)) is True
    assert asyncio.run(gateway.has_guild(999)) is False


def test_unknown_guild_raises_gateway_error(bot):
    gateway = DiscordPyGateway(bot)
    with pytest.raises(GatewayError):
        asyncio.run(gateway.get_role(999, 1))


def test_get_role_returns_none_for_unknown_role(bot, guild):
    gateway = DiscordPyGateway(bot)
    assert asyncio.run(gateway.get_role(GUILD_ID, 5)) is None


def test_get_role_snapshots_role(bot, guild):
    guild.get_role.return_value = _role(role_id=5, color=0x00FF00, position=6)
    gateway = DiscordPyGateway(bot)
    assert asyncio.run(gateway.get_role(GUILD_ID, 5)) == RoleInfo(
        id=5, name="Birthday 14.03", color=0x00FF00, position=6
    )


def test_top_assignable_position_is_below_bot_role(bot, guild):
    gateway = DiscordPyGateway(bot)
    guild.me.top_role.position = 8
    assert asyncio.run(gateway.top_assignable_position(GUILD_ID)) == 7
    guild.me.top_role.position = 1
    assert asyncio.run(gateway.top_assignable_position(GUILD_ID)) == 1


def test_delete_role_wraps_http_errors(bot, guild):
    role = _role()
    role.delete.side_effect = _forbidden()
    guild.get_role.return_value = role
    gateway = DiscordPyGateway(bot)

    with pytest.raises(GatewayError):
        asyncio.run(gateway.delete_role(GUILD_ID, role.id, reason="rotation"))


def test_delete_role_ignores_already_deleted_role(bot, guild):
    role = _role()
    role.delete.side_effect = _not_found()
    guild.get_role.return_value = role
    gateway = DiscordPyGateway(bot)

    asyncio.run(gateway.delete_role(GUILD_ID, role.id, reason="rotation"))
    role.delete.assert_awaited_once_with(reason="rotation")


def test_create_role_moves_role_to_requested_position(bot, guild):
    role = _role(position=1)
    guild.create_role.return_value = role
    gateway = DiscordPyGateway(bot)

    info = asyncio.run(
        gateway.create_role(
            GUILD_ID, name="Birthday 14.03", color=0xFFBF00, hoist=True, position=5, reason="r"
        )
    )

    kwargs = guild.create_role.await_args.kwargs
    assert kwargs["hoist"] is True
    assert kwargs["colour"] == discord.Colour(0xFFBF00)
    role.edit.assert_awaited_once_with(position=5, reason="r")
    assert info.id == role.id


def test_create_role_keeps_role_when_move_fails(bot, guild, caplog):
    role = _role(position=1)
    role.edit.side_effect = discord.HTTPException(_response(400, "Bad Request"), "nope")
    guild.create_role.return_value = role
    gateway = DiscordPyGateway(bot)

    with caplog.at_level(logging.WARNING):
        info = asyncio.run(
            gateway.create_role(
                GUILD_ID, name="Birthday 14.03", color=0, hoist=True, position=5, reason="r"
            )
        )

    assert info.position == 1
    assert "could not move it" in caplog.text


def test_create_role_wraps_http_errors(bot, guild):
    guild.create_role.side_effect = _forbidden()
    gateway = DiscordPyGateway(bot)

    with pytest.raises(GatewayError):
        asyncio.run(
            gateway.create_role(
                GUILD_ID, name="Birthday 14.03", color=0, hoist=True, position=5, reason="r"
            )
        )


def test_fetch_member_returns_none_when_member_left(bot, guild):
    guild.fetch_member.side_effect = _not_found()
    gateway = DiscordPyGateway(bot)
    assert asyncio.run(gateway.fetch_member(GUILD_ID, 101)) is None


def test_fetch_member_wraps_other_http_errors(bot, guild):
    guild.fetch_member.side_effect = _forbidden()
    gateway = DiscordPyGateway(bot)
    with pytest.raises(GatewayError):
        asyncio.run(gateway.fetch_member(GUILD_ID, 101))


def test_add_role_uses_cached_member(bot, guild):
    member = MagicMock()
    member.add_roles = AsyncMock()
    guild.get_member.return_value = member
    gateway = DiscordPyGateway(bot)

    asyncio.run(gateway.add_role(GUILD_ID, 101, 77, reason="r"))

    (role_obj,), kwargs = member.add_roles.await_args
    assert role_obj.id == 77
    assert kwargs == {"reason": "r"}
    bot.http.add_role.assert_not_awaited()


def test_add_role_wraps_http_errors_for_uncached_member(bot, guild):
    bot.http.add_role.side_effect = _forbidden()
    gateway = DiscordPyGateway(bot)

    with pytest.raises(GatewayError):
        asyncio.run(gateway.add_role(GUILD_ID, 101, 77, reason="r"))
    bot.http.add_role.assert_awaited_once_with(GUILD_ID, 101, 77, reason="r")


def test_fetch_channel_returns_none_when_missing(bot, guild):
    guild.fetch_channel.side_effect = _not_found()
    gateway = DiscordPyGateway(bot)
    assert asyncio.run(gateway.fetch_channel(GUILD_ID, 500)) is None


def test_fetch_channel_reports_missing_send_permission(bot, guild):
    guild.get_channel_or_thread.return_value = _text_channel(can_send=False)
    gateway = DiscordPyGateway(bot)

    info = asyncio.run(gateway.fetch_channel(GUILD_ID, 500))

    assert info.text_based is True
    assert info.can_send is False


def test_fetch_channel_flags_non_text_channel(bot, guild):
    category = MagicMock(spec=discord.CategoryChannel)
    category.id = 500
    category.name = "Info"
    guild.get_channel_or_thread.return_value = category
    gateway = DiscordPyGateway(bot)

    info = asyncio.run(gateway.fetch_channel(GUILD_ID, 500))

    assert info.text_based is False
    assert info.can_send is False


def test_send_message_limits_mentions_to_users(bot, guild):
    channel = _text_channel()
    guild.get_channel_or_thread.return_value = channel
    gateway = DiscordPyGateway(bot)

    asyncio.run(gateway.send_message(GUILD_ID, 500, "Happy birthday to <@101> 🎉🎂"))

    channel.send.assert_awaited_once_with(
        "Happy birthday to <@101> 🎉🎂", allowed_mentions=BIRTHDAY_ALLOWED_MENTIONS
    )


def test_send_message_wraps_http_errors(bot, guild):
    channel = _text_channel()
    channel.send.side_effect = _forbidden()
    guild.get_channel_or_thread.return_value = channel
    gateway = DiscordPyGateway(bot)

    with pytest.raises(GatewayError):
        asyncio.run(gateway.send_message(GUILD_ID, 500, "hi"))
