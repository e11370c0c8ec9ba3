"""Birthday feature cog."""

import logging
import math
from datetime import date, datetime

import discord
from discord import app_commands
from discord.ext import commands, tasks

from discord_bot.config import BotSettings, get_settings
from shared.repositories.birthday import BirthdayRepository
from shared.repositories.guild_settings import GuildSettingsRepository

from .constants import BIRTHDAY_COLOR, COMMAND_COOLDOWN
from .gateway import DiscordPyGateway
from .notifier import BirthdayNotifier
from .scheduler import BirthdayScheduler, TickReport
from .validators import InvalidBirthdate, describe_birthday, format_birthday, parse_birthdate

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "`/birthday set` saves your birthday in this server.\n"
    "`/birthday get` shows your birthday or another member's.\n"
    "`/birthday list` lists this server's birthdays.\n"
    "`/birthday setchannel` and `/birthday setrole` configure announcements (Manage Server)."
)


def per_member(interaction: discord.Interaction) -> tuple[int | None, int]:
    """Cooldown bucket: one per member per guild."""
    return (interaction.guild_id, interaction.user.id)


def command_error_message(error: app_commands.AppCommandError) -> str:
    if isinstance(error, app_commands.CommandOnCooldown):
        return f"You are on cooldown for this command. Try again in {math.ceil(error.retry_after)}s."
    if isinstance(error, app_commands.MissingPermissions):
        return "You need the Manage Server permission to do that."
    return "There was an error executing that command."


class BirthdayCog(commands.Cog):
    """Birthday commands and the periodic announcement tick"""

    birthday_group = app_commands.Group(
        name="birthday", description="Birthday commands", guild_only=True
    )

    def __init__(self, bot: commands.Bot, settings: BotSettings | None = None):
        self.bot = bot
        self.config = settings or get_settings()
        self.birthdays: BirthdayRepository
        self.guild_settings: GuildSettingsRepository
        self.scheduler: BirthdayScheduler
        self._ready = False

    async def cog_load(self) -> None:
        pool = self.bot.db_pool  # type: ignore[attr-defined]
        self.birthdays = BirthdayRepository(pool)
        self.guild_settings = GuildSettingsRepository(pool)
        notifier = BirthdayNotifier(DiscordPyGateway(self.bot), self.guild_settings)
        self.scheduler = BirthdayScheduler(
            self.birthdays, self.guild_settings, notifier, clock=self._now
        )
        self._ready = True

        self.birthday_tick_task.change_interval(hours=self.config.birthday_interval_hours)
        self.birthday_tick_task.start()
        logger.info(
            f"Birthday cog loaded (every {self.config.birthday_interval_hours}h, "
            f"tz={self.config.birthday_timezone})"
        )

    async def cog_unload(self) -> None:
        self.birthday_tick_task.cancel()

    def _now(self) -> datetime:
        return datetime.now(self.config.tz)

    def _today(self) -> date:
        return self._now().date()

    # ==================== Background Tasks ====================

    @tasks.loop(hours=3)
    async def birthday_tick_task(self) -> None:
        if not self._ready:
            return
        report: TickReport = await self.scheduler.run_birthday_tick()
        if report.aborted:
            logger.error("Birthday tick aborted; birthdays will be retried next tick")

    @birthday_tick_task.before_loop
    async def _wait_ready(self) -> None:
        await self.bot.wait_until_ready()

    # ==================== Commands ====================

    async def _ready_guild(self, interaction: discord.Interaction) -> discord.Guild | None:
        """The interaction's guild, or None after telling the user why not."""
        if self._ready and interaction.guild is not None:
            return interaction.guild
        await interaction.response.send_message(
            "The birthday feature is not available here yet.", ephemeral=True
        )
        return None

    @birthday_group.command(name="set", description="Set your birthday")
    @app_commands.describe(day="Day of month", month="Month (1-12)", year="Year of birth")
    @app_commands.checks.cooldown(1, COMMAND_COOLDOWN, key=per_member)
    async def birthday_set(
        self,
        interaction: discord.Interaction,
        day: app_commands.Range[int, 1, 31],
        month: app_commands.Range[int, 1, 12],
        year: app_commands.Range[int, 1900, 2100],
    ) -> None:
        guild = await self._ready_guild(interaction)
        if guild is None:
            return

        try:
            birthday = parse_birthdate(year, month, day, self._today())
        except InvalidBirthdate as e:
            await interaction.response.send_message(str(e), ephemeral=True)
            return

        await self.birthdays.upsert_birthday(guild.id, interaction.user.id, birthday)
        logger.info(
            f"Birthday set | guild={guild.id} user={interaction.user.id} date={birthday}"
        )
        await interaction.response.send_message(
            f"Birthday set successfully! {format_birthday(birthday)}", ephemeral=True
        )

    @birthday_group.command(name="get", description="Show a birthday")
    @app_commands.describe(user="Member to look up (defaults to you)")
    async def birthday_get(
        self, interaction: discord.Interaction, user: discord.Member | None = None
    ) -> None:
        guild = await self._ready_guild(interaction)
        if guild is None:
            return

        target = user or interaction.user
        record = await self.birthdays.get_birthday(guild.id, target.id)
        if record is None:
            await interaction.response.send_message("No birthday set.", ephemeral=True)
            return

        own = target.id == interaction.user.id
        await interaction.response.send_message(
            describe_birthday(record, self._today(), own=own, name=target.display_name),
            allowed_mentions=discord.AllowedMentions.none(),
        )

    @birthday_group.command(name="list", description="List this server's birthdays")
    async def birthday_list(self, interaction: discord.Interaction) -> None:
        guild = await self._ready_guild(interaction)
        if guild is None:
            return

        records = await self.birthdays.list_guild_birthdays(guild.id)
        if not records:
            await interaction.response.send_message("No birthdays set in this server.", ephemeral=True)
            return

        lines = [f"`{r.day:02d}.{r.month:02d}` <@{r.user_id}>" for r in records]
        embed = discord.Embed(
            title="🎉 Birthdays 🎉",
            description="\n".join(lines)[:4000],
            color=BIRTHDAY_COLOR,
        )
        await interaction.response.send_message(
            embed=embed, allowed_mentions=discord.AllowedMentions.none()
        )

    @birthday_group.command(name="setchannel", description="Set the birthday announcement channel")
    @app_commands.describe(channel="Text channel for birthday announcements")
    @app_commands.checks.has_permissions(manage_guild=True)
    @app_commands.checks.cooldown(1, COMMAND_COOLDOWN, key=per_member)
    async def birthday_setchannel(
        self, interaction: discord.Interaction, channel: discord.TextChannel
    ) -> None:
        guild = await self._ready_guild(interaction)
        if guild is None:
            return

        await self.guild_settings.set_birthday_channel(guild.id, channel.id)
        logger.info(f"Birthday channel set | guild={guild.id} channel={channel.id}")
        await interaction.response.send_message(f"Birthday channel set to {channel.mention}")

    @birthday_group.command(name="setrole", description="Set the birthday role to rotate")
    @app_commands.describe(role="Role replaced by the dated birthday role on the next birthday")
    @app_commands.checks.has_permissions(manage_guild=True)
    @app_commands.checks.cooldown(1, COMMAND_COOLDOWN, key=per_member)
    async def birthday_setrole(self, interaction: discord.Interaction, role: discord.Role) -> None:
        guild = await self._ready_guild(interaction)
        if guild is None:
            return

        await self.guild_settings.set_birthday_role(guild.id, role.id)
        logger.info(f"Birthday role set | guild={guild.id} role={role.id}")
        await interaction.response.send_message(
            f"Birthday role set to {role.mention}",
            allowed_mentions=discord.AllowedMentions.none(),
        )

    @birthday_group.command(name="help", description="How to use birthday commands")
    async def birthday_help(self, interaction: discord.Interaction) -> None:
        await interaction.response.send_message(HELP_TEXT, ephemeral=True)

    # ==================== Events ====================

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        if self._ready:
            await self.birthdays.delete_birthday(member.guild.id, member.id)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        if self._ready:
            removed = await self.birthdays.delete_guild_birthdays(guild.id)
            await self.guild_settings.delete_settings(guild.id)
            logger.info(f"Left guild {guild.id}, removed {removed} birthday(s) and settings")

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if not isinstance(error, (app_commands.CommandOnCooldown, app_commands.MissingPermissions)):
            logger.error(f"Birthday command error: {error}", exc_info=error)
        message = command_error_message(error)

        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)
