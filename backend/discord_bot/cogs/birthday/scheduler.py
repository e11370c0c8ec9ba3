"""Birthday tick: find today's birthdays, announce per guild, commit."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from shared.models.birthday import BirthdayRecord
from shared.repositories.birthday import BirthdayRepository
from shared.repositories.guild_settings import GuildSettingsRepository

from .notifier import BirthdayNotifier

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_clock() -> datetime:
    return datetime.now(timezone.utc)


class GuildTickState(Enum):
    PENDING = "pending"
    DIRECTORY_READ = "directory_read"
    ENGINE_INVOKED = "engine_invoked"
    COMMITTED = "committed"
    FAILED_LOGGED = "failed_logged"


@dataclass
class TickReport:
    guilds_processed: int = 0
    guilds_failed: int = 0
    guilds_skipped: int = 0
    mentions_sent: int = 0
    skipped: bool = False
    aborted: bool = False


class BirthdayScheduler:
    """Runs birthday ticks.

    A tick reads every due birthday once, announces guild by guild and
    marks a guild's birthdays as notified only after its announcement was
    handled. Anything not committed stays due and is retried by the next
    tick, so a crash mid-tick re-announces rather than skips.

    Ticks never overlap: a tick started while another is running returns
    a report with ``skipped=True``.
    """

    def __init__(
        self,
        birthdays: BirthdayRepository,
        settings: GuildSettingsRepository,
        notifier: BirthdayNotifier,
        clock: Clock = utc_clock,
    ) -> None:
        self.birthdays = birthdays
        self.settings = settings
        self.notifier = notifier
        self.clock = clock
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run_birthday_tick(self, now: datetime | None = None) -> TickReport:
        if self._lock.locked():
            logger.info("Birthday tick already running, skipping this one")
            return TickReport(skipped=True)

        async with self._lock:
            return await self._run(now or self.clock())

    async def _run(self, now: datetime) -> TickReport:
        # One snapshot for the whole tick, even if it runs past midnight
        today = now.date()
        report = TickReport()

        try:
            due = await self.birthdays.find_due_birthdays(today)
        except Exception:
            logger.exception(f"Cannot read due birthdays for {today}, aborting tick")
            report.aborted = True
            return report

        if not due:
            logger.debug(f"No birthdays due on {today}")
            return report

        logger.info(
            f"Birthday tick for {today}: {sum(len(r) for r in due.values())} birthday(s) "
            f"in {len(due)} guild(s)"
        )
        for guild_id, records in due.items():
            state = await self._process_guild(guild_id, records, now, report)
            logger.debug(f"Guild {guild_id} finished tick in state {state.value}")

        logger.info(
            f"Birthday tick done: processed={report.guilds_processed} "
            f"failed={report.guilds_failed} skipped={report.guilds_skipped} "
            f"mentions={report.mentions_sent}"
        )
        return report

    async def _process_guild(
        self,
        guild_id: int,
        records: list[BirthdayRecord],
        now: datetime,
        report: TickReport,
    ) -> GuildTickState:
        today = now.date()
        state = GuildTickState.DIRECTORY_READ
        try:
            settings = await self.settings.get_settings(guild_id)
            if settings is None:
                logger.warning(f"Guild {guild_id} has birthdays but no settings, skipping")
                report.guilds_skipped += 1
                return GuildTickState.FAILED_LOGGED

            state = GuildTickState.ENGINE_INVOKED
            result = await self.notifier.notify_guild(guild_id, records, settings, today)
            if result.mentioned:
                report.mentions_sent += 1
            if not result.handled:
                logger.warning(f"Birthdays in guild {guild_id} were not announced, will retry")
                report.guilds_failed += 1
                return GuildTickState.FAILED_LOGGED

            user_ids = [r.user_id for r in records]
            updated = await self.birthdays.commit_notified(guild_id, user_ids, today.year)
            if updated != len(user_ids):
                logger.warning(
                    f"Marked {updated}/{len(user_ids)} birthday(s) as notified in guild {guild_id}"
                )
            report.guilds_processed += 1
            return GuildTickState.COMMITTED
        except Exception:
            logger.exception(f"Birthday processing failed for guild {guild_id} (state={state.value})")
            report.guilds_failed += 1
            return GuildTickState.FAILED_LOGGED
