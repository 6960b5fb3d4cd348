"""APScheduler-driven worker.

Runs the bot cycle, the position check, housekeeping and the daily report as
interval/cron jobs, and keeps the advisory heartbeat row current.
"""

import logging
import os
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from spreadlab.engine.bot import SpreadBot
from spreadlab.errors import PersistenceError
from spreadlab.utils.timeutils import ms_to_datetime

logger = logging.getLogger(__name__)


class BotWorker:
    def __init__(
        self,
        bot: SpreadBot,
        cycle_interval: int = 60,
        check_interval: int = 30,
        cleanup_interval: int = 3600,
        daily_report_hour: int = 20,
        has_credential=None,
    ):
        self.bot = bot
        self.repository = bot.repository
        self.cycle_interval = cycle_interval
        self.check_interval = check_interval
        self.cleanup_interval = cleanup_interval
        self.daily_report_hour = daily_report_hour
        self.has_credential = has_credential
        self.scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def _add_jobs(self):
        common = {"replace_existing": True, "max_instances": 1, "coalesce": True}
        self.scheduler.add_job(
            self.run_cycle_job,
            trigger=IntervalTrigger(seconds=self.cycle_interval),
            id="bot_cycle",
            name="Bot cycle",
            misfire_grace_time=self.cycle_interval,
            next_run_time=datetime.now(timezone.utc),
            **common,
        )
        self.scheduler.add_job(
            self.check_positions_job,
            trigger=IntervalTrigger(seconds=self.check_interval),
            id="position_check",
            name="Position check",
            misfire_grace_time=self.check_interval,
            **common,
        )
        self.scheduler.add_job(
            self.cleanup_job,
            trigger=IntervalTrigger(seconds=self.cleanup_interval),
            id="cleanup",
            name="Housekeeping",
            misfire_grace_time=300,
            **common,
        )
        self.scheduler.add_job(
            self.daily_report_job,
            trigger=CronTrigger(hour=self.daily_report_hour, minute=0),
            id="daily_report",
            name="Daily report",
            misfire_grace_time=3600,
            **common,
        )

    def start(self):
        """Register jobs and start the scheduler. The first cycle runs right away."""
        config = self.repository.get_config()
        if config.mode == "live" and self.has_credential is not None and not self.has_credential():
            self.bot.record_log("error", "Cannot run in LIVE mode: no active credential, falling back to PAPER")
            self.repository.update_config({"mode": "paper"})

        self._add_jobs()
        self.scheduler.start()
        self.repository.set_worker_started(self.bot.clock(), pid=os.getpid())
        logger.info(f"Worker started with {len(self.scheduler.get_jobs())} jobs")

    async def stop(self):
        """Stop scheduling, then wait for an in-flight cycle to finish."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.bot.drain()
        try:
            self.repository.set_worker_stopped(self.bot.clock())
        except PersistenceError as e:
            logger.error(f"Could not record worker stop: {e}")
        logger.info("Worker stopped")

    # -----------------------------------------------------------------------
    # Jobs
    # -----------------------------------------------------------------------

    async def run_cycle_job(self):
        result = await self.bot.run_cycle()
        if result.executed:
            for action in result.actions:
                if action.type == "OPEN":
                    logger.info(f"OPENED {action.pair_id} ({action.signal}) {action.size_usd:.0f} USD")
                else:
                    logger.info(f"CLOSED {action.pair_id} {action.reason} ({action.pnl:+.2f} USD)")
            if not result.actions:
                logger.info(f"Cycle completed, no actions ({result.reason or 'ok'})")
        else:
            logger.info(f"Cycle skipped: {result.reason or result.error}")

        try:
            self.repository.update_heartbeat(self.bot.clock(), cycled=result.executed)
        except PersistenceError as e:
            logger.error(f"Heartbeat update failed: {e}")

    async def check_positions_job(self):
        try:
            priced = await self.bot.refresh_positions()
        except PersistenceError as e:
            logger.error(f"Position check failed: {e}")
            return
        if priced is None:
            logger.debug("Position check skipped, cycle in progress")
            return
        if priced:
            state = self.bot.get_state(recent_trades=0)
            logger.info(
                f"Positions: {len(state.open_spreads)} | Balance: {state.paper_balance:.2f} | "
                f"Equity: {state.equity:.2f} | Drawdown: {state.drawdown_pct:.2f}%"
            )

    async def cleanup_job(self):
        now = self.bot.clock()
        try:
            logs = self.repository.clean_old_logs(now)
            params = self.repository.clean_expired_params(now)
        except PersistenceError as e:
            logger.error(f"Housekeeping failed: {e}")
            return
        logger.info(f"Housekeeping: removed {logs} old logs, {params} expired params")

    async def daily_report_job(self):
        now = self.bot.clock()
        day_start = ms_to_datetime(now).astimezone().replace(hour=0, minute=0, second=0, microsecond=0)
        since = int(day_start.timestamp() * 1000)

        state = self.bot.get_state(recent_trades=0)
        trades = [t for t in self.repository.get_trades(limit=100) if t.exit_time >= since]
        stats = state.to_dict()["stats"]
        self.bot.notifier.publish(
            "daily_report",
            stats=stats,
            open_spreads=len(state.open_spreads),
            trades_today=len(trades),
            pnl_today=sum(t.final_pnl for t in trades),
            wins_today=sum(1 for t in trades if t.final_pnl > 0),
        )
        self.bot.record_log("info", "Daily report sent")

    def get_status(self) -> dict:
        """Current scheduler state for the API."""
        jobs = self.scheduler.get_jobs() if self.scheduler.running else []
        return {
            "running": self.scheduler.running,
            "job_count": len(jobs),
            "jobs": [
                {
                    "id": j.id,
                    "name": j.name,
                    "next_run": str(j.next_run_time) if j.next_run_time else None,
                    "trigger": str(j.trigger),
                }
                for j in jobs
            ],
        }
