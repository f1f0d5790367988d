from __future__ import annotations

from typing import Callable
import logging

from apscheduler.events import EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .metrics import scheduler_misfires_total
from .state import AppState

logger = logging.getLogger("solartrack")


class SolarTrackScheduler:
    def __init__(self, state: AppState):
        self.state = state
        self.scheduler = BackgroundScheduler(timezone=state.settings.timezone)

    def start(
        self,
        refresh_job: Callable[[], None],
        reminder_job: Callable[[], None] | None = None,
    ) -> None:
        # Listen for misfires to expose as metrics
        self.scheduler.add_listener(lambda event: scheduler_misfires_total.inc(), EVENT_JOB_MISSED)
        self.scheduler.start()
        self._schedule_jobs(refresh_job, reminder_job)

    def _schedule_jobs(
        self,
        refresh_job: Callable[[], None],
        reminder_job: Callable[[], None] | None,
    ) -> None:
        settings = self.state.settings
        interval = settings.stats_refresh_interval_seconds
        # Jitter is at most 10% of interval, capped to 15s and always < interval
        jitter = min(max(0, interval // 10), 15, max(0, interval - 1))
        self.scheduler.add_job(
            refresh_job,
            IntervalTrigger(seconds=interval, jitter=jitter),
            id="stats_refresh",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=max(1, interval),
        )
        if reminder_job is not None and settings.reminder_enabled:
            self.scheduler.add_job(
                reminder_job,
                CronTrigger(hour=settings.reminder_hour, minute=0, timezone=settings.timezone),
                id="reminder",
                replace_existing=True,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=3600,
            )
            logger.debug("Reminder scheduled daily at %02d:00 %s", settings.reminder_hour, settings.timezone)

    def job_ids(self) -> list[str]:
        return [job.id for job in self.scheduler.get_jobs()]

    def reschedule(
        self,
        refresh_job: Callable[[], None],
        reminder_job: Callable[[], None] | None = None,
    ) -> None:
        self.scheduler.remove_all_jobs()
        self._schedule_jobs(refresh_job, reminder_job)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
