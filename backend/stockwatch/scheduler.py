"""APScheduler-based background checks.

Two jobs run on the asyncio scheduler:

- ``availability_check`` runs a bulk check over every link. It reads the
  user settings at the start of every cycle, so turning background checks
  off or changing the interval takes effect without a restart.
- ``maintenance`` purges expired verified sessions and refreshes stale
  exchange rates.

Both share the bulk single-flight lock with user-triggered runs, so a
scheduled run never interleaves with one started by hand.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockwatch.config import settings
from stockwatch.core.exceptions import ExternalError
from stockwatch.db.utils import session_scope
from stockwatch.schemas.check import BulkCheckSummary
from stockwatch.services.bulk_check_service import BulkCheckService
from stockwatch.services.exchange_rate_service import ExchangeRateService
from stockwatch.services.session_service import VerifiedSessionService
from stockwatch.services.setting_service import SettingService

logger = structlog.get_logger(__name__)

AVAILABILITY_JOB_ID = "availability_check"
MAINTENANCE_JOB_ID = "maintenance"


class AvailabilityScheduler:
    """Manages the periodic availability and maintenance jobs.

    This scheduler:
    - Starts and stops the background jobs
    - Re-reads user settings every cycle and reschedules on interval changes
    - Logs job failures without stopping the scheduler
    """

    def __init__(
        self,
        db_session_factory: async_sessionmaker[AsyncSession],
        bulk_service_factory: Callable[[AsyncSession], BulkCheckService] = BulkCheckService,
    ):
        """Initialize availability scheduler.

        Args:
            db_session_factory: Async session factory for database access
            bulk_service_factory: Builds the bulk service for one cycle
        """
        self.db_session_factory = db_session_factory
        self.bulk_service_factory = bulk_service_factory
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.logger = logger.bind(service="availability_scheduler")
        self._interval_seconds = settings.SCHEDULER_IDLE_POLL_SECONDS

    def start(self) -> None:
        """Register both jobs and start the scheduler.

        The availability job first fires after the idle poll interval and
        adopts the configured interval from then on.
        """
        if self.scheduler.running:
            self.logger.warning("scheduler_already_running")
            return

        self._add_job(AVAILABILITY_JOB_ID, self._run_availability_wrapper, self._interval_seconds)
        self._add_job(
            MAINTENANCE_JOB_ID,
            self._run_maintenance_wrapper,
            settings.MAINTENANCE_INTERVAL_MINUTES * 60,
        )
        self.scheduler.start()
        self.logger.info("scheduler_started")

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            self.logger.info("scheduler_stopped")
        else:
            self.logger.warning("scheduler_not_running")

    def is_running(self) -> bool:
        return self.scheduler.running

    def _add_job(self, job_id: str, func: Callable, interval_seconds: int) -> Job:
        job = self.scheduler.add_job(
            func=func,
            trigger=self._trigger(interval_seconds),
            id=job_id,
            name=job_id.replace("_", " ").title(),
            replace_existing=True,
            max_instances=1,
        )
        self.logger.info("job_added", job_id=job_id, interval_seconds=interval_seconds)
        return job

    @staticmethod
    def _trigger(interval_seconds: int) -> IntervalTrigger:
        return IntervalTrigger(
            seconds=interval_seconds,
            start_date=datetime.now(timezone.utc),
            timezone="UTC",
        )

    async def _run_availability_wrapper(self) -> None:
        """Called by APScheduler; failures are logged and the job stays scheduled."""
        try:
            interval_seconds = await self.run_availability_cycle()
        except Exception as e:
            self.logger.error("availability_job_failed", error=str(e), exc_info=True)
            return
        self.apply_interval(interval_seconds)

    async def run_availability_cycle(self) -> int:
        """Run one background cycle if background checks are enabled.

        Returns:
            Seconds until the next cycle should run
        """
        async with self.db_session_factory() as db:
            user_settings = await SettingService(db).get()

        if not user_settings.background_enabled:
            self.logger.debug("background_checks_disabled")
            return settings.SCHEDULER_IDLE_POLL_SECONDS

        summary = await self.run_bulk_check()
        self.logger.info(
            "background_cycle_completed",
            total=summary.total,
            failed=summary.failed,
            next_run_minutes=user_settings.background_interval_minutes,
        )
        return user_settings.background_interval_minutes * 60

    async def run_bulk_check(self) -> BulkCheckSummary:
        async with self.db_session_factory() as db:
            service = self.bulk_service_factory(db)
            return await service.check_all()

    def apply_interval(self, interval_seconds: int) -> Optional[Job]:
        """Reschedule the availability job when its interval changed."""
        if interval_seconds == self._interval_seconds:
            return None

        previous = self._interval_seconds
        self._interval_seconds = interval_seconds
        job = self.scheduler.reschedule_job(AVAILABILITY_JOB_ID, trigger=self._trigger(interval_seconds))
        next_run = datetime.now(timezone.utc) + timedelta(seconds=interval_seconds)
        self.logger.info(
            "availability_job_rescheduled",
            previous_seconds=previous,
            interval_seconds=interval_seconds,
            next_run=next_run.isoformat(),
        )
        return job

    async def _run_maintenance_wrapper(self) -> None:
        try:
            await self.run_maintenance()
        except Exception as e:
            self.logger.error("maintenance_job_failed", error=str(e), exc_info=True)

    async def run_maintenance(self) -> dict[str, int | bool]:
        """Purge expired sessions and refresh stale exchange rates.

        Returns:
            Dict with ``sessions_deleted`` and ``rates_refreshed``
        """
        async with session_scope(self.db_session_factory) as db:
            sessions_deleted = await VerifiedSessionService(db).delete_expired()
            preferred = (await SettingService(db).get()).preferred_currency

        rates_refreshed = False
        try:
            async with session_scope(self.db_session_factory) as db:
                rates_refreshed = await ExchangeRateService(db).refresh_if_stale(preferred)
        except ExternalError as e:
            self.logger.warning("exchange_rate_refresh_skipped", error=e.message)

        stats = {"sessions_deleted": sessions_deleted, "rates_refreshed": rates_refreshed}
        self.logger.info("maintenance_completed", **stats)
        return stats
