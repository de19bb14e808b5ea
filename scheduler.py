import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from errors import NotConfiguredError, SyncInProgressError
from sync import SyncOrchestrator


logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self, orchestrator: SyncOrchestrator, interval_minutes: Optional[int] = None
    ) -> None:
        settings = get_settings()
        self.orchestrator = orchestrator
        if interval_minutes is None:
            interval_minutes = settings.auto_sync_minutes
        self.interval_minutes = interval_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"auto_sync_run: source={source}")
        try:
            result = self.orchestrator.sync_bidirectional()
        except NotConfiguredError:
            logger.info(f"auto_sync_run: source={source} skipped=not_configured")
            return
        except SyncInProgressError:
            logger.info(f"auto_sync_run: source={source} skipped=busy")
            return
        logger.info(
            f"auto_sync_run: source={source} success={result.success} error={result.error}"
        )

    def start(self) -> None:
        if self.interval_minutes <= 0:
            logger.info("Auto sync disabled")
            return

        trigger = IntervalTrigger(minutes=self.interval_minutes)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="auto_sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with auto sync every {self.interval_minutes} min")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
