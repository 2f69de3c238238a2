"""
Auto sync scheduling for WeRead Sync Service.

At most one sync runs at a time. A trigger that fires while a run is in
flight is skipped, not queued.
"""

import threading
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from weread_sync.config import ConfigManager
from weread_sync.sync.engine import SyncEngine
from weread_sync.sync.models import SyncResult
from weread_sync.utils.logging import get_logger

logger = get_logger(__name__)

SYNC_JOB_ID = "auto_sync_job"
ALREADY_RUNNING_MESSAGE = "A sync is already running"


class SyncRunner:
    """
    Serialises sync runs from every trigger (scheduler and web API).
    """

    def __init__(self, engine: SyncEngine):
        self.engine = engine
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run_sync(self, background: bool = False) -> Optional[SyncResult]:
        """
        Run a full sync unless one is already running.

        Returns:
            SyncResult, or None if the run was skipped
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping", background=background)
            return None

        try:
            return self.engine.sync(background=background)
        finally:
            self._lock.release()

    def run_single_book(self, book_id: str) -> Optional[SyncResult]:
        """Sync one book unless a sync is already running."""
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping", book_id=book_id)
            return None

        try:
            return self.engine.sync_single_book(book_id)
        finally:
            self._lock.release()


class AutoSyncScheduler:
    """
    Runs background syncs on the configured interval while auto sync is on.
    """

    def __init__(
        self,
        runner: SyncRunner,
        config_manager: ConfigManager,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.runner = runner
        self.config_manager = config_manager
        self.scheduler = scheduler or BackgroundScheduler()

    def run_scheduled_sync(self) -> Optional[SyncResult]:
        """Job body: skip quietly when settings are incomplete."""
        try:
            if not self.config_manager.is_configured():
                logger.info("Auto sync skipped: settings incomplete")
                return None

            result = self.runner.run_sync(background=True)
            if result is not None:
                logger.info("Auto sync finished", success=result.success, message=result.message)
            return result

        except Exception as e:
            logger.exception("Auto sync failed", error=str(e))
            return None

    def start(self) -> None:
        """Start the scheduler and apply the current settings."""
        if not self.scheduler.running:
            self.scheduler.start()
        self.reschedule()

    def reschedule(self) -> None:
        """
        Re-read the settings and add, replace or remove the sync job.
        Call after the settings have been saved.
        """
        settings = self.config_manager.get_settings()

        if not settings.auto_sync_enabled:
            self.stop()
            return

        self.scheduler.add_job(
            self.run_scheduled_sync,
            trigger=IntervalTrigger(minutes=settings.poll_interval_minutes),
            id=SYNC_JOB_ID,
            name="WeRead Auto Sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Auto sync scheduled", interval_minutes=settings.poll_interval_minutes)

    def stop(self) -> None:
        """Remove the sync job; a run already in progress is left to finish."""
        if self.scheduler.get_job(SYNC_JOB_ID):
            self.scheduler.remove_job(SYNC_JOB_ID)
            logger.info("Auto sync stopped")

    def shutdown(self) -> None:
        """Shutdown the scheduler gracefully."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shutdown")
