"""
Background task scheduler for location history retention

A daemon thread polls a private ``schedule.Scheduler`` and runs the daily
purge of finished trips' location samples inside an app context.
"""

import logging
import threading
import schedule

logger = logging.getLogger(__name__)

RETENTION_RUN_AT = "02:00"


class BackgroundTaskScheduler:
    """Runs the retention purge once a day"""

    def __init__(self, app=None, poll_seconds: int = 60):
        self.app = app
        self.poll_seconds = poll_seconds
        self.scheduler = schedule.Scheduler()
        self.scheduler_thread = None
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return self.scheduler_thread is not None and not self._stop_event.is_set()

    def start_scheduler(self, app=None):
        if app is not None:
            self.app = app
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.every().day.at(RETENTION_RUN_AT).do(self.run_retention_cleanup)
        self._stop_event.clear()
        self.scheduler_thread = threading.Thread(target=self._run_scheduler, name='retention-scheduler',
                                                 daemon=True)
        self.scheduler_thread.start()
        logger.info(f"Retention scheduler started, daily purge at {RETENTION_RUN_AT}")

    def stop_scheduler(self):
        if not self.running:
            return
        self._stop_event.set()
        self.scheduler.clear()
        self.scheduler_thread.join(timeout=5)
        self.scheduler_thread = None
        logger.info("Retention scheduler stopped")

    def _run_scheduler(self):
        # wait() doubles as the poll interval and returns early on stop
        while not self._stop_event.wait(self.poll_seconds):
            try:
                self.scheduler.run_pending()
            except Exception as e:
                logger.error(f"Retention job failed: {str(e)}")

    def run_retention_cleanup(self) -> int:
        """Purge expired location history once; returns the number of samples removed"""
        from services.location_service import LocationService

        with self.app.app_context():
            retention_days = self.app.config['LOCATION_RETENTION_DAYS']
            removed = LocationService().purge_expired_history(retention_days)
            logger.info(f"Location history cleanup: {removed} samples older than {retention_days} days removed")
            return removed


def init_background_tasks(app) -> BackgroundTaskScheduler:
    """Start the retention scheduler for an app and register it on app.extensions"""
    background_scheduler = BackgroundTaskScheduler(app)
    background_scheduler.start_scheduler()
    app.extensions['background_scheduler'] = background_scheduler
    return background_scheduler


def cleanup_background_tasks(app):
    """Stop the retention scheduler, if one was started for this app"""
    background_scheduler = app.extensions.pop('background_scheduler', None)
    if background_scheduler is not None:
        background_scheduler.stop_scheduler()
