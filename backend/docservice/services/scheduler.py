"""
Background job scheduler for periodic retention runs

Used when Celery is disabled. Schedules:
- Policy application (assign policies + deadlines)
- Retention actions (delete/archive/review due documents)
"""
import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Optional

from docservice.config import get_settings
from docservice.models import RetentionJobType
from docservice.services.retention_jobs import RetentionJobConflict

logger = logging.getLogger(__name__)


class RetentionScheduler:
    """Scheduler for automated retention runs"""

    def __init__(self, runtime=None, settings=None):
        self.scheduler = BackgroundScheduler()
        self.settings = settings or get_settings()
        self._runtime = runtime
        self._started = False

    @property
    def runtime(self):
        if self._runtime is None:
            from docservice.services.retention_runtime import get_retention_runtime
            self._runtime = get_retention_runtime()
        return self._runtime

    def start(self):
        """Start the scheduler"""
        if self._started:
            logger.warning("Scheduler already started")
            return

        self.scheduler.add_job(
            func=self._apply_policies_job,
            trigger=IntervalTrigger(hours=self.settings.retention_apply_interval_hours),
            id='retention_apply',
            name='Apply retention policies',
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            func=self._retention_actions_job,
            trigger=IntervalTrigger(hours=self.settings.retention_actions_interval_hours),
            id='retention_actions',
            name='Execute due retention actions',
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._started = True
        logger.info("Retention scheduler started")
        logger.info("Scheduled jobs: %s", [job.id for job in self.scheduler.get_jobs()])

    def stop(self):
        """Stop the scheduler"""
        if not self._started:
            return

        self.scheduler.shutdown()
        self._started = False
        logger.info("Retention scheduler stopped")

    def _run(self, job_type: str):
        logger.info(f"Starting scheduled retention {job_type} run")
        try:
            job = self.runtime.registry.run_sync(job_type, requested_by="scheduler")
            logger.info(
                f"Scheduled retention {job_type} run {job.status}: "
                f"{job.processed_count} processed, {job.failed_count} failed",
                extra={"job_id": str(job.id), "job_type": job_type}
            )
        except RetentionJobConflict as e:
            logger.info(f"Skipping scheduled retention {job_type} run: {e}")
        except Exception as e:
            logger.error(f"Error in scheduled retention {job_type} run: {str(e)}", exc_info=True)

    def _apply_policies_job(self):
        """Background job assigning policies to documents"""
        self._run(RetentionJobType.APPLY.value)

    def _retention_actions_job(self):
        """Background job executing due retention actions"""
        self._run(RetentionJobType.ACTIONS.value)


# Global scheduler instance
_scheduler: Optional[RetentionScheduler] = None


def get_scheduler() -> RetentionScheduler:
    """Get or create the global scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = RetentionScheduler()
    return _scheduler


def start_scheduler():
    """Start the global scheduler"""
    scheduler = get_scheduler()
    scheduler.start()


def stop_scheduler():
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler is not None:
        _scheduler.stop()
