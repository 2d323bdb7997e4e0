"""
Celery tasks for retention runs.

Jobs queued from the API (use_celery=True) are executed by
execute_retention_job_task; Celery beat triggers the periodic apply and
actions runs. Job state lives in the retention_jobs table, so task
results only echo the final job record.
"""

import logging
import time
from uuid import UUID

from celery import Task

from docservice.celery_app import celery_app
from docservice.metrics import record_celery_task
from docservice.models import RetentionJobType
from docservice.services.retention_jobs import RetentionJobConflict, RetentionJobError
from docservice.services.retention_runtime import get_retention_runtime

logger = logging.getLogger(__name__)


class RetentionTask(Task):
    """Base task recording task metrics"""

    def before_start(self, task_id, args, kwargs):
        self._started_at = time.time()
        record_celery_task(self.name, "started")

    def on_success(self, retval, task_id, args, kwargs):
        record_celery_task(self.name, "succeeded", time.time() - getattr(self, "_started_at", time.time()))

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        record_celery_task(self.name, "failed", time.time() - getattr(self, "_started_at", time.time()))

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        record_celery_task(self.name, "retried")


def _job_result(job, task_id) -> dict:
    return {
        "status": job.status,
        "job_id": str(job.id),
        "job_type": job.job_type,
        "processed": job.processed_count,
        "failed": job.failed_count,
        "total_candidates": job.total_candidates,
        "task_id": task_id,
    }


@celery_app.task(
    bind=True,
    base=RetentionTask,
    max_retries=3,
    default_retry_delay=30,
    name="docservice.tasks.retention.execute_retention_job_task"
)
def execute_retention_job_task(self, job_id: str):
    """
    Execute a queued retention job.

    Args:
        job_id: RetentionJob id created by the API

    Returns:
        dict: Final job status and counts
    """
    logger.info(f"Starting Celery task: execute_retention_job_task (job_id={job_id})", extra={"job_id": job_id})
    registry = get_retention_runtime().registry

    try:
        job = registry.execute(UUID(job_id))
    except RetentionJobError as e:
        logger.warning(f"Retention job {job_id} not executed: {e}", extra={"job_id": job_id})
        return {"status": "skipped", "job_id": job_id, "error": str(e), "task_id": self.request.id}
    except Exception as e:
        # Run-level failures are recorded on the job; this is infrastructure (db, broker)
        logger.error(f"Error in execute_retention_job_task: {str(e)}", exc_info=True)
        if self.request.retries < self.max_retries:
            retry_delay = 30 * (2 ** self.request.retries)  # 30s, 60s, 120s
            logger.info(f"Retrying in {retry_delay}s (attempt {self.request.retries + 1}/{self.max_retries})")
            raise self.retry(exc=e, countdown=retry_delay)
        raise

    return _job_result(job, self.request.id)


def _run_periodic(task, job_type: str, dry_run: bool) -> dict:
    logger.info(f"Starting Celery task: retention {job_type} (dry_run={dry_run})")
    registry = get_retention_runtime().registry
    try:
        job = registry.run_sync(job_type, dry_run=dry_run, requested_by="celery-beat")
    except RetentionJobConflict as e:
        logger.info(f"Skipping retention {job_type} run: {e}")
        return {"status": "skipped", "reason": str(e), "task_id": task.request.id}
    return _job_result(job, task.request.id)


@celery_app.task(
    bind=True,
    base=RetentionTask,
    name="docservice.tasks.retention.apply_retention_policies_task"
)
def apply_retention_policies_task(self, dry_run: bool = False):
    """Assign retention policies and deadlines to documents"""
    return _run_periodic(self, RetentionJobType.APPLY.value, dry_run)


@celery_app.task(
    bind=True,
    base=RetentionTask,
    name="docservice.tasks.retention.execute_retention_actions_task"
)
def execute_retention_actions_task(self, dry_run: bool = False):
    """Delete, archive or flag documents whose retention deadline passed"""
    return _run_periodic(self, RetentionJobType.ACTIONS.value, dry_run)
