"""
Celery application initialization and configuration.

This module sets up the Celery app for distributed retention runs.
Tasks are discovered from the docservice.tasks module.
"""

from celery import Celery
from celery.schedules import crontab
from docservice.config import get_settings

settings = get_settings()

# Construct result backend URL (sqlalchemy + database_url)
result_backend = f"db+{settings.database_url}" if settings.database_url else ""

# Initialize Celery app
celery_app = Celery(
    "docservice_retention",
    broker=settings.celery_broker_url,
    backend=result_backend,
    include=[
        "docservice.tasks.retention",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=settings.celery_task_track_started,
    task_time_limit=settings.celery_task_time_limit,
    worker_prefetch_multiplier=settings.celery_worker_prefetch_multiplier,
    result_expires=3600,  # Results expire after 1 hour
)

# Celery Beat schedule (periodic tasks)
celery_app.conf.beat_schedule = {
    # Assign retention policies nightly (1 AM)
    "apply-retention-policies-daily": {
        "task": "docservice.tasks.retention.apply_retention_policies_task",
        "schedule": crontab(hour=1, minute=0),
    },
    # Execute due retention actions after the nightly apply (2 AM)
    "execute-retention-actions-daily": {
        "task": "docservice.tasks.retention.execute_retention_actions_task",
        "schedule": crontab(hour=2, minute=0),
    },
}


if __name__ == "__main__":
    celery_app.start()
