"""
Prometheus metrics configuration for the document retention service

Provides application metrics for monitoring:
- HTTP request latency and counts
- Retention job runs and durations
- Documents processed and terminal actions taken
- Celery task metrics
"""
from prometheus_client import Counter, Histogram, Gauge, Info, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response
import time
import logging

logger = logging.getLogger(__name__)

# Create metrics router
metrics_router = APIRouter(tags=["metrics"])

# =============================================================================
# HTTP Metrics
# =============================================================================

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"]
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"]
)

# =============================================================================
# Retention Metrics
# =============================================================================

RETENTION_JOBS_TOTAL = Counter(
    "retention_jobs_total",
    "Total number of finished retention jobs",
    ["job_type", "status"]  # status: completed, failed, cancelled
)

RETENTION_JOB_DURATION = Histogram(
    "retention_job_duration_seconds",
    "Retention job duration in seconds",
    ["job_type"],
    buckets=[1, 5, 10, 30, 60, 300, 900, 1800, 3600]
)

RETENTION_DOCUMENTS_PROCESSED = Counter(
    "retention_documents_processed_total",
    "Documents handled by retention jobs",
    ["job_type", "outcome"]  # outcome: processed, failed, assigned
)

RETENTION_ACTIONS_TOTAL = Counter(
    "retention_actions_total",
    "Terminal retention actions taken",
    ["action"]  # deleted, archived, reviewed, held
)

RETENTION_LEGAL_HOLDS_CHANGED = Counter(
    "retention_legal_holds_changed_total",
    "Legal hold changes",
    ["change"]  # set, removed
)

# =============================================================================
# Celery Task Metrics
# =============================================================================

CELERY_TASKS_TOTAL = Counter(
    "celery_tasks_total",
    "Total number of Celery tasks",
    ["task_name", "status"]  # status: started, succeeded, failed, retried
)

CELERY_TASK_DURATION = Histogram(
    "celery_task_duration_seconds",
    "Celery task duration in seconds",
    ["task_name"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300]
)

# =============================================================================
# System Info
# =============================================================================

APP_INFO = Info(
    "docservice",
    "HR document retention service information"
)

APP_INFO.info({
    "version": "1.0.0",
    "framework": "fastapi"
})

# =============================================================================
# Metrics Endpoint
# =============================================================================

@metrics_router.get("/metrics", include_in_schema=False)
async def metrics():
    """
    Prometheus metrics endpoint

    Returns all application metrics in Prometheus text format.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# =============================================================================
# Middleware for HTTP Metrics
# =============================================================================

def normalize_endpoint(path: str) -> str:
    """Replace id-like path segments with {id} to bound label cardinality"""
    normalized_parts = []
    for part in path.split("/"):
        if part.isdigit() or (len(part) == 36 and "-" in part):
            normalized_parts.append("{id}")
        else:
            normalized_parts.append(part)
    return "/".join(normalized_parts)


async def metrics_middleware(request, call_next):
    """
    Middleware to collect HTTP request metrics
    """
    method = request.method
    endpoint = normalize_endpoint(request.url.path)

    HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()

    start_time = time.time()
    status_code = "500"

    try:
        response = await call_next(request)
        status_code = str(response.status_code)
        return response
    finally:
        duration = time.time() - start_time
        HTTP_REQUEST_DURATION.labels(
            method=method,
            endpoint=endpoint,
            status_code=status_code
        ).observe(duration)

        HTTP_REQUESTS_TOTAL.labels(
            method=method,
            endpoint=endpoint,
            status_code=status_code
        ).inc()

        HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()


# =============================================================================
# Helper Functions for Business Metrics
# =============================================================================

_ACTION_COUNTERS = ("deleted", "archived", "reviewed", "held")
_DOCUMENT_COUNTERS = ("processed", "failed", "assigned")


def record_retention_job(job_type: str, status: str, duration: float = None, counts: dict = None,
                         dry_run: bool = False):
    """Record a finished retention job and its document counts (dry runs take no actions)"""
    RETENTION_JOBS_TOTAL.labels(job_type=job_type, status=status).inc()
    if duration is not None:
        RETENTION_JOB_DURATION.labels(job_type=job_type).observe(duration)

    counts = counts or {}
    for outcome in _DOCUMENT_COUNTERS:
        if counts.get(outcome):
            RETENTION_DOCUMENTS_PROCESSED.labels(job_type=job_type, outcome=outcome).inc(counts[outcome])
    if dry_run:
        return
    for action in _ACTION_COUNTERS:
        if counts.get(action):
            RETENTION_ACTIONS_TOTAL.labels(action=action).inc(counts[action])


def record_legal_hold_change(change: str):
    """Record a legal hold being set or removed"""
    RETENTION_LEGAL_HOLDS_CHANGED.labels(change=change).inc()


def record_celery_task(task_name: str, status: str, duration: float = None):
    """Record a Celery task event"""
    CELERY_TASKS_TOTAL.labels(task_name=task_name, status=status).inc()
    if duration is not None:
        CELERY_TASK_DURATION.labels(task_name=task_name).observe(duration)
