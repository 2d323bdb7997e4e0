"""Unit tests for Prometheus metrics module (docservice/metrics.py)"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from docservice.metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUESTS_IN_PROGRESS,
    RETENTION_JOBS_TOTAL,
    RETENTION_DOCUMENTS_PROCESSED,
    RETENTION_ACTIONS_TOTAL,
    RETENTION_LEGAL_HOLDS_CHANGED,
    CELERY_TASKS_TOTAL,
    metrics_middleware,
    normalize_endpoint,
    record_retention_job,
    record_legal_hold_change,
    record_celery_task,
)


def value(metric, **labels):
    return metric.labels(**labels)._value.get()


@pytest.mark.unit
class TestRetentionMetrics:
    """Test retention helper functions"""

    def test_record_retention_job(self):
        before_jobs = value(RETENTION_JOBS_TOTAL, job_type="actions", status="completed")
        before_processed = value(RETENTION_DOCUMENTS_PROCESSED, job_type="actions", outcome="processed")
        before_deleted = value(RETENTION_ACTIONS_TOTAL, action="deleted")

        record_retention_job("actions", "completed", duration=1.5, counts={"processed": 4, "deleted": 3})

        assert value(RETENTION_JOBS_TOTAL, job_type="actions", status="completed") == before_jobs + 1
        assert value(RETENTION_DOCUMENTS_PROCESSED, job_type="actions", outcome="processed") == before_processed + 4
        assert value(RETENTION_ACTIONS_TOTAL, action="deleted") == before_deleted + 3

    def test_dry_run_takes_no_actions(self):
        before_archived = value(RETENTION_ACTIONS_TOTAL, action="archived")
        before_processed = value(RETENTION_DOCUMENTS_PROCESSED, job_type="actions", outcome="processed")

        record_retention_job("actions", "completed", counts={"processed": 2, "archived": 2}, dry_run=True)

        assert value(RETENTION_ACTIONS_TOTAL, action="archived") == before_archived
        assert value(RETENTION_DOCUMENTS_PROCESSED, job_type="actions", outcome="processed") == before_processed + 2

    def test_failed_job_without_counts(self):
        before = value(RETENTION_JOBS_TOTAL, job_type="apply", status="failed")
        record_retention_job("apply", "failed")
        assert value(RETENTION_JOBS_TOTAL, job_type="apply", status="failed") == before + 1

    def test_record_legal_hold_change(self):
        before = value(RETENTION_LEGAL_HOLDS_CHANGED, change="set")
        record_legal_hold_change("set")
        assert value(RETENTION_LEGAL_HOLDS_CHANGED, change="set") == before + 1

    def test_record_celery_task(self):
        labels = {"task_name": "retention.apply", "status": "succeeded"}
        before = value(CELERY_TASKS_TOTAL, **labels)
        record_celery_task("retention.apply", "succeeded", duration=0.2)
        assert value(CELERY_TASKS_TOTAL, **labels) == before + 1


@pytest.mark.unit
class TestEndpointNormalization:
    def test_uuid_segments_replaced(self):
        path = "/api/documents/3f2b1c9e-8d7a-4e6f-9a1b-2c3d4e5f6a7b/legal-hold"
        assert normalize_endpoint(path) == "/api/documents/{id}/legal-hold"

    def test_numeric_segments_replaced(self):
        assert normalize_endpoint("/api/retention/jobs/42") == "/api/retention/jobs/{id}"

    def test_plain_path_unchanged(self):
        assert normalize_endpoint("/api/retention/summary") == "/api/retention/summary"


@pytest.mark.unit
class TestMetricsMiddleware:
    @pytest.mark.asyncio
    async def test_records_request(self):
        request = MagicMock()
        request.method = "GET"
        request.url.path = "/api/retention/policies"
        response = MagicMock(status_code=200)
        call_next = AsyncMock(return_value=response)
        labels = {"method": "GET", "endpoint": "/api/retention/policies", "status_code": "200"}
        before = value(HTTP_REQUESTS_TOTAL, **labels)

        result = await metrics_middleware(request, call_next)

        assert result is response
        assert value(HTTP_REQUESTS_TOTAL, **labels) == before + 1
        assert value(HTTP_REQUESTS_IN_PROGRESS, method="GET", endpoint="/api/retention/policies") == 0
