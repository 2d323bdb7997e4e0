"""
Process-wide wiring of the retention engine.

Builds the SQL stores, blob store, legal hold gate, executor,
orchestrator and job registry from settings once per process. Routes,
the APScheduler jobs and Celery tasks all share the same instance.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from sqlalchemy.orm import sessionmaker

from docservice.config import Settings, get_settings
from docservice.services.audit_service import SessionAuditSink
from docservice.services.collaborators import SideEffects
from docservice.services.event_publisher import build_event_publisher
from docservice.services.legal_hold import LegalHoldGate
from docservice.services.locks import build_lock_manager
from docservice.services.retention_actions import RetentionActionExecutor
from docservice.services.retention_jobs import RetentionJobOrchestrator, RetentionJobRegistry
from docservice.services.storage import StorageService
from docservice.services.stores import SqlDocumentStore, SqlJobStore, SqlPolicyStore

logger = logging.getLogger(__name__)


@dataclass
class RetentionRuntime:
    documents: SqlDocumentStore
    policies: SqlPolicyStore
    jobs: SqlJobStore
    blobs: StorageService
    legal_holds: LegalHoldGate
    executor: RetentionActionExecutor
    orchestrator: RetentionJobOrchestrator
    registry: RetentionJobRegistry

    def shutdown(self) -> None:
        self.registry.shutdown(wait=False)


def celery_dispatcher(job_id) -> None:
    """Hand a queued job to a Celery worker"""
    from docservice.tasks.retention import execute_retention_job_task

    execute_retention_job_task.delay(str(job_id))


def build_retention_runtime(settings: Settings, session_factory: sessionmaker,
                            blob_store=None, lock_manager=None, event_publisher=None) -> RetentionRuntime:
    """Assemble the retention engine; collaborators may be overridden (tests)"""
    documents = SqlDocumentStore(session_factory)
    policies = SqlPolicyStore(session_factory)
    jobs = SqlJobStore(session_factory)
    blobs = blob_store or StorageService(settings.document_storage_path)

    side_effects = SideEffects(
        audit_sink=SessionAuditSink(session_factory),
        event_publisher=event_publisher or build_event_publisher(settings),
        logger=logger,
    )

    legal_holds = LegalHoldGate(documents, side_effects, in_flight_wait=settings.retention_legal_hold_wait)
    executor = RetentionActionExecutor(
        documents,
        policies,
        blobs,
        legal_holds,
        side_effects=side_effects,
        batch_size=settings.retention_batch_size,
        max_workers=settings.retention_max_workers,
        blob_delete_timeout=settings.retention_blob_delete_timeout,
        flush_every=settings.retention_progress_flush_every,
        failure_limit=settings.retention_failure_log_limit,
    )
    orchestrator = RetentionJobOrchestrator(
        documents,
        policies,
        batch_size=settings.retention_batch_size,
        max_workers=settings.retention_max_workers,
    )
    registry = RetentionJobRegistry(
        jobs,
        lock_manager or build_lock_manager(settings),
        orchestrator,
        executor,
        side_effects=side_effects,
        pool_size=settings.retention_job_pool_size,
        flush_every=settings.retention_progress_flush_every,
        failure_limit=settings.retention_failure_log_limit,
        dispatcher=celery_dispatcher if settings.use_celery else None,
    )

    logger.info(
        f"Retention runtime ready (locks={settings.retention_lock_backend}, "
        f"celery={settings.use_celery}, workers={settings.retention_max_workers})"
    )
    return RetentionRuntime(
        documents=documents,
        policies=policies,
        jobs=jobs,
        blobs=blobs,
        legal_holds=legal_holds,
        executor=executor,
        orchestrator=orchestrator,
        registry=registry,
    )


@lru_cache()
def get_retention_runtime() -> RetentionRuntime:
    """Process singleton, also used as a FastAPI dependency"""
    from docservice.database import SessionLocal

    return build_retention_runtime(get_settings(), SessionLocal)


def shutdown_retention_runtime(runtime: Optional[RetentionRuntime] = None) -> None:
    if runtime is None:
        if get_retention_runtime.cache_info().currsize == 0:
            return
        runtime = get_retention_runtime()
    runtime.shutdown()
