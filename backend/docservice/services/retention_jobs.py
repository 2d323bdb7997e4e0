"""
Retention job orchestration.

RetentionJobOrchestrator walks every active policy, discovers candidate
documents page by page and binds each one to the policy the resolver
picks. RetentionJobRegistry owns job records: it creates them, runs them
in the background under the exclusive run lock, and handles cancel,
resume and polling.

Job state machine: pending -> running -> completed | failed | cancelled.
A run-level failure marks the job failed; documents already updated
before the failure keep their new assignment.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Set
from uuid import UUID

from docservice.metrics import record_retention_job
from docservice.models import RetentionJobStatus, RetentionJobType
from docservice.services.collaborators import (
    DocumentFilter, DocumentStore, JobStore, PolicyStore, SideEffects,
)
from docservice.services.job_progress import JobProgress
from docservice.services.locks import ACTIONS_LOCK_KEY, APPLY_LOCK_KEY
from docservice.services.retention_actions import RetentionActionExecutor, RetentionActionResult
from docservice.services.retention_resolver import PolicyResolver, in_scope
from docservice.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

JOB_COMPLETED_EVENT = "retention.job_completed"
JOB_FAILED_EVENT = "retention.job_failed"

LOCK_KEYS = {
    RetentionJobType.APPLY.value: APPLY_LOCK_KEY,
    RetentionJobType.ACTIONS.value: ACTIONS_LOCK_KEY,
}


class RetentionJobError(Exception):
    """Job lifecycle misuse (unknown job, illegal transition)"""
    pass


class RetentionJobNotFound(RetentionJobError):
    pass


class RetentionJobConflict(RetentionJobError):
    """A job of the same type is already pending or running"""

    def __init__(self, message: str, active_job_id: Any = None):
        super().__init__(message)
        self.active_job_id = active_job_id


class RetentionJobOrchestrator:
    """Assign policies and deadlines to documents"""

    def __init__(
        self,
        document_store: DocumentStore,
        policy_store: PolicyStore,
        resolver: Optional[PolicyResolver] = None,
        batch_size: int = 100,
        max_workers: int = 1,
    ):
        self.documents = document_store
        self.policies = policy_store
        self.resolver = resolver or PolicyResolver()
        self.batch_size = batch_size
        self.max_workers = max(1, max_workers)

    def run(
        self,
        progress: JobProgress,
        dry_run: bool = False,
        cancel_event: Optional[threading.Event] = None,
        cursor_policy_id: Any = None,
        cursor_document_id: Any = None,
    ) -> bool:
        """
        Run one pass over all active policies.

        Counters in ``progress``: total_candidates, processed, failed,
        assigned. Returns False when the run stopped on cancellation.
        Exceptions raised here are run-level failures.
        """
        cancel_event = cancel_event or threading.Event()
        policies = self.policies.list_active_policies()

        start_index = 0
        if cursor_policy_id is not None:
            ids = [policy.id for policy in policies]
            if cursor_policy_id in ids:
                start_index = ids.index(cursor_policy_id)
            else:
                logger.warning(
                    f"Resume policy {cursor_policy_id} is no longer active, restarting from the first policy"
                )
                cursor_document_id = None

        scanned = policies[:start_index]
        cursor_policy = policies[start_index] if cursor_document_id is not None and policies else None

        def counted_before_resume(document, policy) -> bool:
            # Candidates of policies scanned before the interruption were
            # already counted then; the seen set does not survive restarts.
            if any(in_scope(document, earlier) for earlier in scanned):
                return True
            return (
                cursor_policy is not None
                and policy is not cursor_policy
                and in_scope(document, cursor_policy)
                and document.id <= cursor_document_id
            )

        seen: Set[Any] = set()
        seen_lock = threading.Lock()
        reported_overlaps: Set[tuple] = set()
        pool = (
            ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="retention-apply")
            if self.max_workers > 1 else None
        )

        def handle(document):
            if cancel_event.is_set():
                return
            try:
                resolution = self.resolver.resolve(document, policies, reported_overlaps)
                if resolution is not None and not dry_run:
                    self.documents.update_document(document.id, {
                        "assigned_policy_id": resolution.policy.id,
                        "retention_deadline": resolution.deadline,
                    })
            except Exception as e:
                logger.warning(
                    f"Retention policy resolution failed for document {document.id}: {e}",
                    extra={"document_id": str(document.id)}
                )
                progress.document_failed(document.id, e)
                return
            if resolution is not None:
                progress.document_done(processed=1, assigned=1)
            else:
                progress.document_done(processed=1)

        try:
            for policy in policies[start_index:]:
                after_id = cursor_document_id if policy.id == cursor_policy_id else None
                candidate_filter = DocumentFilter.policy_candidates(policy, limit=self.batch_size)

                while True:
                    if cancel_event.is_set():
                        return False
                    page = self.documents.find_documents(candidate_filter.page_after(after_id))
                    if not page:
                        break

                    with seen_lock:
                        fresh = [
                            document for document in page
                            if document.id not in seen and not counted_before_resume(document, policy)
                        ]
                        seen.update(document.id for document in fresh)
                    progress.add(total_candidates=len(fresh))

                    if pool is None:
                        for document in fresh:
                            if cancel_event.is_set():
                                break
                            handle(document)
                            progress.set_cursor(policy_id=policy.id, document_id=document.id)
                    else:
                        for future in [pool.submit(handle, document) for document in fresh]:
                            future.result()

                    if not cancel_event.is_set():
                        progress.set_cursor(policy_id=policy.id, document_id=page[-1].id)
                    progress.flush()

                    after_id = page[-1].id
                    if len(page) < self.batch_size:
                        break

                logger.debug(f"Retention policy '{policy.name}' scanned", extra={"policy_id": str(policy.id)})
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

        progress.flush()
        return not cancel_event.is_set()


class RetentionJobRegistry:
    """
    Create, run and track retention jobs.

    Each job type has one exclusive lock ("retention-apply",
    "retention-actions"). ``start_*`` returns the pending job at once;
    the run happens on the registry's thread pool, or on a Celery worker
    when a ``dispatcher`` is given.
    """

    def __init__(
        self,
        job_store: JobStore,
        lock_manager: Any,
        orchestrator: RetentionJobOrchestrator,
        executor: RetentionActionExecutor,
        side_effects: Optional[SideEffects] = None,
        pool_size: int = 2,
        flush_every: int = 10,
        failure_limit: int = 100,
        dispatcher: Optional[Callable[[UUID], None]] = None,
    ):
        self.jobs = job_store
        self.locks = lock_manager
        self.orchestrator = orchestrator
        self.executor = executor
        self.side_effects = side_effects or SideEffects(logger=logger)
        self.flush_every = flush_every
        self.failure_limit = failure_limit
        self.dispatcher = dispatcher
        self._pool = ThreadPoolExecutor(max_workers=max(1, pool_size), thread_name_prefix="retention-job")
        self._futures: Dict[str, Future] = {}
        self._cancel_events: Dict[str, threading.Event] = {}
        self._guard = threading.Lock()

    # ==================== Starting ====================

    def start_apply(self, dry_run: bool = False, requested_by: Optional[str] = None):
        return self._start(RetentionJobType.APPLY.value, dry_run, requested_by)

    def start_actions(self, dry_run: bool = False, requested_by: Optional[str] = None):
        return self._start(RetentionJobType.ACTIONS.value, dry_run, requested_by)

    def _start(self, job_type: str, dry_run: bool, requested_by: Optional[str]):
        with self._guard:
            active = self.jobs.find_active_job(job_type)
            if active is not None:
                raise RetentionJobConflict(
                    f"A retention {job_type} job is already {active.status}",
                    active_job_id=active.id,
                )
            job = self.jobs.create_job(job_type, dry_run, requested_by)

        logger.info(
            f"Retention {job_type} job queued",
            extra={"job_id": str(job.id), "job_type": job_type, "dry_run": dry_run}
        )
        self._dispatch(job.id)
        return job

    def _dispatch(self, job_id: UUID) -> None:
        if self.dispatcher is not None:
            self.dispatcher(job_id)
            return
        self._track(job_id, self._pool.submit(self.execute, job_id))

    def _track(self, job_id: UUID, future: Future) -> None:
        key = str(job_id)
        with self._guard:
            self._futures[key] = future
        future.add_done_callback(lambda done, key=key: self._forget(key, done))

    def _forget(self, key: str, future: Future) -> None:
        with self._guard:
            if self._futures.get(key) is future:
                del self._futures[key]

    def run_sync(self, job_type: str, dry_run: bool = False, requested_by: Optional[str] = None):
        """Create and run a job on the calling thread (scheduler, Celery beat)"""
        with self._guard:
            active = self.jobs.find_active_job(job_type)
            if active is not None:
                raise RetentionJobConflict(
                    f"A retention {job_type} job is already {active.status}",
                    active_job_id=active.id,
                )
            job = self.jobs.create_job(job_type, dry_run, requested_by)
        return self.execute(job.id)

    # ==================== Running ====================

    def execute(self, job_id: UUID, resume: bool = False):
        """Run a pending job (or resume an orphaned running one) under its lock"""
        job = self.jobs.get_job(job_id)
        if job is None:
            raise RetentionJobNotFound(f"Retention job {job_id} not found")

        expected = RetentionJobStatus.RUNNING.value if resume else RetentionJobStatus.PENDING.value
        if job.status != expected:
            raise RetentionJobError(f"Retention job {job_id} is {job.status}, expected {expected}")

        lock_key = LOCK_KEYS[job.job_type]
        if not self.locks.acquire(lock_key):
            if resume:
                raise RetentionJobConflict(
                    f"Retention job {job_id} still holds the {lock_key} lock", active_job_id=job.id
                )
            self._finish(
                job, RetentionJobStatus.FAILED.value,
                last_error="Another retention run is in progress"
            )
            return self.jobs.get_job(job_id)

        cancel_event = self._cancel_event(job_id)
        if job.cancel_requested:
            cancel_event.set()

        try:
            if not resume:
                self.jobs.update_job(job.id, status=RetentionJobStatus.RUNNING.value, started_at=utcnow())
            logger.info(
                f"Retention {job.job_type} job {'resumed' if resume else 'started'}",
                extra={"job_id": str(job.id), "job_type": job.job_type, "dry_run": job.dry_run}
            )

            progress = self._progress_for(job, lock_key, cancel_event, resume)
            started = time.time()
            try:
                if job.job_type == RetentionJobType.APPLY.value:
                    finished = self.orchestrator.run(
                        progress,
                        dry_run=job.dry_run,
                        cancel_event=cancel_event,
                        cursor_policy_id=job.cursor_policy_id if resume else None,
                        cursor_document_id=job.cursor_document_id if resume else None,
                    )
                    summary = None
                else:
                    result = self.executor.execute(
                        dry_run=job.dry_run,
                        actor=job.requested_by or "system",
                        cancel_event=cancel_event,
                        progress=progress,
                        after_id=job.cursor_document_id if resume else None,
                    )
                    finished = not result.cancelled
                    summary = result.as_dict()
            except Exception as e:
                logger.error(
                    f"Retention {job.job_type} job failed: {e}",
                    exc_info=True,
                    extra={"job_id": str(job.id), "job_type": job.job_type}
                )
                self._finish(
                    job, RetentionJobStatus.FAILED.value, progress=progress,
                    last_error=str(e), duration=time.time() - started
                )
                return self.jobs.get_job(job_id)

            status = RetentionJobStatus.COMPLETED.value if finished else RetentionJobStatus.CANCELLED.value
            self._finish(job, status, progress=progress, summary=summary, duration=time.time() - started)

            return self.jobs.get_job(job_id)
        finally:
            self.locks.release(lock_key)
            with self._guard:
                self._cancel_events.pop(str(job_id), None)

    def _progress_for(self, job, lock_key: str, cancel_event: threading.Event, resume: bool) -> JobProgress:
        counts = {}
        failures = None
        if resume:
            counts = self._counts_from_job(job)
            failures = job.failures

        def on_flush(snapshot: Dict[str, Any]) -> None:
            fields = self._job_fields(job.job_type, snapshot)
            self.jobs.update_job(job.id, **fields)
            self.locks.extend(lock_key)
            stored = self.jobs.get_job(job.id)
            if stored is not None and stored.cancel_requested:
                cancel_event.set()

        return JobProgress(
            flush_every=self.flush_every,
            failure_limit=self.failure_limit,
            on_flush=on_flush,
            counts=counts,
            failures=failures,
        )

    @staticmethod
    def _counts_from_job(job) -> Dict[str, int]:
        if job.job_type == RetentionJobType.APPLY.value:
            return {
                "total_candidates": job.total_candidates or 0,
                "processed": job.processed_count or 0,
                "failed": job.failed_count or 0,
                "assigned": job.assigned_count or 0,
            }
        counts = dict(job.summary or {})
        counts["failed"] = job.failed_count or 0
        return counts

    @staticmethod
    def _job_fields(job_type: str, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        counts = snapshot["counts"]
        cursor = snapshot["cursor"]
        fields: Dict[str, Any] = {"failed_count": counts.get("failed", 0), "failures": snapshot["failures"]}

        if job_type == RetentionJobType.APPLY.value:
            fields.update(
                total_candidates=counts.get("total_candidates", 0),
                processed_count=counts.get("processed", 0),
                assigned_count=counts.get("assigned", 0),
            )
        else:
            result = RetentionActionResult.from_counts(counts)
            fields.update(
                total_candidates=result.candidates,
                processed_count=result.processed,
                summary=result.as_dict(),
            )

        if "policy_id" in cursor:
            fields["cursor_policy_id"] = cursor["policy_id"]
        if "document_id" in cursor:
            fields["cursor_document_id"] = cursor["document_id"]
        return fields

    def _finish(self, job, status: str, progress: Optional[JobProgress] = None,
                last_error: Optional[str] = None, summary: Optional[Dict[str, Any]] = None,
                duration: Optional[float] = None) -> None:
        fields: Dict[str, Any] = {"status": status, "completed_at": utcnow()}
        if progress is not None:
            fields.update(self._job_fields(job.job_type, progress.snapshot()))
        if summary is not None:
            fields["summary"] = summary
        if last_error is not None:
            fields["last_error"] = last_error[:2000]
        self.jobs.update_job(job.id, **fields)

        logger.info(
            f"Retention {job.job_type} job {status}",
            extra={"job_id": str(job.id), "job_type": job.job_type}
        )
        record_retention_job(
            job.job_type, status, duration,
            progress.snapshot()["counts"] if progress is not None else {},
            dry_run=job.dry_run,
        )
        event = JOB_FAILED_EVENT if status == RetentionJobStatus.FAILED.value else JOB_COMPLETED_EVENT
        payload = {"job_id": str(job.id), "job_type": job.job_type, "status": status, "dry_run": job.dry_run}
        if progress is not None:
            payload["counts"] = progress.snapshot()["counts"]
        if last_error:
            payload["error"] = last_error
        self.side_effects.publish(event, payload)

    # ==================== Control ====================

    def _cancel_event(self, job_id: UUID) -> threading.Event:
        with self._guard:
            return self._cancel_events.setdefault(str(job_id), threading.Event())

    def cancel(self, job_id: UUID):
        """
        Request cooperative cancellation.

        A pending job that never started is cancelled immediately; a
        running one stops before its next document.
        """
        job = self.jobs.get_job(job_id)
        if job is None:
            raise RetentionJobNotFound(f"Retention job {job_id} not found")
        if job.is_terminal:
            raise RetentionJobError(f"Retention job {job_id} is already {job.status}")

        self.jobs.update_job(job.id, cancel_requested=True)
        with self._guard:
            event = self._cancel_events.get(str(job_id))
            future = self._futures.get(str(job_id))
        if event is not None:
            event.set()

        if job.status == RetentionJobStatus.PENDING.value and future is not None and future.cancel():
            self.jobs.update_job(job.id, status=RetentionJobStatus.CANCELLED.value, completed_at=utcnow())

        logger.info(f"Cancellation requested for retention job {job_id}", extra={"job_id": str(job_id)})
        return self.jobs.get_job(job_id)

    def resume(self, job_id: UUID):
        """Continue an orphaned running job from its persisted cursor"""
        job = self.jobs.get_job(job_id)
        if job is None:
            raise RetentionJobNotFound(f"Retention job {job_id} not found")
        if job.status != RetentionJobStatus.RUNNING.value:
            raise RetentionJobError(f"Only running jobs can be resumed, job {job_id} is {job.status}")
        with self._guard:
            if str(job_id) in self._cancel_events:
                raise RetentionJobConflict(f"Retention job {job_id} is still running here", active_job_id=job.id)
        if self.locks.is_locked(LOCK_KEYS[job.job_type]):
            raise RetentionJobConflict(
                f"The {LOCK_KEYS[job.job_type]} lock is held, job {job_id} may still be running elsewhere",
                active_job_id=job.id,
            )

        self._track(job.id, self._pool.submit(self.execute, job.id, True))
        return job

    def get_job(self, job_id: UUID):
        return self.jobs.get_job(job_id)

    def list_jobs(self, job_type: Optional[str] = None, limit: int = 50) -> List[Any]:
        return self.jobs.list_jobs(job_type=job_type, limit=limit)

    def wait(self, job_id: UUID, timeout: Optional[float] = None):
        """Block until a locally dispatched job finishes; returns the job record"""
        with self._guard:
            future = self._futures.get(str(job_id))
        if future is not None and not future.cancelled():
            future.result(timeout=timeout)
        if future is not None and future.done():
            self._forget(str(job_id), future)
        return self.jobs.get_job(job_id)

    def shutdown(self, wait: bool = True) -> None:
        with self._guard:
            events = list(self._cancel_events.values())
        for event in events:
            event.set()
        self._pool.shutdown(wait=wait)
