"""
Retention action executor.

Applies each due document's terminal action (delete, archive, review)
once its retention deadline has passed. Documents under legal hold are
never candidates, and deletes re-check the hold under the legal hold
gate's guard right before touching the blob store.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from docservice.models import AuditAction, DocumentStatus, RetentionAction
from docservice.services.collaborators import (
    BlobStore, DocumentFilter, DocumentStore, PolicyStore, SideEffects,
)
from docservice.services.job_progress import JobProgress
from docservice.services.legal_hold import LegalHoldGate
from docservice.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

DOCUMENT_DELETED_EVENT = "document.retention_deleted"
DOCUMENT_ARCHIVED_EVENT = "document.retention_archived"
DOCUMENT_REVIEW_EVENT = "document.retention_review_required"


class DanglingPolicyError(LookupError):
    """Document references a policy that no longer exists"""
    pass


class BlobDeleteTimeout(TimeoutError):
    pass


@dataclass
class RetentionActionResult:
    """Outcome counts of one executor run"""
    deleted: int = 0
    archived: int = 0
    reviewed: int = 0
    failed: int = 0
    held: int = 0
    candidates: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def processed(self) -> int:
        """Documents handled without error, held skips included"""
        return self.deleted + self.archived + self.reviewed + self.held

    @classmethod
    def from_counts(cls, counts: Dict[str, int], failures=None, cancelled: bool = False):
        return cls(
            deleted=counts.get("deleted", 0),
            archived=counts.get("archived", 0),
            reviewed=counts.get("reviewed", 0),
            failed=counts.get("failed", 0),
            held=counts.get("held", 0),
            candidates=counts.get("candidates", 0),
            failures=list(failures or []),
            cancelled=cancelled,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "deleted": self.deleted,
            "archived": self.archived,
            "reviewed": self.reviewed,
            "failed": self.failed,
            "held": self.held,
            "candidates": self.candidates,
        }


class RetentionActionExecutor:
    """Execute due retention actions in keyset-paged batches"""

    def __init__(
        self,
        document_store: DocumentStore,
        policy_store: PolicyStore,
        blob_store: BlobStore,
        legal_hold_gate: LegalHoldGate,
        side_effects: Optional[SideEffects] = None,
        batch_size: int = 100,
        max_workers: int = 1,
        blob_delete_timeout: float = 30.0,
        flush_every: int = 10,
        failure_limit: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.documents = document_store
        self.policies = policy_store
        self.blobs = blob_store
        self.gate = legal_hold_gate
        self.side_effects = side_effects or SideEffects(logger=logger)
        self.batch_size = batch_size
        self.max_workers = max(1, max_workers)
        self.blob_delete_timeout = blob_delete_timeout
        self.flush_every = flush_every
        self.failure_limit = failure_limit
        self.clock = clock

    def execute(
        self,
        dry_run: bool = False,
        actor: str = "system",
        cancel_event: Optional[threading.Event] = None,
        on_flush: Optional[Callable[[Dict[str, Any]], None]] = None,
        progress: Optional[JobProgress] = None,
        after_id: Any = None,
    ) -> RetentionActionResult:
        """
        Run all due actions.

        Args:
            dry_run: Count what would happen without writing anything
            actor: Recorded as the audit actor
            cancel_event: Checked before each document
            on_flush: Receives progress snapshots (see JobProgress)
            progress: Existing progress to continue (resumed jobs)
            after_id: Resume position within the candidate ordering

        Returns:
            RetentionActionResult with per-action counts
        """
        now = self.clock()
        progress = progress or JobProgress(
            flush_every=self.flush_every,
            failure_limit=self.failure_limit,
            on_flush=on_flush,
        )
        cancel_event = cancel_event or threading.Event()
        policy_cache: Dict[Any, Any] = {}
        cache_lock = threading.Lock()

        base_filter = DocumentFilter.due_for_action(now, limit=self.batch_size)
        worker_pool = (
            ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="retention-action")
            if self.max_workers > 1 else None
        )

        logger.info(
            f"Retention actions starting (dry_run={dry_run}, cutoff={now.isoformat()})",
            extra={"dry_run": dry_run}
        )

        def lookup_policy(policy_id):
            with cache_lock:
                if policy_id in policy_cache:
                    return policy_cache[policy_id]
            policy = self.policies.get_policy(policy_id)
            with cache_lock:
                policy_cache[policy_id] = policy
            return policy

        def handle(document):
            if cancel_event.is_set():
                return
            try:
                policy = lookup_policy(document.assigned_policy_id)
                if policy is None:
                    raise DanglingPolicyError(
                        f"Assigned policy {document.assigned_policy_id} no longer exists"
                    )
                outcome = self._apply(document, policy, dry_run, actor)
            except Exception as e:
                logger.warning(
                    f"Retention action failed for document {document.id}: {e}",
                    extra={"document_id": str(document.id), "policy_id": str(document.assigned_policy_id)}
                )
                progress.document_failed(document.id, e, policy_id=document.assigned_policy_id)
                return
            progress.document_done(**{outcome: 1})

        try:
            while not cancel_event.is_set():
                page = self.documents.find_documents(base_filter.page_after(after_id))
                if not page:
                    break
                progress.add(candidates=len(page))

                if worker_pool is None:
                    for document in page:
                        if cancel_event.is_set():
                            break
                        handle(document)
                        progress.set_cursor(document_id=document.id)
                else:
                    for future in [worker_pool.submit(handle, document) for document in page]:
                        future.result()
                    if not cancel_event.is_set():
                        progress.set_cursor(document_id=page[-1].id)

                after_id = page[-1].id
                progress.flush()

                if len(page) < self.batch_size:
                    break
        finally:
            if worker_pool is not None:
                worker_pool.shutdown(wait=True, cancel_futures=True)

        progress.flush()
        snapshot = progress.snapshot()
        result = RetentionActionResult.from_counts(
            snapshot["counts"], snapshot["failures"], cancelled=cancel_event.is_set()
        )
        logger.info(
            f"Retention actions finished: deleted={result.deleted}, archived={result.archived}, "
            f"reviewed={result.reviewed}, held={result.held}, failed={result.failed}",
            extra={"dry_run": dry_run}
        )
        return result

    def _apply(self, document, policy, dry_run: bool, actor: str) -> str:
        """Apply one action; returns the name of the counter to bump"""
        action = policy.action
        if action == RetentionAction.DELETE.value:
            return self._delete(document, policy, dry_run, actor)
        if action == RetentionAction.ARCHIVE.value:
            return self._archive(document, policy, dry_run, actor)
        if action == RetentionAction.REVIEW.value:
            return self._review(document, policy, dry_run, actor)
        raise ValueError(f"Unknown retention action '{action}' on policy {policy.id}")

    def _delete(self, document, policy, dry_run, actor) -> str:
        with self.gate.guard(document.id):
            if self.gate.is_on_hold(document.id):
                logger.info(
                    f"Skipping delete of document {document.id}: legal hold placed after selection",
                    extra={"document_id": str(document.id)}
                )
                return "held"
            if dry_run:
                return "deleted"

            existed = self._delete_blob(document)
            if not existed:
                logger.warning(
                    f"Blob for document {document.id} was already missing: {document.storage_path}",
                    extra={"document_id": str(document.id)}
                )

            now = self.clock()
            self.documents.update_document(document.id, {
                "is_deleted": True,
                "deleted_at": now,
                "status": DocumentStatus.DELETED.value,
            })

        self._notify(document, policy, actor, AuditAction.DOCUMENT_DELETED, DOCUMENT_DELETED_EVENT)
        return "deleted"

    def _delete_blob(self, document) -> bool:
        """
        Delete the document's blob on a thread of its own.

        A delete that overruns ``blob_delete_timeout`` is reported as
        BlobDeleteTimeout but keeps running; the legal hold gate tracks it
        as in flight until it returns. Other documents never queue behind it.
        """
        done = self.gate.begin_delete(document.id)
        outcome: Dict[str, Any] = {}

        def run():
            try:
                outcome["existed"] = self.blobs.delete(document.storage_path)
            except Exception as e:
                outcome["error"] = e
            finally:
                self.gate.end_delete(document.id, done)
                if outcome.get("timed_out"):
                    logger.warning(
                        f"Blob delete for document {document.id} returned after its timeout: {document.storage_path}",
                        extra={"document_id": str(document.id)}
                    )

        worker = threading.Thread(target=run, name=f"blob-delete-{document.id}", daemon=True)
        worker.start()
        if not done.wait(self.blob_delete_timeout):
            outcome["timed_out"] = True
            raise BlobDeleteTimeout(
                f"Blob delete timed out after {self.blob_delete_timeout}s: {document.storage_path}"
            )
        if "error" in outcome:
            raise outcome["error"]
        return outcome["existed"]

    def _archive(self, document, policy, dry_run, actor) -> str:
        if dry_run:
            return "archived"
        now = self.clock()
        self.documents.update_document(document.id, {
            "is_archived": True,
            "archived_at": now,
            "status": DocumentStatus.REVIEW_REQUIRED.value,
            "review_required_at": now,
        })
        self._notify(document, policy, actor, AuditAction.DOCUMENT_ARCHIVED, DOCUMENT_ARCHIVED_EVENT)
        return "archived"

    def _review(self, document, policy, dry_run, actor) -> str:
        if dry_run:
            return "reviewed"
        now = self.clock()
        self.documents.update_document(document.id, {
            "review_required": True,
            "review_required_at": now,
            "status": DocumentStatus.REVIEW_REQUIRED.value,
        })
        self._notify(document, policy, actor, AuditAction.DOCUMENT_REVIEW_REQUIRED, DOCUMENT_REVIEW_EVENT)
        return "reviewed"

    def _notify(self, document, policy, actor, audit_action: AuditAction, event_type: str) -> None:
        metadata = {
            "policy_id": str(policy.id),
            "policy_name": policy.name,
            "retention_deadline": document.retention_deadline.isoformat() if document.retention_deadline else None,
        }
        self.side_effects.audit("document", document.id, audit_action.value, actor, metadata)
        self.side_effects.publish(event_type, {"document_id": str(document.id), **metadata})
