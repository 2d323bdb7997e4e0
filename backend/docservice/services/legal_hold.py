"""
Legal hold gate.

The only component that writes a document's legal-hold fields. A hold
blocks destructive retention actions; the action executor re-checks it
through ``is_on_hold`` under ``guard`` immediately before deleting, and
``set_hold``/``clear_hold`` take the same guard, so inside one process a
hold can never land between that re-check and the start of the blob
delete.

A blob delete that outlives the executor's timeout keeps running on its
own thread. The document stays registered as in flight until the delete
returns, and ``set_hold`` waits for it (up to ``in_flight_wait`` seconds)
before writing the hold. If that wait runs out the hold is written anyway
and the race is logged, since the blob may still disappear under it.

Across processes the guard does not apply: a hold written by another
process after the re-check but before the blob delete will not stop that
delete. Run destructive action jobs on one worker (lock backend "redis"
plus a single Celery queue consumer) when that window matters.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
from uuid import UUID

from docservice.metrics import record_legal_hold_change
from docservice.models import AuditAction
from docservice.services.collaborators import DocumentStore, SideEffects
from docservice.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

LEGAL_HOLD_SET_EVENT = "document.legal_hold_set"
LEGAL_HOLD_REMOVED_EVENT = "document.legal_hold_removed"


class DocumentNotFound(LookupError):
    """Raised when a hold targets an unknown document"""
    pass


class LegalHoldGate:
    """Set, clear and check legal holds with a per-document guard"""

    STRIPES = 64

    def __init__(
        self,
        document_store: DocumentStore,
        side_effects: Optional[SideEffects] = None,
        in_flight_wait: float = 60.0,
    ):
        self.documents = document_store
        self.side_effects = side_effects or SideEffects(logger=logger)
        self.in_flight_wait = in_flight_wait
        self._stripes = [threading.RLock() for _ in range(self.STRIPES)]
        self._in_flight: Dict[str, threading.Event] = {}
        self._in_flight_lock = threading.Lock()

    def _stripe(self, document_id: Any) -> threading.RLock:
        return self._stripes[hash(str(document_id)) % self.STRIPES]

    @contextmanager
    def guard(self, document_id: Any) -> Iterator[None]:
        """Hold the document's guard; hold changes for it wait until exit"""
        lock = self._stripe(document_id)
        with lock:
            yield

    def begin_delete(self, document_id: Any) -> threading.Event:
        """
        Register a blob delete for the document as in flight.

        Call under ``guard``. The returned event is set by ``end_delete``.
        Raises RuntimeError while an earlier delete for the same document
        has not returned yet.
        """
        key = str(document_id)
        done = threading.Event()
        with self._in_flight_lock:
            if key in self._in_flight:
                raise RuntimeError(f"Blob delete for document {document_id} is still in flight")
            self._in_flight[key] = done
        return done

    def end_delete(self, document_id: Any, done: threading.Event) -> None:
        with self._in_flight_lock:
            if self._in_flight.get(str(document_id)) is done:
                del self._in_flight[str(document_id)]
        done.set()

    def delete_in_flight(self, document_id: Any) -> bool:
        with self._in_flight_lock:
            return str(document_id) in self._in_flight

    def _wait_for_delete(self, document_id: Any) -> None:
        with self._in_flight_lock:
            done = self._in_flight.get(str(document_id))
        if done is None:
            return
        logger.info(
            f"Legal hold on document {document_id} waits for an in-flight blob delete",
            extra={"document_id": str(document_id)}
        )
        if not done.wait(self.in_flight_wait):
            logger.error(
                f"Blob delete for document {document_id} still running after {self.in_flight_wait}s; "
                f"writing the legal hold anyway, the blob may be lost",
                extra={"document_id": str(document_id)}
            )

    def is_on_hold(self, document_id: UUID) -> bool:
        """Fresh read from the store, never cached"""
        document = self.documents.get_document(document_id)
        if document is None:
            raise DocumentNotFound(f"Document {document_id} not found")
        return bool(document.legal_hold)

    def get_hold(self, document_id: UUID) -> Dict[str, Any]:
        document = self.documents.get_document(document_id)
        if document is None:
            raise DocumentNotFound(f"Document {document_id} not found")
        return {
            "document_id": str(document.id),
            "legal_hold": bool(document.legal_hold),
            "reason": document.legal_hold_reason,
            "set_by": document.legal_hold_set_by,
            "set_at": document.legal_hold_set_at,
        }

    def set_hold(self, document_id: UUID, set_by: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Place a document under legal hold (re-setting updates the reason)"""
        with self.guard(document_id):
            if self.documents.get_document(document_id) is None:
                raise DocumentNotFound(f"Document {document_id} not found")
            self._wait_for_delete(document_id)

            now = utcnow()
            self.documents.update_document(document_id, {
                "legal_hold": True,
                "legal_hold_reason": reason,
                "legal_hold_set_by": set_by,
                "legal_hold_set_at": now,
            })

        logger.info(
            f"Legal hold set on document {document_id} by {set_by}",
            extra={"document_id": str(document_id)}
        )
        record_legal_hold_change("set")
        self.side_effects.audit(
            "document", document_id, AuditAction.LEGAL_HOLD_SET.value, set_by, {"reason": reason}
        )
        self.side_effects.publish(LEGAL_HOLD_SET_EVENT, {
            "document_id": str(document_id),
            "set_by": set_by,
            "reason": reason,
        })
        return self.get_hold(document_id)

    def clear_hold(self, document_id: UUID, cleared_by: str) -> Dict[str, Any]:
        """Release a legal hold; the document becomes eligible for actions again"""
        with self.guard(document_id):
            document = self.documents.get_document(document_id)
            if document is None:
                raise DocumentNotFound(f"Document {document_id} not found")
            previous_reason = document.legal_hold_reason

            self.documents.update_document(document_id, {
                "legal_hold": False,
                "legal_hold_reason": None,
                "legal_hold_set_by": None,
                "legal_hold_set_at": None,
            })

        logger.info(
            f"Legal hold removed from document {document_id} by {cleared_by}",
            extra={"document_id": str(document_id)}
        )
        record_legal_hold_change("removed")
        self.side_effects.audit(
            "document", document_id, AuditAction.LEGAL_HOLD_REMOVED.value, cleared_by,
            {"previous_reason": previous_reason}
        )
        self.side_effects.publish(LEGAL_HOLD_REMOVED_EVENT, {
            "document_id": str(document_id),
            "cleared_by": cleared_by,
        })
        return self.get_hold(document_id)
