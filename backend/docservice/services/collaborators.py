"""
Collaborator contracts consumed by the retention engine.

The engine never implements document storage, blob storage, auditing or
event delivery itself; it talks to these narrow interfaces. SQLAlchemy,
filesystem and HTTP implementations live in stores.py, storage.py,
audit_service.py and event_publisher.py.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID


@dataclass(frozen=True)
class DocumentFilter:
    """
    Document query used for candidate discovery.

    Every attribute left as None is not filtered on. Results are ordered by
    document id; ``after_id`` + ``limit`` give keyset pagination that stays
    correct while matching rows are being updated.
    """
    category: Optional[str] = None
    type: Optional[str] = None
    exclude_policy_id: Optional[UUID] = None  # not currently bound to this policy
    has_policy: Optional[bool] = None
    deadline_before: Optional[datetime] = None  # retention_deadline <= value
    is_deleted: Optional[bool] = None
    is_archived: Optional[bool] = None
    review_required: Optional[bool] = None
    legal_hold: Optional[bool] = None
    after_id: Optional[UUID] = None
    limit: Optional[int] = None

    @classmethod
    def policy_candidates(cls, policy: Any, limit: Optional[int] = None) -> "DocumentFilter":
        """Live documents in a policy's scope that are not bound to it yet"""
        return cls(
            category=policy.document_category or None,
            type=policy.document_type or None,
            exclude_policy_id=policy.id,
            is_deleted=False,
            limit=limit,
        )

    @classmethod
    def due_for_action(cls, now: datetime, limit: Optional[int] = None) -> "DocumentFilter":
        """Documents whose deadline has passed and that still await their action"""
        return cls(
            has_policy=True,
            deadline_before=now,
            is_deleted=False,
            is_archived=False,
            review_required=False,
            legal_hold=False,
            limit=limit,
        )

    def page_after(self, after_id: Optional[UUID]) -> "DocumentFilter":
        return replace(self, after_id=after_id)


@dataclass
class DocumentFailure:
    """A per-document failure recorded on a job"""
    document_id: str
    error: str
    policy_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"document_id": self.document_id, "error": self.error}
        if self.policy_id:
            data["policy_id"] = self.policy_id
        return data


class DocumentStore(Protocol):
    def find_documents(self, filter: DocumentFilter) -> List[Any]: ...

    def get_document(self, document_id: UUID) -> Optional[Any]: ...

    def update_document(self, document_id: UUID, fields: Dict[str, Any]) -> bool: ...

    def count_documents(self, filter: DocumentFilter) -> int: ...


class PolicyStore(Protocol):
    def list_active_policies(self) -> List[Any]: ...

    def get_policy(self, policy_id: UUID) -> Optional[Any]: ...


class BlobStore(Protocol):
    def delete(self, storage_key: str) -> bool:
        """Delete a blob; False when it was already absent, raises on error"""
        ...


class AuditSink(Protocol):
    def record(
        self,
        entity_type: str,
        entity_id: Any,
        action: str,
        actor_id: Optional[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None: ...


class EventPublisher(Protocol):
    def publish(self, event_type: str, payload: Dict[str, Any]) -> None: ...


class JobStore(Protocol):
    def create_job(self, job_type: str, dry_run: bool, requested_by: Optional[str] = None) -> Any: ...

    def get_job(self, job_id: UUID) -> Optional[Any]: ...

    def update_job(self, job_id: UUID, **fields: Any) -> None: ...

    def list_jobs(self, job_type: Optional[str] = None, limit: int = 50) -> List[Any]: ...

    def find_active_job(self, job_type: str) -> Optional[Any]: ...


@dataclass
class SideEffects:
    """
    Fire-and-forget audit and event delivery.

    Failures are logged and swallowed so they never fail a retention
    operation.
    """
    audit_sink: Optional[AuditSink] = None
    event_publisher: Optional[EventPublisher] = None
    logger: Any = field(default=None, repr=False)

    def audit(self, entity_type: str, entity_id: Any, action: str, actor_id: Optional[str],
              metadata: Optional[Dict[str, Any]] = None) -> None:
        if self.audit_sink is None:
            return
        try:
            self.audit_sink.record(entity_type, str(entity_id), action, actor_id, metadata)
        except Exception as e:
            if self.logger:
                self.logger.warning(f"Audit record failed for {entity_type} {entity_id} ({action}): {e}")

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.event_publisher is None:
            return
        try:
            self.event_publisher.publish(event_type, payload)
        except Exception as e:
            if self.logger:
                self.logger.warning(f"Event publish failed for {event_type}: {e}")
