"""
Audit logging models for the document retention lifecycle.

Tracks:
- Terminal retention actions (delete, archive, review)
- Legal hold changes
- Policy management
"""

from sqlalchemy import Column, String, DateTime, Uuid
from docservice.utils.time_utils import utcnow
import uuid
import enum
from docservice.database import Base
from docservice.models.types import JSONType


class AuditAction(str, enum.Enum):
    """Types of auditable actions"""
    # Retention actions
    DOCUMENT_DELETED = "retention_deleted"
    DOCUMENT_ARCHIVED = "archived_retention"
    DOCUMENT_REVIEW_REQUIRED = "review_required"

    # Legal hold
    LEGAL_HOLD_SET = "legal_hold_set"
    LEGAL_HOLD_REMOVED = "legal_hold_removed"

    # Policy management
    POLICY_CREATE = "retention_policy_create"
    POLICY_UPDATE = "retention_policy_update"
    POLICY_DELETE = "retention_policy_delete"


class AuditLog(Base):
    """
    Audit log entry.

    Written fire-and-forget by the retention engine; a failed write never
    fails the operation being audited.
    """
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Target information
    entity_type = Column(String(50), nullable=False, index=True)  # e.g. "document", "retention_policy"
    entity_id = Column(String(100), nullable=False, index=True)

    # Action identification
    action = Column(String(50), nullable=False, index=True)
    actor_id = Column(String(100), nullable=True, index=True)  # "system" for batch jobs

    # Additional context ("metadata" is reserved on declarative classes)
    details = Column("metadata", JSONType, nullable=True)

    # Timestamp
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action={self.action}, entity={self.entity_type}:{self.entity_id})>"
