"""
Document model (the part of an HR document the retention engine works on).

Ownership of fields:
- assigned_policy_id / retention_deadline: written by the retention job orchestrator
- legal_hold*: written only by the legal hold gate
- is_deleted / is_archived / review_required: written only by the action executor
"""

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, Uuid, Index
from docservice.utils.time_utils import utcnow
import uuid
import enum
from docservice.database import Base


class DocumentStatus(str, enum.Enum):
    """Lifecycle status of a document"""
    ACTIVE = "ACTIVE"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"
    DELETED = "DELETED"


# Fields only the legal hold gate may write
LEGAL_HOLD_FIELDS = frozenset({
    "legal_hold",
    "legal_hold_reason",
    "legal_hold_set_by",
    "legal_hold_set_at",
})


class Document(Base):
    """HR document metadata row"""
    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Descriptive fields (usable in retention conditions)
    filename = Column(String(500), nullable=False)
    title = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=True, index=True)  # e.g. FINANCIAL, HR, PAYROLL
    type = Column(String(50), nullable=True, index=True)  # e.g. CONTRACT, PAYSLIP
    employee_id = Column(String(100), nullable=True, index=True)
    department = Column(String(100), nullable=True)
    mime_type = Column(String(100), nullable=True)
    file_size = Column(Integer, nullable=True)
    status = Column(String(30), default=DocumentStatus.ACTIVE.value, nullable=False)

    # Blob storage key
    storage_path = Column(String(1000), nullable=False)

    # Retention assignment (weak reference, no foreign key)
    assigned_policy_id = Column(Uuid, nullable=True, index=True)
    retention_deadline = Column(DateTime, nullable=True, index=True)

    # Legal hold
    legal_hold = Column(Boolean, default=False, nullable=False, index=True)
    legal_hold_reason = Column(String(500), nullable=True)
    legal_hold_set_by = Column(String(100), nullable=True)
    legal_hold_set_at = Column(DateTime, nullable=True)

    # Terminal state
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime, nullable=True)
    review_required = Column(Boolean, default=False, nullable=False)
    review_required_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_documents_due", "retention_deadline", "is_deleted", "legal_hold"),
    )

    def __repr__(self):
        return f"<Document(id={self.id}, filename={self.filename}, category={self.category})>"
