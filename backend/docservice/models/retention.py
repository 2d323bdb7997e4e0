"""
Document retention models.

Implements:
- Retention policies (scope filters, conditions, duration, terminal action)
- Retention jobs (one run of the policy orchestrator or the action executor)
"""

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, Uuid, Index
from docservice.utils.time_utils import utcnow
import uuid
import enum
from docservice.database import Base
from docservice.models.types import JSONType


class RetentionAction(str, enum.Enum):
    """Terminal action applied once a document's deadline passes"""
    DELETE = "delete"
    ARCHIVE = "archive"
    REVIEW = "review"


class ConditionOperator(str, enum.Enum):
    """Operators available in policy conditions"""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class RetentionJobType(str, enum.Enum):
    """What a retention job runs"""
    APPLY = "apply"  # Assign policies + deadlines
    ACTIONS = "actions"  # Execute due terminal actions


class RetentionJobStatus(str, enum.Enum):
    """
    Job state machine: pending -> running -> completed | failed | cancelled.

    Terminal states are never left.
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = frozenset({
    RetentionJobStatus.COMPLETED.value,
    RetentionJobStatus.FAILED.value,
    RetentionJobStatus.CANCELLED.value,
})

ACTIVE_JOB_STATUSES = frozenset({
    RetentionJobStatus.PENDING.value,
    RetentionJobStatus.RUNNING.value,
})


class RetentionPolicy(Base):
    """
    Document retention policy.

    A document is in scope when its category/type match the optional
    pre-filters and every condition matches. The deadline is
    ``created_at + retention_period_days``.
    """
    __tablename__ = "retention_policies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Policy identification
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(String(500), nullable=True)

    # Scope pre-filters (ANDed with conditions)
    document_category = Column(String(50), nullable=True, index=True)
    document_type = Column(String(50), nullable=True)

    # Retention configuration
    retention_period_days = Column(Integer, nullable=False)
    action = Column(String(20), nullable=False)  # RetentionAction value
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Ordered list of {"field", "operator", "value"}
    conditions = Column(JSONType, nullable=True)

    # Metadata
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<RetentionPolicy(name={self.name}, action={self.action}, days={self.retention_period_days})>"


class RetentionJob(Base):
    """
    One run of the retention orchestrator or action executor.

    Counters are monotonically non-decreasing within a run and are
    persisted incrementally so a live run can be monitored.
    """
    __tablename__ = "retention_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type = Column(String(20), nullable=False, index=True)  # RetentionJobType value
    status = Column(String(20), nullable=False, default=RetentionJobStatus.PENDING.value, index=True)
    dry_run = Column(Boolean, default=False, nullable=False)
    requested_by = Column(String(100), nullable=True)

    # Progress
    total_candidates = Column(Integer, default=0, nullable=False)
    processed_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    assigned_count = Column(Integer, default=0, nullable=False)
    summary = Column(JSONType, nullable=True)  # Action counts for executor runs
    failures = Column(JSONType, nullable=True)  # [{"document_id", "error"}], capped

    # Resume position
    cursor_policy_id = Column(Uuid, nullable=True)
    cursor_document_id = Column(Uuid, nullable=True)

    cancel_requested = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True, index=True)
    completed_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_retention_jobs_type_status", "job_type", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def __repr__(self):
        return f"<RetentionJob(id={self.id}, type={self.job_type}, status={self.status})>"
