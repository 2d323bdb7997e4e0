"""
SQLAlchemy models for the HR document retention service.

All models are exported from this module for easy importing.
"""

# Document models
from docservice.models.document import Document, DocumentStatus, LEGAL_HOLD_FIELDS

# Retention models
from docservice.models.retention import (
    RetentionPolicy, RetentionJob,
    RetentionAction, ConditionOperator,
    RetentionJobType, RetentionJobStatus,
    TERMINAL_JOB_STATUSES, ACTIVE_JOB_STATUSES,
)

# Audit models
from docservice.models.audit import AuditLog, AuditAction

__all__ = [
    # Document models
    "Document",
    "DocumentStatus",
    "LEGAL_HOLD_FIELDS",
    # Retention models
    "RetentionPolicy",
    "RetentionJob",
    "RetentionAction",
    "ConditionOperator",
    "RetentionJobType",
    "RetentionJobStatus",
    "TERMINAL_JOB_STATUSES",
    "ACTIVE_JOB_STATUSES",
    # Audit models
    "AuditLog",
    "AuditAction",
]
