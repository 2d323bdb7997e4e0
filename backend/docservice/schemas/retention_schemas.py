"""
Pydantic schemas for document retention.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime
from uuid import UUID

from docservice.models import ConditionOperator, RetentionAction, RetentionJobType


class RetentionConditionSchema(BaseModel):
    """A field/operator/value test on document metadata"""
    field: str = Field(..., min_length=1, max_length=100, description="Document field name")
    operator: ConditionOperator
    value: Any = None


class RetentionPolicyCreate(BaseModel):
    """Create a new retention policy"""
    name: str = Field(..., min_length=1, max_length=100, description="Policy name")
    description: Optional[str] = Field(None, max_length=500, description="Policy description")
    document_category: Optional[str] = Field(None, max_length=50, description="Only documents in this category")
    document_type: Optional[str] = Field(None, max_length=50, description="Only documents of this type")
    retention_period_days: int = Field(..., ge=1, le=36500, description="Days to retain, from document creation")
    action: RetentionAction = Field(..., description="Action once the deadline passes")
    conditions: List[RetentionConditionSchema] = Field(default_factory=list, description="All must match")
    is_active: bool = Field(True, description="Whether policy is active")
    created_by: Optional[str] = Field(None, max_length=100)


class RetentionPolicyUpdate(BaseModel):
    """Update an existing retention policy"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    document_category: Optional[str] = Field(None, max_length=50)
    document_type: Optional[str] = Field(None, max_length=50)
    retention_period_days: Optional[int] = Field(None, ge=1, le=36500)
    action: Optional[RetentionAction] = None
    conditions: Optional[List[RetentionConditionSchema]] = None
    is_active: Optional[bool] = None
    updated_by: Optional[str] = Field(None, max_length=100)


class RetentionPolicyResponse(BaseModel):
    """Retention policy response"""
    id: UUID
    name: str
    description: Optional[str] = None
    document_category: Optional[str] = None
    document_type: Optional[str] = None
    retention_period_days: int
    action: str
    conditions: Optional[List[Dict[str, Any]]] = None
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RetentionPreviewResponse(BaseModel):
    """Documents a policy would match"""
    policy_id: UUID
    action: str
    retention_period_days: int
    matching_documents: int
    already_assigned: int
    due_now: int
    on_legal_hold: int
    sample_document_ids: List[str]


class RetentionRunRequest(BaseModel):
    """Start an apply or actions run"""
    dry_run: bool = Field(False, description="Count only, write nothing")
    requested_by: Optional[str] = Field(None, max_length=100)


class RetentionJobResponse(BaseModel):
    """Retention job status"""
    id: UUID
    job_type: RetentionJobType
    status: str
    dry_run: bool
    requested_by: Optional[str] = None
    total_candidates: int
    processed_count: int
    failed_count: int
    assigned_count: int
    summary: Optional[Dict[str, int]] = None
    failures: Optional[List[Dict[str, Any]]] = None
    cancel_requested: bool
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    class Config:
        from_attributes = True


class RetentionActionsResponse(BaseModel):
    """Synchronous retention action counts"""
    job_id: UUID
    status: str
    last_error: Optional[str] = None
    deleted: int
    archived: int
    reviewed: int
    failed: int
    held: int
    candidates: int
    failures: List[Dict[str, Any]] = []


class RetentionSummaryResponse(BaseModel):
    """Retention overview"""
    total_policies: int
    active_policies: int
    documents_scheduled_for_deletion: int
    documents_scheduled_for_archive: int
    documents_scheduled_for_review: int
    documents_on_legal_hold: int
    last_run_date: Optional[datetime] = None
