"""
Pydantic schemas for per-document retention and legal hold endpoints.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from uuid import UUID


class DocumentRetentionResponse(BaseModel):
    """Retention status of one document"""
    document_id: UUID
    status: str
    is_on_legal_hold: bool
    policy_id: Optional[UUID] = None
    policy_name: Optional[str] = None
    retention_deadline: Optional[datetime] = None
    action: Optional[str] = None
    days_until_action: Optional[int] = None


class LegalHoldRequest(BaseModel):
    """Place a document under legal hold"""
    set_by: str = Field(..., min_length=1, max_length=100, description="Who places the hold")
    reason: Optional[str] = Field(None, max_length=500)


class LegalHoldResponse(BaseModel):
    """Legal hold state of one document"""
    document_id: UUID
    legal_hold: bool
    reason: Optional[str] = None
    set_by: Optional[str] = None
    set_at: Optional[datetime] = None
