"""
Per-document retention and legal hold routes.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from docservice.database import get_db
from docservice.error_handlers import NotFoundError
from docservice.services.legal_hold import DocumentNotFound
from docservice.services.retention_runtime import RetentionRuntime, get_retention_runtime
from docservice.services.retention_service import RetentionService, RetentionError
from docservice.schemas.document_schemas import (
    DocumentRetentionResponse,
    LegalHoldRequest,
    LegalHoldResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])


@router.get(
    "/{document_id}/retention",
    response_model=DocumentRetentionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get document retention status"
)
async def get_document_retention(
    document_id: UUID,
    db: Session = Depends(get_db),
):
    """
    Retention status of a document: assigned policy, deadline, action
    and days left until the action runs.
    """
    service = RetentionService(db)

    try:
        info = service.get_document_retention_info(document_id)
    except RetentionError as e:
        raise NotFoundError(str(e), resource_type="document")

    return DocumentRetentionResponse(**info)


@router.get(
    "/{document_id}/legal-hold",
    response_model=LegalHoldResponse,
    status_code=status.HTTP_200_OK,
    summary="Get legal hold"
)
async def get_legal_hold(
    document_id: UUID,
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    try:
        hold = runtime.legal_holds.get_hold(document_id)
    except DocumentNotFound as e:
        raise NotFoundError(str(e), resource_type="document")

    return LegalHoldResponse(**hold)


@router.post(
    "/{document_id}/legal-hold",
    response_model=LegalHoldResponse,
    status_code=status.HTTP_200_OK,
    summary="Place legal hold"
)
def set_legal_hold(
    document_id: UUID,
    request: LegalHoldRequest,
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    """
    Place a document under legal hold.

    A held document is skipped by retention actions until the hold is
    removed. When this call returns, no deletion of the document is in
    flight in this process.
    """
    try:
        hold = runtime.legal_holds.set_hold(document_id, set_by=request.set_by, reason=request.reason)
    except DocumentNotFound as e:
        raise NotFoundError(str(e), resource_type="document")

    return LegalHoldResponse(**hold)


@router.delete(
    "/{document_id}/legal-hold",
    response_model=LegalHoldResponse,
    status_code=status.HTTP_200_OK,
    summary="Remove legal hold"
)
def remove_legal_hold(
    document_id: UUID,
    cleared_by: str = Query(..., min_length=1, max_length=100, description="Who removes the hold"),
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    """Remove a legal hold; the document becomes eligible for retention actions again."""
    try:
        hold = runtime.legal_holds.clear_hold(document_id, cleared_by=cleared_by)
    except DocumentNotFound as e:
        raise NotFoundError(str(e), resource_type="document")

    return LegalHoldResponse(**hold)
