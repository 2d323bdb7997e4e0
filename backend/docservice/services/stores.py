"""
SQLAlchemy implementations of the retention collaborator contracts.

Every call opens its own short-lived session from the injected session
factory, so stores are safe to share between the request thread, the
job pool and per-document worker threads. Returned rows are detached
(the factory uses expire_on_commit=False).
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, sessionmaker

from docservice.models import (
    Document, RetentionPolicy, RetentionJob, RetentionJobStatus, ACTIVE_JOB_STATUSES,
)
from docservice.services.collaborators import DocumentFilter

logger = logging.getLogger(__name__)

DOCUMENT_COLUMNS = frozenset(column.key for column in Document.__table__.columns)
JOB_COLUMNS = frozenset(column.key for column in RetentionJob.__table__.columns)


class _SessionStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def apply_document_filter(query, filter: DocumentFilter, paginate: bool = True):
    """Translate a DocumentFilter into SQL criteria"""
    if filter.category is not None:
        query = query.filter(Document.category == filter.category)
    if filter.type is not None:
        query = query.filter(Document.type == filter.type)
    if filter.exclude_policy_id is not None:
        query = query.filter(or_(
            Document.assigned_policy_id.is_(None),
            Document.assigned_policy_id != filter.exclude_policy_id,
        ))
    if filter.has_policy is True:
        query = query.filter(Document.assigned_policy_id.isnot(None))
    elif filter.has_policy is False:
        query = query.filter(Document.assigned_policy_id.is_(None))
    if filter.deadline_before is not None:
        query = query.filter(Document.retention_deadline <= filter.deadline_before)
    if filter.is_deleted is not None:
        query = query.filter(Document.is_deleted == filter.is_deleted)
    if filter.is_archived is not None:
        query = query.filter(Document.is_archived == filter.is_archived)
    if filter.review_required is not None:
        query = query.filter(Document.review_required == filter.review_required)
    if filter.legal_hold is not None:
        query = query.filter(Document.legal_hold == filter.legal_hold)

    if paginate:
        if filter.after_id is not None:
            query = query.filter(Document.id > filter.after_id)
        query = query.order_by(Document.id)
        if filter.limit is not None:
            query = query.limit(filter.limit)
    return query


class SqlDocumentStore(_SessionStore):
    """DocumentStore over the documents table"""

    def find_documents(self, filter: DocumentFilter) -> List[Document]:
        with self.session() as db:
            return apply_document_filter(db.query(Document), filter).all()

    def count_documents(self, filter: DocumentFilter) -> int:
        with self.session() as db:
            query = apply_document_filter(db.query(func.count(Document.id)), filter, paginate=False)
            return query.scalar() or 0

    def get_document(self, document_id: UUID) -> Optional[Document]:
        with self.session() as db:
            return db.get(Document, document_id)

    def update_document(self, document_id: UUID, fields: Dict[str, Any]) -> bool:
        unknown = set(fields) - DOCUMENT_COLUMNS
        if unknown:
            raise ValueError(f"Unknown document fields: {sorted(unknown)}")

        with self.session() as db:
            document = db.get(Document, document_id)
            if document is None:
                return False
            for key, value in fields.items():
                setattr(document, key, value)
            db.commit()
            return True


class SqlPolicyStore(_SessionStore):
    """PolicyStore over the retention_policies table"""

    def list_active_policies(self) -> List[RetentionPolicy]:
        """Active policies, oldest first; this order decides resolver precedence"""
        with self.session() as db:
            return db.query(RetentionPolicy).filter(
                RetentionPolicy.is_active == True  # noqa: E712
            ).order_by(RetentionPolicy.created_at, RetentionPolicy.id).all()

    def get_policy(self, policy_id: UUID) -> Optional[RetentionPolicy]:
        with self.session() as db:
            return db.get(RetentionPolicy, policy_id)


class SqlJobStore(_SessionStore):
    """JobStore over the retention_jobs table"""

    def create_job(self, job_type: str, dry_run: bool, requested_by: Optional[str] = None) -> RetentionJob:
        with self.session() as db:
            job = RetentionJob(
                job_type=job_type,
                status=RetentionJobStatus.PENDING.value,
                dry_run=dry_run,
                requested_by=requested_by,
                failures=[],
            )
            db.add(job)
            db.commit()
            db.refresh(job)
            return job

    def get_job(self, job_id: UUID) -> Optional[RetentionJob]:
        with self.session() as db:
            return db.get(RetentionJob, job_id)

    def update_job(self, job_id: UUID, **fields: Any) -> None:
        unknown = set(fields) - JOB_COLUMNS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        with self.session() as db:
            job = db.get(RetentionJob, job_id)
            if job is None:
                raise LookupError(f"Retention job {job_id} not found")
            for key, value in fields.items():
                setattr(job, key, value)
            db.commit()

    def list_jobs(self, job_type: Optional[str] = None, limit: int = 50) -> List[RetentionJob]:
        with self.session() as db:
            query = db.query(RetentionJob)
            if job_type:
                query = query.filter(RetentionJob.job_type == job_type)
            return query.order_by(RetentionJob.created_at.desc()).limit(limit).all()

    def find_active_job(self, job_type: str) -> Optional[RetentionJob]:
        with self.session() as db:
            return db.query(RetentionJob).filter(
                RetentionJob.job_type == job_type,
                RetentionJob.status.in_(sorted(ACTIVE_JOB_STATUSES)),
            ).order_by(RetentionJob.created_at).first()
