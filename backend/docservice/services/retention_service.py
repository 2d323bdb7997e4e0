"""
Document Retention Service.

Provides:
- Policy management (CRUD) with validation
- Policy preview (which documents a policy would bind)
- Retention reporting (summary, per-document retention info)
- Default HR policy set
"""

import logging
import math
from typing import List, Dict, Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy import func

from docservice.models import (
    RetentionPolicy, RetentionAction, RetentionJob, Document, AuditAction,
)
from docservice.services.audit_service import AuditService
from docservice.services.retention_conditions import ConditionValidationError, matches_all, validate_conditions
from docservice.services.retention_resolver import compute_deadline
from docservice.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

# Fields policy conditions may reference
CONDITION_FIELDS = frozenset(column.key for column in Document.__table__.columns)

UPDATABLE_FIELDS = frozenset({
    "name", "description", "document_category", "document_type",
    "retention_period_days", "action", "conditions", "is_active",
})

PREVIEW_SAMPLE_SIZE = 20


class RetentionError(Exception):
    """Raised when a retention operation is invalid"""
    pass


class RetentionPolicyNotFound(RetentionError):
    pass


class RetentionService:
    """Service for managing document retention policies"""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditService(db)

    # ==================== Validation ====================

    @staticmethod
    def _validate_period(retention_period_days: Any) -> int:
        if isinstance(retention_period_days, bool) or not isinstance(retention_period_days, int):
            raise RetentionError("retention_period_days must be an integer")
        if retention_period_days <= 0:
            raise RetentionError("retention_period_days must be positive")
        return retention_period_days

    @staticmethod
    def _validate_action(action: Any) -> str:
        value = getattr(action, "value", action)
        if value not in {a.value for a in RetentionAction}:
            raise RetentionError(f"Unknown retention action: {value}")
        return value

    @staticmethod
    def _validate_conditions(conditions: Any) -> List[dict]:
        try:
            return validate_conditions(conditions, allowed_fields=CONDITION_FIELDS)
        except ConditionValidationError as e:
            raise RetentionError(str(e))

    def _ensure_unique_name(self, name: str, exclude_id: Optional[UUID] = None) -> None:
        query = self.db.query(RetentionPolicy).filter(RetentionPolicy.name == name)
        if exclude_id is not None:
            query = query.filter(RetentionPolicy.id != exclude_id)
        if query.first():
            raise RetentionError(f"Policy with name '{name}' already exists")

    # ==================== Policy Management ====================

    def create_policy(
        self,
        name: str,
        retention_period_days: int,
        action: RetentionAction,
        document_category: Optional[str] = None,
        document_type: Optional[str] = None,
        conditions: Optional[List[Dict]] = None,
        description: Optional[str] = None,
        is_active: bool = True,
        created_by: Optional[str] = None,
    ) -> RetentionPolicy:
        """Create a new retention policy"""
        self._ensure_unique_name(name)

        policy = RetentionPolicy(
            name=name,
            description=description,
            document_category=document_category or None,
            document_type=document_type or None,
            retention_period_days=self._validate_period(retention_period_days),
            action=self._validate_action(action),
            conditions=self._validate_conditions(conditions),
            is_active=is_active,
            created_by=created_by,
        )

        self.db.add(policy)
        self.db.commit()
        self.db.refresh(policy)

        logger.info(
            f"Created retention policy: {name} ({policy.action}, {policy.retention_period_days} days)",
            extra={"policy_id": str(policy.id)}
        )
        self._audit_policy(policy.id, AuditAction.POLICY_CREATE, created_by, self._policy_metadata(policy))

        return policy

    def update_policy(
        self,
        policy_id: UUID,
        updated_by: Optional[str] = None,
        **updates,
    ) -> RetentionPolicy:
        """Update a retention policy"""
        policy = self.get_policy(policy_id)

        if not policy:
            raise RetentionPolicyNotFound("Policy not found")

        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise RetentionError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        if "name" in updates:
            if not updates["name"]:
                raise RetentionError("name must not be empty")
            self._ensure_unique_name(updates["name"], exclude_id=policy.id)
        if "retention_period_days" in updates:
            updates["retention_period_days"] = self._validate_period(updates["retention_period_days"])
        if "action" in updates:
            updates["action"] = self._validate_action(updates["action"])
        if "conditions" in updates:
            updates["conditions"] = self._validate_conditions(updates["conditions"])
        for scope in ("document_category", "document_type"):
            if scope in updates:
                updates[scope] = updates[scope] or None

        for key, value in updates.items():
            setattr(policy, key, value)

        self.db.commit()
        self.db.refresh(policy)

        logger.info(f"Updated retention policy: {policy.name}", extra={"policy_id": str(policy.id)})
        self._audit_policy(
            policy.id, AuditAction.POLICY_UPDATE, updated_by,
            {**self._policy_metadata(policy), "fields": sorted(updates)}
        )

        return policy

    def delete_policy(self, policy_id: UUID, deleted_by: Optional[str] = None) -> int:
        """
        Delete a retention policy.

        Documents bound to it are detached first (assignment and deadline
        cleared) so no dangling reference is left behind.

        Returns:
            Number of documents detached
        """
        policy = self.get_policy(policy_id)

        if not policy:
            raise RetentionPolicyNotFound("Policy not found")

        name = policy.name
        metadata = self._policy_metadata(policy)
        detached = self.db.query(Document).filter(
            Document.assigned_policy_id == policy.id
        ).update(
            {Document.assigned_policy_id: None, Document.retention_deadline: None},
            synchronize_session=False,
        )
        self.db.delete(policy)
        self.db.commit()

        logger.info(
            f"Deleted retention policy: {name} (detached {detached} documents)",
            extra={"policy_id": str(policy_id)}
        )
        self._audit_policy(
            policy_id, AuditAction.POLICY_DELETE, deleted_by, {**metadata, "detached_documents": detached}
        )

        return detached

    def get_policy(self, policy_id: UUID) -> Optional[RetentionPolicy]:
        """Get a policy by ID"""
        return self.db.query(RetentionPolicy).filter(
            RetentionPolicy.id == policy_id
        ).first()

    def get_policies(
        self,
        document_category: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[RetentionPolicy]:
        """Get all policies with optional filters, in resolver precedence order"""
        query = self.db.query(RetentionPolicy)

        if document_category:
            query = query.filter(RetentionPolicy.document_category == document_category)
        if is_active is not None:
            query = query.filter(RetentionPolicy.is_active == is_active)

        return query.order_by(RetentionPolicy.created_at, RetentionPolicy.id).all()

    @staticmethod
    def _policy_metadata(policy: RetentionPolicy) -> Dict[str, Any]:
        return {"name": policy.name, "action": policy.action,
                "retention_period_days": policy.retention_period_days}

    def _audit_policy(self, policy_id: Any, action: AuditAction, actor: Optional[str],
                      metadata: Dict[str, Any]) -> None:
        try:
            self.audit.record("retention_policy", policy_id, action.value, actor, metadata)
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Audit record failed for policy {policy_id}: {e}")

    # ==================== Preview ====================

    def preview_policy(self, policy: RetentionPolicy) -> Dict[str, Any]:
        """
        Preview which live documents a policy matches.

        Evaluates scope and conditions only; precedence against other
        policies is decided at apply time.
        """
        now = utcnow()
        query = self.db.query(Document).filter(Document.is_deleted == False)  # noqa: E712
        if policy.document_category:
            query = query.filter(Document.category == policy.document_category)
        if policy.document_type:
            query = query.filter(Document.type == policy.document_type)

        matching = 0
        already_assigned = 0
        due_now = 0
        on_legal_hold = 0
        sample = []

        for document in query.order_by(Document.id).yield_per(500):
            if not matches_all(document, policy.conditions):
                continue
            matching += 1
            if document.assigned_policy_id == policy.id:
                already_assigned += 1
            if document.legal_hold:
                on_legal_hold += 1
            if compute_deadline(document.created_at, policy.retention_period_days) <= now:
                due_now += 1
            if len(sample) < PREVIEW_SAMPLE_SIZE:
                sample.append(str(document.id))

        return {
            "policy_id": policy.id,
            "action": policy.action,
            "retention_period_days": policy.retention_period_days,
            "matching_documents": matching,
            "already_assigned": already_assigned,
            "due_now": due_now,
            "on_legal_hold": on_legal_hold,
            "sample_document_ids": sample,
        }

    # ==================== Reporting ====================

    def get_summary(self) -> Dict[str, Any]:
        """Retention overview: policy counts, documents due per action, last run"""
        now = utcnow()

        total_policies = self.db.query(func.count(RetentionPolicy.id)).scalar() or 0
        active_policies = self.db.query(func.count(RetentionPolicy.id)).filter(
            RetentionPolicy.is_active == True  # noqa: E712
        ).scalar() or 0

        due_rows = self.db.query(RetentionPolicy.action, func.count(Document.id)).join(
            RetentionPolicy, Document.assigned_policy_id == RetentionPolicy.id
        ).filter(
            Document.retention_deadline <= now,
            Document.is_deleted == False,  # noqa: E712
            Document.legal_hold == False,  # noqa: E712
            Document.is_archived == False,  # noqa: E712
            Document.review_required == False,  # noqa: E712
        ).group_by(RetentionPolicy.action).all()
        due = {action: count for action, count in due_rows}

        on_hold = self.db.query(func.count(Document.id)).filter(
            Document.legal_hold == True,  # noqa: E712
            Document.is_deleted == False,  # noqa: E712
        ).scalar() or 0

        last_job = self.db.query(RetentionJob).filter(
            RetentionJob.started_at.isnot(None)
        ).order_by(RetentionJob.started_at.desc()).first()

        return {
            "total_policies": total_policies,
            "active_policies": active_policies,
            "documents_scheduled_for_deletion": due.get(RetentionAction.DELETE.value, 0),
            "documents_scheduled_for_archive": due.get(RetentionAction.ARCHIVE.value, 0),
            "documents_scheduled_for_review": due.get(RetentionAction.REVIEW.value, 0),
            "documents_on_legal_hold": on_hold,
            "last_run_date": last_job.started_at if last_job else None,
        }

    def get_document_retention_info(self, document_id: UUID) -> Dict[str, Any]:
        """Retention status of a single document"""
        document = self.db.query(Document).filter(Document.id == document_id).first()
        if not document:
            raise RetentionError("Document not found")

        info = {
            "document_id": document.id,
            "is_on_legal_hold": bool(document.legal_hold),
            "policy_id": None,
            "policy_name": None,
            "retention_deadline": None,
            "action": None,
            "days_until_action": None,
            "status": document.status,
        }

        if document.assigned_policy_id and document.retention_deadline:
            policy = self.get_policy(document.assigned_policy_id)
            seconds_left = (document.retention_deadline - utcnow()).total_seconds()
            info.update(
                policy_id=document.assigned_policy_id,
                policy_name=policy.name if policy else None,
                retention_deadline=document.retention_deadline,
                action=policy.action if policy else None,
                days_until_action=math.ceil(seconds_left / 86400),
            )

        return info

    # ==================== Defaults ====================

    def create_default_policies(self, created_by: Optional[str] = None) -> List[RetentionPolicy]:
        """Create default HR retention policies if none exist"""
        existing = self.get_policies()
        if existing:
            return existing

        defaults = [
            {
                "name": "Payroll Records - 7 Years",
                "document_category": "PAYROLL",
                "retention_period_days": 7 * 365,
                "action": RetentionAction.ARCHIVE,
                "description": "Archive payroll records after 7 years",
                "is_active": False,  # Disabled by default
            },
            {
                "name": "Employment Contracts - 6 Years",
                "document_type": "CONTRACT",
                "retention_period_days": 6 * 365,
                "action": RetentionAction.REVIEW,
                "description": "Review employment contracts 6 years after creation",
                "is_active": False,
            },
            {
                "name": "Performance Reviews - 3 Years",
                "document_category": "PERFORMANCE",
                "retention_period_days": 3 * 365,
                "action": RetentionAction.REVIEW,
                "description": "Review performance documents after 3 years",
                "is_active": False,
            },
            {
                "name": "Recruitment Documents - 1 Year",
                "document_category": "RECRUITMENT",
                "retention_period_days": 365,
                "action": RetentionAction.DELETE,
                "description": "Delete unsuccessful-candidate documents after 1 year",
                "is_active": False,
            },
            {
                "name": "Temporary Uploads - 90 Days",
                "document_category": "TEMPORARY",
                "retention_period_days": 90,
                "action": RetentionAction.DELETE,
                "description": "Delete temporary uploads after 90 days",
                "is_active": False,
            },
        ]

        policies = []
        for config in defaults:
            policy = self.create_policy(created_by=created_by, **config)
            policies.append(policy)

        logger.info(f"Created {len(policies)} default retention policies")

        return policies
