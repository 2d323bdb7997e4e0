"""
Audit Service for retention lifecycle events.

Provides:
- Audit entries for terminal retention actions, legal holds and policy changes
- A session-per-call audit sink for background retention jobs
- Query and filtering of audit logs
"""

import logging
from typing import List, Dict, Any, Optional

from sqlalchemy.orm import Session, sessionmaker

from docservice.models import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Service for managing audit logs"""

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        entity_type: str,
        entity_id: Any,
        action: str,
        actor_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            entity_type: Type of target (e.g., "document", "retention_policy")
            entity_id: ID of the target
            action: AuditAction value
            actor_id: User or "system" performing the action
            metadata: Additional context

        Returns:
            Created AuditLog entry
        """
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=getattr(action, "value", action),
            actor_id=actor_id,
            details=metadata,
        )

        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)

        logger.debug(f"Audit log created: {entry.action} on {entity_type}:{entity_id} by {actor_id}")

        return entry

    def get_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Get audit logs, newest first"""
        query = self.db.query(AuditLog)

        if entity_type:
            query = query.filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            query = query.filter(AuditLog.entity_id == str(entity_id))
        if action:
            query = query.filter(AuditLog.action == action)

        return query.order_by(AuditLog.created_at.desc()).limit(limit).all()


class SessionAuditSink:
    """AuditSink that opens its own short-lived session per entry"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(self, entity_type, entity_id, action, actor_id, metadata=None) -> None:
        db = self.session_factory()
        try:
            AuditService(db).record(entity_type, entity_id, action, actor_id, metadata)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
