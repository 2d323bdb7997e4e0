"""
Test Configuration and Fixtures

Unit tests run the retention engine against in-memory collaborators.
Integration tests use a throwaway SQLite file by default; point
TEST_DATABASE_URL at PostgreSQL to run them against production types.
"""

import os

# Must be set before docservice.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy_utils import database_exists, create_database

from docservice.database import Base
from docservice.models import (
    Document, DocumentStatus, RetentionPolicy, RetentionJob, RetentionJobStatus,
    RetentionAction, ACTIVE_JOB_STATUSES,
)
from docservice.services.collaborators import DocumentFilter, SideEffects
from docservice.services.legal_hold import LegalHoldGate
from docservice.services.locks import InMemoryLockManager
from docservice.services.retention_actions import RetentionActionExecutor
from docservice.services.retention_jobs import RetentionJobOrchestrator, RetentionJobRegistry

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

# Fixed reference time for deterministic deadlines
NOW = datetime(2026, 6, 1, 12, 0, 0)


# ==================== Builders ====================

def make_document(**overrides) -> Document:
    """Transient Document row with every lifecycle flag initialised"""
    fields = {
        "id": uuid.uuid4(),
        "filename": "contract.pdf",
        "title": None,
        "category": "HR",
        "type": "CONTRACT",
        "employee_id": "E-1001",
        "department": "Engineering",
        "file_size": 1024,
        "status": DocumentStatus.ACTIVE.value,
        "assigned_policy_id": None,
        "retention_deadline": None,
        "legal_hold": False,
        "legal_hold_reason": None,
        "legal_hold_set_by": None,
        "legal_hold_set_at": None,
        "is_deleted": False,
        "deleted_at": None,
        "is_archived": False,
        "archived_at": None,
        "review_required": False,
        "review_required_at": None,
        "created_at": NOW - timedelta(days=400),
        "updated_at": NOW - timedelta(days=400),
    }
    fields.update(overrides)
    if "storage_path" not in fields:
        fields["storage_path"] = f"2025/01/01/{str(fields['id'])[:8]}/{fields['filename']}"
    return Document(**fields)


_policy_sequence = iter(range(1, 1_000_000))


def make_policy(**overrides) -> RetentionPolicy:
    """Transient RetentionPolicy; later calls get later created_at values"""
    seq = next(_policy_sequence)
    fields = {
        "id": uuid.uuid4(),
        "name": f"Policy {seq}",
        "description": None,
        "document_category": None,
        "document_type": None,
        "retention_period_days": 365,
        "action": RetentionAction.DELETE.value,
        "is_active": True,
        "conditions": [],
        "created_by": "tests",
        "created_at": NOW - timedelta(days=1000) + timedelta(seconds=seq),
        "updated_at": NOW - timedelta(days=1000) + timedelta(seconds=seq),
    }
    fields.update(overrides)
    return RetentionPolicy(**fields)


# ==================== Fake collaborators ====================

class FakeDocumentStore:
    """DocumentStore over a dict, ordered by id like the SQL store"""

    def __init__(self, documents=()):
        self.documents: Dict[Any, Document] = {}
        self.updates: List[tuple] = []
        self.fail_updates_for = set()
        self._lock = threading.Lock()
        for document in documents:
            self.add(document)

    def add(self, document: Document) -> Document:
        self.documents[document.id] = document
        return document

    @staticmethod
    def _matches(document, filter: DocumentFilter) -> bool:
        if filter.category is not None and document.category != filter.category:
            return False
        if filter.type is not None and document.type != filter.type:
            return False
        if filter.exclude_policy_id is not None and document.assigned_policy_id == filter.exclude_policy_id:
            return False
        if filter.has_policy is True and document.assigned_policy_id is None:
            return False
        if filter.has_policy is False and document.assigned_policy_id is not None:
            return False
        if filter.deadline_before is not None and (
            document.retention_deadline is None or document.retention_deadline > filter.deadline_before
        ):
            return False
        for flag in ("is_deleted", "is_archived", "review_required", "legal_hold"):
            expected = getattr(filter, flag)
            if expected is not None and bool(getattr(document, flag)) != expected:
                return False
        return True

    def find_documents(self, filter: DocumentFilter) -> List[Document]:
        with self._lock:
            rows = sorted(
                (d for d in self.documents.values() if self._matches(d, filter)),
                key=lambda d: d.id,
            )
        if filter.after_id is not None:
            rows = [d for d in rows if d.id > filter.after_id]
        if filter.limit is not None:
            rows = rows[:filter.limit]
        return rows

    def count_documents(self, filter: DocumentFilter) -> int:
        return len(self.find_documents(replace(filter, limit=None, after_id=None)))

    def get_document(self, document_id) -> Optional[Document]:
        return self.documents.get(document_id)

    def update_document(self, document_id, fields: Dict[str, Any]) -> bool:
        if document_id in self.fail_updates_for:
            raise RuntimeError(f"write rejected for {document_id}")
        with self._lock:
            document = self.documents.get(document_id)
            if document is None:
                return False
            for key, value in fields.items():
                setattr(document, key, value)
            self.updates.append((document_id, dict(fields)))
            return True


class FakePolicyStore:
    def __init__(self, policies=()):
        self.policies: Dict[Any, RetentionPolicy] = {p.id: p for p in policies}
        self.list_calls = 0

    def add(self, policy: RetentionPolicy) -> RetentionPolicy:
        self.policies[policy.id] = policy
        return policy

    def remove(self, policy_id) -> None:
        self.policies.pop(policy_id, None)

    def list_active_policies(self) -> List[RetentionPolicy]:
        self.list_calls += 1
        return sorted(
            (p for p in self.policies.values() if p.is_active),
            key=lambda p: (p.created_at, str(p.id)),
        )

    def get_policy(self, policy_id) -> Optional[RetentionPolicy]:
        return self.policies.get(policy_id)


class FakeBlobStore:
    """Blob keys present in ``keys`` exist; ``failing`` keys raise on delete"""

    def __init__(self, keys=()):
        self.keys = set(keys)
        self.deleted: List[str] = []
        self.failing = set()
        self.delay: Dict[str, threading.Event] = {}
        self.entered = threading.Event()

    def delete(self, storage_key: str) -> bool:
        if storage_key in self.failing:
            raise OSError(f"storage unavailable for {storage_key}")
        self.entered.set()
        gate = self.delay.get(storage_key)
        if gate is not None:
            gate.wait(5)
        self.deleted.append(storage_key)
        if storage_key in self.keys:
            self.keys.discard(storage_key)
            return True
        return False


class RecordingAuditSink:
    def __init__(self):
        self.entries: List[dict] = []

    def record(self, entity_type, entity_id, action, actor_id, metadata=None) -> None:
        self.entries.append({
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "actor_id": actor_id,
            "metadata": metadata,
        })

    def actions(self) -> List[str]:
        return [entry["action"] for entry in self.entries]


class RecordingEventPublisher:
    def __init__(self):
        self.events: List[tuple] = []

    def publish(self, event_type, payload) -> None:
        self.events.append((event_type, payload))

    def types(self) -> List[str]:
        return [event_type for event_type, _ in self.events]


class FakeJobStore:
    def __init__(self):
        self.jobs: Dict[Any, RetentionJob] = {}
        self._lock = threading.Lock()
        self._created = 0

    def create_job(self, job_type, dry_run, requested_by=None) -> RetentionJob:
        with self._lock:
            self._created += 1
            job = RetentionJob(
                id=uuid.uuid4(),
                job_type=job_type,
                status=RetentionJobStatus.PENDING.value,
                dry_run=dry_run,
                requested_by=requested_by,
                total_candidates=0,
                processed_count=0,
                failed_count=0,
                assigned_count=0,
                summary=None,
                failures=[],
                cursor_policy_id=None,
                cursor_document_id=None,
                cancel_requested=False,
                created_at=NOW + timedelta(seconds=self._created),
                started_at=None,
                completed_at=None,
                last_error=None,
            )
            self.jobs[job.id] = job
            return job

    def get_job(self, job_id) -> Optional[RetentionJob]:
        return self.jobs.get(job_id)

    def update_job(self, job_id, **fields) -> None:
        with self._lock:
            job = self.jobs.get(job_id)
            if job is None:
                raise LookupError(f"Retention job {job_id} not found")
            for key, value in fields.items():
                setattr(job, key, value)

    def list_jobs(self, job_type=None, limit=50) -> List[RetentionJob]:
        jobs = [j for j in self.jobs.values() if job_type is None or j.job_type == job_type]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)[:limit]

    def find_active_job(self, job_type) -> Optional[RetentionJob]:
        active = [j for j in self.jobs.values() if j.job_type == job_type and j.status in ACTIVE_JOB_STATUSES]
        return min(active, key=lambda j: j.created_at) if active else None


# ==================== Fixtures ====================

@pytest.fixture
def document_store():
    return FakeDocumentStore()


@pytest.fixture
def policy_store():
    return FakePolicyStore()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def event_publisher():
    return RecordingEventPublisher()


@pytest.fixture
def job_store():
    return FakeJobStore()


@pytest.fixture
def lock_manager():
    return InMemoryLockManager()


@pytest.fixture
def side_effects(audit_sink, event_publisher):
    import logging
    return SideEffects(audit_sink=audit_sink, event_publisher=event_publisher,
                       logger=logging.getLogger("tests"))


@pytest.fixture
def legal_hold_gate(document_store, side_effects):
    return LegalHoldGate(document_store, side_effects)


@pytest.fixture
def executor(document_store, policy_store, blob_store, legal_hold_gate, side_effects):
    return RetentionActionExecutor(
        document_store,
        policy_store,
        blob_store,
        legal_hold_gate,
        side_effects=side_effects,
        batch_size=3,
        flush_every=2,
        blob_delete_timeout=1.0,
        clock=lambda: NOW,
    )


@pytest.fixture
def orchestrator(document_store, policy_store):
    return RetentionJobOrchestrator(document_store, policy_store, batch_size=3)


@pytest.fixture
def registry(job_store, lock_manager, orchestrator, executor, side_effects):
    registry = RetentionJobRegistry(
        job_store,
        lock_manager,
        orchestrator,
        executor,
        side_effects=side_effects,
        pool_size=2,
        flush_every=2,
    )
    yield registry
    registry.shutdown(wait=True)


@pytest.fixture
def db_engine(tmp_path):
    """Engine with all tables created; SQLite file per test unless TEST_DATABASE_URL is set"""
    import docservice.models  # noqa: F401  (registers models with Base)

    if TEST_DATABASE_URL:
        url = TEST_DATABASE_URL
        if not database_exists(url):
            create_database(url)
        engine = create_engine(url)
    else:
        url = f"sqlite:///{tmp_path / 'retention_test.db'}"
        engine = create_engine(url, connect_args={"check_same_thread": False})

    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup - drop all tables but keep the database
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def temp_storage(tmp_path):
    """Temporary blob storage directory"""
    path = tmp_path / "storage"
    path.mkdir()
    return str(path)
