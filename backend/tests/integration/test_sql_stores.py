"""Integration tests for the SQL retention stores and RetentionService against a real database"""
import uuid
from datetime import timedelta

import pytest

from docservice.models import AuditAction, RetentionJobStatus, RetentionJobType
from docservice.services.audit_service import AuditService, SessionAuditSink
from docservice.services.collaborators import DocumentFilter
from docservice.services.retention_service import RetentionService
from docservice.services.stores import SqlDocumentStore, SqlJobStore, SqlPolicyStore
from docservice.utils.time_utils import utcnow

from conftest import NOW, make_document, make_policy


def persist(db_session, *rows):
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture
def documents(session_factory):
    return SqlDocumentStore(session_factory)


@pytest.fixture
def policies(session_factory):
    return SqlPolicyStore(session_factory)


@pytest.fixture
def jobs(session_factory):
    return SqlJobStore(session_factory)


@pytest.mark.integration
class TestSqlDocumentStore:
    def test_filters_by_scope_and_flags(self, db_session, documents):
        hr, payroll, deleted = persist(
            db_session,
            make_document(category="HR"),
            make_document(category="PAYROLL"),
            make_document(category="HR", is_deleted=True),
        )

        found = documents.find_documents(DocumentFilter(category="HR", is_deleted=False))

        assert [d.id for d in found] == [hr.id]

    def test_exclude_policy_keeps_unassigned(self, db_session, documents):
        policy_id = uuid.uuid4()
        bound, unbound, other = persist(
            db_session,
            make_document(assigned_policy_id=policy_id),
            make_document(),
            make_document(assigned_policy_id=uuid.uuid4()),
        )

        found = documents.find_documents(DocumentFilter(exclude_policy_id=policy_id))

        assert {d.id for d in found} == {unbound.id, other.id}

    def test_due_filter(self, db_session, documents):
        due, later, unassigned = persist(
            db_session,
            make_document(assigned_policy_id=uuid.uuid4(), retention_deadline=NOW - timedelta(days=1)),
            make_document(assigned_policy_id=uuid.uuid4(), retention_deadline=NOW + timedelta(days=1)),
            make_document(),
        )

        found = documents.find_documents(DocumentFilter(has_policy=True, deadline_before=NOW))

        assert [d.id for d in found] == [due.id]

    def test_keyset_pagination(self, db_session, documents):
        rows = persist(db_session, *[make_document() for _ in range(7)])
        expected = sorted(d.id for d in rows)

        seen = []
        after_id = None
        while True:
            page = documents.find_documents(DocumentFilter(after_id=after_id, limit=3))
            seen.extend(d.id for d in page)
            if len(page) < 3:
                break
            after_id = page[-1].id

        assert seen == expected

    def test_count_ignores_paging(self, db_session, documents):
        persist(db_session, *[make_document(category="HR") for _ in range(4)])

        assert documents.count_documents(DocumentFilter(category="HR", limit=2)) == 4

    def test_update_document(self, db_session, documents):
        (doc,) = persist(db_session, make_document())
        policy_id = uuid.uuid4()

        assert documents.update_document(doc.id, {"assigned_policy_id": policy_id, "retention_deadline": NOW})

        stored = documents.get_document(doc.id)
        assert stored.assigned_policy_id == policy_id
        assert stored.retention_deadline == NOW

    def test_update_unknown_document(self, documents):
        assert documents.update_document(uuid.uuid4(), {"is_archived": True}) is False

    def test_update_rejects_unknown_fields(self, db_session, documents):
        (doc,) = persist(db_session, make_document())

        with pytest.raises(ValueError, match="Unknown document fields"):
            documents.update_document(doc.id, {"shredded": True})


@pytest.mark.integration
class TestSqlPolicyStore:
    def test_active_policies_oldest_first(self, db_session, policies):
        older = make_policy(created_at=NOW - timedelta(days=10))
        newer = make_policy(created_at=NOW - timedelta(days=1))
        inactive = make_policy(created_at=NOW - timedelta(days=20), is_active=False)
        persist(db_session, newer, inactive, older)

        assert [p.id for p in policies.list_active_policies()] == [older.id, newer.id]

    def test_get_policy(self, db_session, policies):
        (policy,) = persist(db_session, make_policy(conditions=[{"field": "type", "operator": "equals", "value": "X"}]))

        stored = policies.get_policy(policy.id)

        assert stored.name == policy.name
        assert stored.conditions == [{"field": "type", "operator": "equals", "value": "X"}]
        assert policies.get_policy(uuid.uuid4()) is None


@pytest.mark.integration
class TestSqlJobStore:
    def test_create_job(self, jobs):
        job = jobs.create_job(RetentionJobType.APPLY.value, dry_run=True, requested_by="hr-admin")

        assert job.id is not None
        assert job.status == RetentionJobStatus.PENDING.value
        assert job.dry_run is True
        assert job.processed_count == 0
        assert job.failures == []

    def test_update_job(self, jobs):
        job = jobs.create_job(RetentionJobType.ACTIONS.value, dry_run=False)

        jobs.update_job(job.id, status=RetentionJobStatus.RUNNING.value, processed_count=5,
                        summary={"deleted": 2})

        stored = jobs.get_job(job.id)
        assert stored.status == RetentionJobStatus.RUNNING.value
        assert stored.processed_count == 5
        assert stored.summary == {"deleted": 2}

    def test_update_missing_job(self, jobs):
        with pytest.raises(LookupError):
            jobs.update_job(uuid.uuid4(), status="running")

    def test_update_rejects_unknown_fields(self, jobs):
        job = jobs.create_job(RetentionJobType.APPLY.value, dry_run=False)
        with pytest.raises(ValueError, match="Unknown job fields"):
            jobs.update_job(job.id, progress=50)

    def test_list_and_find_active(self, jobs):
        apply_job = jobs.create_job(RetentionJobType.APPLY.value, dry_run=False)
        actions_job = jobs.create_job(RetentionJobType.ACTIONS.value, dry_run=False)
        jobs.update_job(apply_job.id, status=RetentionJobStatus.COMPLETED.value)

        assert [j.id for j in jobs.list_jobs(job_type=RetentionJobType.ACTIONS.value)] == [actions_job.id]
        assert len(jobs.list_jobs()) == 2
        assert jobs.find_active_job(RetentionJobType.APPLY.value) is None
        assert jobs.find_active_job(RetentionJobType.ACTIONS.value).id == actions_job.id


@pytest.mark.integration
class TestSessionAuditSink:
    def test_record(self, session_factory, db_session):
        sink = SessionAuditSink(session_factory)
        document_id = uuid.uuid4()

        sink.record("document", document_id, AuditAction.DOCUMENT_DELETED.value, "system", {"policy_id": "p"})

        logs = AuditService(db_session).get_logs(entity_type="document", entity_id=document_id)
        assert len(logs) == 1
        assert logs[0].action == AuditAction.DOCUMENT_DELETED.value
        assert logs[0].actor_id == "system"
        assert logs[0].details == {"policy_id": "p"}


@pytest.mark.integration
class TestRetentionServiceQueries:
    def test_preview_policy(self, db_session):
        policy = make_policy(document_category="HR", retention_period_days=30,
                             conditions=[{"field": "department", "operator": "equals", "value": "Sales"}])
        now = utcnow()
        persist(
            db_session,
            policy,
            make_document(category="HR", department="Sales", created_at=now - timedelta(days=60)),
            make_document(category="HR", department="Sales", created_at=now, legal_hold=True,
                          assigned_policy_id=policy.id),
            make_document(category="HR", department="Engineering"),
            make_document(category="PAYROLL", department="Sales"),
            make_document(category="HR", department="Sales", is_deleted=True),
        )

        preview = RetentionService(db_session).preview_policy(policy)

        assert preview["matching_documents"] == 2
        assert preview["already_assigned"] == 1
        assert preview["due_now"] == 1
        assert preview["on_legal_hold"] == 1
        assert len(preview["sample_document_ids"]) == 2

    def test_summary(self, db_session):
        delete_policy = make_policy(action="delete")
        archive_policy = make_policy(action="archive", is_active=False)
        past = utcnow() - timedelta(days=1)
        future = utcnow() + timedelta(days=30)
        persist(
            db_session,
            delete_policy,
            archive_policy,
            make_document(assigned_policy_id=delete_policy.id, retention_deadline=past),
            make_document(assigned_policy_id=delete_policy.id, retention_deadline=past, legal_hold=True),
            make_document(assigned_policy_id=delete_policy.id, retention_deadline=future),
            make_document(assigned_policy_id=archive_policy.id, retention_deadline=past),
            make_document(assigned_policy_id=archive_policy.id, retention_deadline=past, is_archived=True),
        )

        summary = RetentionService(db_session).get_summary()

        assert summary["total_policies"] == 2
        assert summary["active_policies"] == 1
        assert summary["documents_scheduled_for_deletion"] == 1
        assert summary["documents_scheduled_for_archive"] == 1
        assert summary["documents_scheduled_for_review"] == 0
        assert summary["documents_on_legal_hold"] == 1
        assert summary["last_run_date"] is None

    def test_delete_policy_detaches_documents(self, db_session, documents):
        policy = make_policy()
        bound = make_document(assigned_policy_id=policy.id, retention_deadline=NOW)
        other = make_document(assigned_policy_id=uuid.uuid4(), retention_deadline=NOW)
        persist(db_session, policy, bound, other)

        detached = RetentionService(db_session).delete_policy(policy.id, deleted_by="hr-admin")

        assert detached == 1
        stored = documents.get_document(bound.id)
        assert stored.assigned_policy_id is None
        assert stored.retention_deadline is None
        assert documents.get_document(other.id).assigned_policy_id is not None
