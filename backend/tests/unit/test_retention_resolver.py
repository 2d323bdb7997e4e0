"""Unit tests for policy resolution (retention_resolver.py)"""
import pytest
from datetime import datetime, timedelta

from docservice.services.retention_resolver import PolicyResolver, compute_deadline, in_scope

from conftest import make_document, make_policy


@pytest.fixture
def resolver():
    return PolicyResolver()


@pytest.mark.unit
class TestDeadline:
    def test_deadline_from_created_at(self):
        created = datetime(2020, 1, 1, 8, 30)
        assert compute_deadline(created, 30) == datetime(2020, 1, 31, 8, 30)

    def test_resolution_uses_document_creation(self, resolver):
        created = datetime(2019, 7, 1)
        doc = make_document(created_at=created)
        policy = make_policy(retention_period_days=100)

        resolution = resolver.resolve(doc, [policy])

        assert resolution.policy is policy
        assert resolution.deadline == created + timedelta(days=100)

    def test_missing_created_at_raises(self, resolver):
        doc = make_document(created_at=None)
        with pytest.raises(ValueError, match="no created_at"):
            resolver.resolve(doc, [make_policy()])


@pytest.mark.unit
class TestScope:
    def test_unset_filters_match_everything(self):
        assert in_scope(make_document(category="PAYROLL", type="PAYSLIP"), make_policy())

    def test_category_filter(self):
        policy = make_policy(document_category="PAYROLL")
        assert in_scope(make_document(category="PAYROLL"), policy)
        assert not in_scope(make_document(category="HR"), policy)

    def test_type_filter(self):
        policy = make_policy(document_category="HR", document_type="CONTRACT")
        assert in_scope(make_document(category="HR", type="CONTRACT"), policy)
        assert not in_scope(make_document(category="HR", type="LETTER"), policy)


@pytest.mark.unit
class TestResolve:
    def test_no_policies(self, resolver):
        assert resolver.resolve(make_document(), []) is None

    def test_inactive_policy_ignored(self, resolver):
        assert resolver.resolve(make_document(), [make_policy(is_active=False)]) is None

    def test_conditions_must_all_match(self, resolver):
        policy = make_policy(conditions=[
            {"field": "department", "operator": "equals", "value": "Finance"},
            {"field": "file_size", "operator": "greater_than", "value": 100},
        ])
        assert resolver.resolve(make_document(department="Finance", file_size=500), [policy]) is not None
        assert resolver.resolve(make_document(department="Finance", file_size=50), [policy]) is None

    def test_first_matching_policy_wins(self, resolver):
        first = make_policy(name="Older", retention_period_days=10)
        second = make_policy(name="Newer", retention_period_days=20)

        resolution = resolver.resolve(make_document(), [first, second])

        assert resolution.policy is first

    def test_non_matching_policy_skipped(self, resolver):
        finance = make_policy(document_category="FINANCIAL")
        general = make_policy()

        resolution = resolver.resolve(make_document(category="HR"), [finance, general])

        assert resolution.policy is general

    def test_already_assigned_winner_returns_none(self, resolver):
        policy = make_policy()
        doc = make_document(assigned_policy_id=policy.id)

        assert resolver.resolve(doc, [policy]) is None

    def test_reassigns_to_new_winner(self, resolver):
        old = make_policy(document_category="PAYROLL")
        new = make_policy()
        doc = make_document(category="HR", assigned_policy_id=old.id)

        resolution = resolver.resolve(doc, [old, new])

        assert resolution.policy is new

    def test_stable_when_overlapping(self, resolver):
        """Resolving twice never flips between overlapping policies"""
        first = make_policy()
        second = make_policy()
        doc = make_document()

        resolution = resolver.resolve(doc, [first, second])
        doc.assigned_policy_id = resolution.policy.id

        assert resolver.resolve(doc, [first, second]) is None

    def test_overlap_logged(self, resolver, caplog):
        first = make_policy(name="Payroll A")
        second = make_policy(name="Payroll B")

        with caplog.at_level("WARNING"):
            resolver.resolve(make_document(), [first, second])

        assert "Overlapping retention policies" in caplog.text

    def test_overlap_warned_once_per_policy_pair(self, resolver, caplog):
        first = make_policy(name="Payroll A")
        second = make_policy(name="Payroll B")
        third = make_policy(name="Payroll C", document_category="PAYROLL")
        reported = set()

        with caplog.at_level("WARNING"):
            for _ in range(5):
                resolver.resolve(make_document(), [first, second, third], reported)
            resolver.resolve(make_document(category="PAYROLL"), [first, second, third], reported)

        warnings = [r for r in caplog.records if "Overlapping retention policies" in r.getMessage()]
        assert len(warnings) == 2
        assert reported == {(first.id, (second.id,)), (first.id, (second.id, third.id))}

    def test_resolve_batch_warns_once(self, resolver, caplog):
        policies = [make_policy(), make_policy()]

        with caplog.at_level("WARNING"):
            resolver.resolve_batch([make_document() for _ in range(20)], policies)

        assert caplog.text.count("Overlapping retention policies") == 1

    def test_matching_policies_in_order(self, resolver):
        a, b, c = make_policy(), make_policy(document_category="OTHER"), make_policy()
        assert resolver.matching_policies(make_document(), [a, b, c]) == [a, c]

    def test_resolve_batch(self, resolver):
        policy = make_policy()
        bound = make_document(assigned_policy_id=policy.id)
        unbound = make_document()

        results = resolver.resolve_batch([bound, unbound], [policy])

        assert results[bound.id] is None
        assert results[unbound.id].policy is policy
