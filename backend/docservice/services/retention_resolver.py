"""
Retention policy resolution.

Decides which single active policy applies to a document and computes
its retention deadline.

Precedence: when several active policies match the same document, the
first one in the iteration order of ``active_policies`` wins. The policy
store supplies policies oldest-first (created_at, then id). There is no
"most specific policy" rule; keeping policy scopes disjoint is a
configuration responsibility, and overlaps are logged so they can be
fixed. Callers that resolve many documents pass a shared
``reported_overlaps`` set so each overlap is warned about once.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, List, NamedTuple, Optional, Sequence, Set

from docservice.services.retention_conditions import matches_all

logger = logging.getLogger(__name__)


class Resolution(NamedTuple):
    """Policy chosen for a document and the resulting deadline"""
    policy: Any
    deadline: datetime


def compute_deadline(created_at: datetime, retention_period_days: int) -> datetime:
    """Deadline is anchored on document creation, not on resolution time"""
    return created_at + timedelta(days=retention_period_days)


def in_scope(document: Any, policy: Any) -> bool:
    """Category/type pre-filters; an unset filter matches everything"""
    if policy.document_category and document.category != policy.document_category:
        return False
    if policy.document_type and document.type != policy.document_type:
        return False
    return True


class PolicyResolver:
    """Resolve the applicable retention policy for documents"""

    def matching_policies(self, document: Any, active_policies: Iterable[Any]) -> List[Any]:
        """
        All active, in-scope policies whose conditions match, in iteration order.

        The first element is the policy ``resolve`` would pick.
        """
        return [
            policy for policy in active_policies
            if policy.is_active
            and in_scope(document, policy)
            and matches_all(document, policy.conditions)
        ]

    def resolve(self, document: Any, active_policies: Sequence[Any],
                reported_overlaps: Optional[Set[tuple]] = None) -> Optional[Resolution]:
        """
        Resolve the policy for one document.

        Returns:
            Resolution(policy, deadline), or None when no active policy
            matches or when the winning policy is already assigned to the
            document. An existing assignment is never cleared here.

        An overlap already in ``reported_overlaps`` is logged at debug
        level only.
        """
        candidates = self.matching_policies(document, active_policies)
        if not candidates:
            return None

        winner = candidates[0]
        if len(candidates) > 1:
            self._report_overlap(document, winner, candidates[1:], reported_overlaps)

        if document.assigned_policy_id is not None and winner.id == document.assigned_policy_id:
            return None

        if document.created_at is None:
            raise ValueError(f"Document {document.id} has no created_at")

        return Resolution(winner, compute_deadline(document.created_at, winner.retention_period_days))

    def resolve_batch(self, documents: Iterable[Any], active_policies: Sequence[Any]) -> dict:
        """Resolve many documents; maps document id to Resolution (or None)"""
        reported: Set[tuple] = set()
        return {document.id: self.resolve(document, active_policies, reported) for document in documents}

    def _report_overlap(self, document, winner, shadowed, reported: Optional[Set[tuple]]) -> None:
        key = (winner.id, tuple(policy.id for policy in shadowed))
        message = (
            f"Overlapping retention policies for document {document.id}: "
            f"'{winner.name}' wins over {[policy.name for policy in shadowed]}"
        )
        extra = {"document_id": document.id, "policy_id": winner.id}
        if reported is not None and key in reported:
            logger.debug(message, extra=extra)
            return
        if reported is not None:
            reported.add(key)
        logger.warning(message, extra=extra)
