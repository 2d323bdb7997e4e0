"""
Thread-safe progress bookkeeping for one retention run.

Counters only ever grow during a run. Snapshots are handed to an
``on_flush`` callback every ``flush_every`` finished documents and
whenever the caller asks (page ends, run end); the callback persists
them and may raise, which aborts the run.
"""

import threading
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional

from docservice.services.collaborators import DocumentFailure


class JobProgress:
    def __init__(
        self,
        flush_every: int = 10,
        failure_limit: int = 100,
        on_flush: Optional[Callable[[Dict[str, Any]], None]] = None,
        counts: Optional[Dict[str, int]] = None,
        failures: Optional[Iterable[Dict[str, Any]]] = None,
    ):
        self.flush_every = max(1, flush_every)
        self.failure_limit = failure_limit
        self.on_flush = on_flush
        self.counts: Counter = Counter(counts or {})
        self.failures: List[Dict[str, Any]] = list(failures or [])
        self.cursor: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._since_flush = 0

    def add(self, **increments: int) -> None:
        """Bump counters without counting a finished document"""
        with self._lock:
            self.counts.update(increments)

    def document_done(self, **increments: int) -> None:
        """Record a finished document and flush when the cadence is reached"""
        with self._lock:
            self.counts.update(increments)
            self._since_flush += 1
            due = self._since_flush >= self.flush_every
        if due:
            self.flush()

    def document_failed(self, document_id: Any, error: Any, policy_id: Any = None, **increments: int) -> None:
        failure = DocumentFailure(
            document_id=str(document_id),
            error=str(error) or error.__class__.__name__,
            policy_id=str(policy_id) if policy_id else None,
        )
        with self._lock:
            if len(self.failures) < self.failure_limit:
                self.failures.append(failure.to_dict())
        self.document_done(failed=1, **increments)

    def set_cursor(self, **cursor: Any) -> None:
        with self._lock:
            self.cursor.update(cursor)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counts": dict(self.counts),
                "failures": list(self.failures),
                "cursor": dict(self.cursor),
            }

    def get(self, name: str) -> int:
        with self._lock:
            return self.counts.get(name, 0)

    def flush(self) -> None:
        with self._flush_lock:
            with self._lock:
                self._since_flush = 0
            if self.on_flush is not None:
                self.on_flush(self.snapshot())
