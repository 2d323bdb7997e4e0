"""Unit tests for JobProgress (job_progress.py)"""
import threading

import pytest

from docservice.services.job_progress import JobProgress


@pytest.mark.unit
class TestJobProgress:
    def test_flushes_every_n_documents(self):
        snapshots = []
        progress = JobProgress(flush_every=3, on_flush=snapshots.append)

        for _ in range(7):
            progress.document_done(processed=1)

        assert len(snapshots) == 2
        assert snapshots[0]["counts"] == {"processed": 3}
        assert snapshots[1]["counts"] == {"processed": 6}

    def test_add_does_not_count_towards_flush(self):
        snapshots = []
        progress = JobProgress(flush_every=1, on_flush=snapshots.append)

        progress.add(total_candidates=50)

        assert snapshots == []
        assert progress.get("total_candidates") == 50

    def test_failures_capped(self):
        progress = JobProgress(flush_every=100, failure_limit=2)

        for i in range(5):
            progress.document_failed(f"doc-{i}", ValueError(f"bad {i}"), policy_id="p-1")

        snapshot = progress.snapshot()
        assert snapshot["counts"]["failed"] == 5
        assert snapshot["failures"] == [
            {"document_id": "doc-0", "error": "bad 0", "policy_id": "p-1"},
            {"document_id": "doc-1", "error": "bad 1", "policy_id": "p-1"},
        ]

    def test_empty_error_message_uses_exception_name(self):
        progress = JobProgress()
        progress.document_failed("doc-1", TimeoutError())
        assert progress.snapshot()["failures"][0]["error"] == "TimeoutError"

    def test_resumes_from_existing_counts(self):
        progress = JobProgress(counts={"processed": 10, "failed": 1}, failures=[{"document_id": "x", "error": "e"}])

        progress.document_done(processed=1)

        assert progress.get("processed") == 11
        assert progress.get("failed") == 1
        assert len(progress.snapshot()["failures"]) == 1

    def test_cursor_in_snapshot(self):
        progress = JobProgress()
        progress.set_cursor(policy_id="p", document_id="d1")
        progress.set_cursor(document_id="d2")
        assert progress.snapshot()["cursor"] == {"policy_id": "p", "document_id": "d2"}

    def test_flush_error_propagates(self):
        def boom(snapshot):
            raise RuntimeError("database gone")

        progress = JobProgress(flush_every=1, on_flush=boom)

        with pytest.raises(RuntimeError, match="database gone"):
            progress.document_done(processed=1)

    def test_concurrent_updates(self):
        progress = JobProgress(flush_every=1000)

        def work():
            for _ in range(500):
                progress.document_done(processed=1)

        threads = [threading.Thread(target=work) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert progress.get("processed") == 2000
