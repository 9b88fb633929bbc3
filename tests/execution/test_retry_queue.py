"""Tests for the durable retry queue."""

from __future__ import annotations

import sqlite3
import threading
from datetime import timedelta

import pytest

from billing_worker.core.database import connect
from billing_worker.core.errors import DataError
from billing_worker.core.models import WorkItemKind, WorkItemStatus
from billing_worker.execution.retry import ConstantBackoff, LinearBackoff
from billing_worker.execution.retry_queue import RetryQueue


def _sms(n: int = 0) -> dict:
    return {"contact_no": f"0917000{n:04d}", "message": "Your bill is due"}


class TestEnqueue:
    def test_enqueue_creates_pending_item(self, queue, clock):
        item_id = queue.enqueue("sms", _sms())
        item = queue.get(item_id)
        assert item.kind is WorkItemKind.SMS
        assert item.status is WorkItemStatus.PENDING
        assert item.attempt_count == 0
        assert item.max_attempts == 3
        assert item.next_attempt_at == clock()
        assert item.payload == _sms()

    def test_delay_pushes_next_attempt(self, queue, clock):
        item = queue.get(queue.enqueue(WorkItemKind.EMAIL, {"to": "a@example.com"}, delay_seconds=300))
        assert item.next_attempt_at == clock() + timedelta(seconds=300)
        assert queue.claim_batch("email", 10) == []

    def test_rejects_unknown_kind(self, queue):
        with pytest.raises(DataError):
            queue.enqueue("fax", {})

    def test_rejects_bad_payloads(self, queue):
        with pytest.raises(DataError):
            queue.enqueue("sms", ["not", "a", "mapping"])
        with pytest.raises(DataError):
            queue.enqueue("sms", {"when": object()})

    def test_rejects_zero_max_attempts(self, queue):
        with pytest.raises(DataError):
            queue.enqueue("sms", _sms(), max_attempts=0)

    def test_dedupe_key_returns_live_item(self, queue):
        first = queue.enqueue("radius", {"username": "juan"}, dedupe_key="reconnect:juan")
        second = queue.enqueue("radius", {"username": "juan"}, dedupe_key="reconnect:juan")
        assert first == second
        assert len(queue.list_items(kind="radius")) == 1

    def test_dedupe_key_ignores_finished_items(self, queue):
        first = queue.enqueue("radius", {"username": "juan"}, dedupe_key="reconnect:juan")
        [item] = queue.claim_batch("radius", 1)
        queue.report_result(item.id, True, claim_token=item.claim_token)
        second = queue.enqueue("radius", {"username": "juan"}, dedupe_key="reconnect:juan")
        assert second != first

    def test_dedupe_holds_across_connections(self, tmp_path, clock):
        path = tmp_path / "worker.db"
        connect(path).close()
        barrier = threading.Barrier(6)
        ids: list[str] = []

        def enqueue_from_own_connection() -> None:
            conn = connect(path)
            try:
                barrier.wait()
                queue = RetryQueue(conn, clock=clock)
                ids.append(queue.enqueue("radius", {"username": "juan"}, dedupe_key="reconnect:juan"))
            finally:
                conn.close()

        threads = [threading.Thread(target=enqueue_from_own_connection) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        conn = connect(path)
        try:
            live = RetryQueue(conn, clock=clock).list_items(kind="radius", status=WorkItemStatus.PENDING)
        finally:
            conn.close()
        assert len(ids) == 6
        assert len(set(ids)) == 1
        assert [item.id for item in live] == ids[:1]

    def test_second_live_row_with_same_key_is_refused(self, queue, conn):
        queue.enqueue("radius", {"username": "juan"}, dedupe_key="reconnect:juan")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO work_items (id, kind, payload, status, attempt_count, max_attempts, "
                "next_attempt_at, dedupe_key, created_at, updated_at) "
                "VALUES ('dup', 'radius', '{}', 'in_flight', 0, 3, '', 'reconnect:juan', '', '')"
            )
        conn.rollback()

    def test_attempts_made_reduces_remaining_attempts(self, queue, clock):
        item_id = queue.enqueue("sms", _sms(), attempts_made=1)
        assert queue.get(item_id).attempt_count == 1

        for expected_attempts in (2, 3):
            [item] = queue.claim_batch("sms", 1)
            updated = queue.report_result(item.id, False, "gateway down", claim_token=item.claim_token)
            assert updated.attempt_count == expected_attempts
            clock.advance(300)

        final = queue.get(item_id)
        assert final.status is WorkItemStatus.FAILED_PERMANENT
        assert final.attempt_count == 3
        assert queue.claim_batch("sms", 1) == []

    @pytest.mark.parametrize("attempts_made", [-1, 3])
    def test_rejects_attempts_made_outside_budget(self, queue, attempts_made):
        with pytest.raises(DataError):
            queue.enqueue("sms", _sms(), attempts_made=attempts_made)


class TestClaim:
    def test_claims_oldest_due_first(self, queue, clock):
        ids = []
        for n in range(120):
            ids.append(queue.enqueue("email", {"to": f"user{n}@example.com"}))
            clock.advance(1)

        claimed = queue.claim_batch("email", 50)

        assert [item.id for item in claimed] == ids[:50]
        assert all(item.status is WorkItemStatus.IN_FLIGHT for item in claimed)
        assert len({item.claim_token for item in claimed}) == 1

    def test_consecutive_claims_are_disjoint(self, queue, clock):
        for n in range(10):
            queue.enqueue("sms", _sms(n))
            clock.advance(1)

        first = queue.claim_batch("sms", 6)
        second = queue.claim_batch("sms", 6)

        assert len(first) == 6
        assert len(second) == 4
        assert not {i.id for i in first} & {i.id for i in second}
        assert queue.claim_batch("sms", 6) == []

    def test_claim_filters_kind(self, queue):
        queue.enqueue("sms", _sms())
        assert queue.claim_batch("email", 10) == []
        assert len(queue.claim_batch("sms", 10)) == 1

    def test_retried_filter(self, queue, clock):
        first_id = queue.enqueue("email", {"to": "a@example.com"})
        second_id = queue.enqueue("email", {"to": "b@example.com"})
        for claimed in queue.claim_batch("email", 10):
            queue.report_result(claimed.id, False, "503", claim_token=claimed.claim_token)
        clock.advance(300)
        newest = queue.enqueue("email", {"to": "fresh@example.com"})

        first_time = queue.claim_batch("email", 10, retried=False)
        assert [i.id for i in first_time] == [newest]
        again = queue.claim_batch("email", 10, retried=True)
        assert {i.id for i in again} == {first_id, second_id}

    def test_non_positive_limit(self, queue):
        queue.enqueue("sms", _sms())
        assert queue.claim_batch("sms", 0) == []


class TestReport:
    def test_success_is_terminal(self, queue):
        item_id = queue.enqueue("payment", {"invoice_id": "INV-1"})
        [item] = queue.claim_batch("payment", 1)

        updated = queue.report_result(item.id, True, provider_ref="xnd_123", claim_token=item.claim_token)

        assert updated.status is WorkItemStatus.SUCCEEDED
        assert updated.provider_ref == "xnd_123"
        assert updated.attempt_count == 0
        assert queue.report_result(item_id, False, "late") is None
        assert queue.get(item_id).status is WorkItemStatus.SUCCEEDED

    def test_three_failures_exhaust_attempts(self, queue, clock):
        item_id = queue.enqueue("email", {"to": "a@example.com"}, max_attempts=3)

        for expected_attempts in (1, 2, 3):
            [item] = queue.claim_batch("email", 1)
            updated = queue.report_result(item.id, False, "HTTP 503", claim_token=item.claim_token)
            assert updated.attempt_count == expected_attempts
            clock.advance(300)

        final = queue.get(item_id)
        assert final.status is WorkItemStatus.FAILED_PERMANENT
        assert final.attempt_count == 3
        assert final.last_error == "HTTP 503"
        assert queue.claim_batch("email", 1) == []

    def test_failure_reschedules_after_backoff(self, queue, clock):
        item_id = queue.enqueue("sms", _sms())
        [item] = queue.claim_batch("sms", 1)
        updated = queue.report_result(item.id, False, "timeout", claim_token=item.claim_token)

        assert updated.status is WorkItemStatus.PENDING
        assert updated.next_attempt_at == clock() + timedelta(seconds=300)
        clock.advance(299)
        assert queue.claim_batch("sms", 1) == []
        clock.advance(1)
        assert [i.id for i in queue.claim_batch("sms", 1)] == [item_id]

    def test_permanent_failure_skips_remaining_attempts(self, queue):
        item_id = queue.enqueue("sms", _sms(), max_attempts=5)
        [item] = queue.claim_batch("sms", 1)
        updated = queue.report_result(item.id, False, "invalid number", permanent=True, claim_token=item.claim_token)
        assert updated.status is WorkItemStatus.FAILED_PERMANENT
        assert updated.attempt_count == 1
        assert queue.list_failed()[0].id == item_id

    def test_report_on_pending_item_ignored(self, queue):
        item_id = queue.enqueue("sms", _sms())
        assert queue.report_result(item_id, True) is None
        assert queue.get(item_id).status is WorkItemStatus.PENDING

    def test_report_unknown_item(self, queue):
        assert queue.report_result("missing", True) is None

    def test_per_kind_backoff(self, conn, clock):
        queue = RetryQueue(
            conn,
            backoff=ConstantBackoff(delay=300),
            backoff_by_kind={WorkItemKind.PAYMENT: LinearBackoff(base_delay=60, increment=60)},
            clock=clock,
        )
        queue.enqueue("payment", {"invoice_id": "INV-1"})
        [item] = queue.claim_batch("payment", 1)
        updated = queue.report_result(item.id, False, "503", claim_token=item.claim_token)
        assert updated.next_attempt_at == clock() + timedelta(seconds=60)


class TestReap:
    def test_reap_requeues_once_without_counting_attempt(self, queue, clock):
        item_id = queue.enqueue("email", {"to": "a@example.com"})
        [item] = queue.claim_batch("email", 1)

        clock.advance(599)
        assert queue.reap_stale_claims() == 0
        clock.advance(1)
        assert queue.reap_stale_claims() == 1
        assert queue.reap_stale_claims() == 0

        reaped = queue.get(item_id)
        assert reaped.status is WorkItemStatus.PENDING
        assert reaped.attempt_count == 0
        assert reaped.claim_token is None

    def test_late_report_after_reap_is_ignored(self, queue, clock):
        item_id = queue.enqueue("email", {"to": "a@example.com"})
        [stale] = queue.claim_batch("email", 1)
        clock.advance(600)
        queue.reap_stale_claims()
        [fresh] = queue.claim_batch("email", 1)

        assert queue.report_result(item_id, True, claim_token=stale.claim_token) is None
        assert queue.get(item_id).claim_token == fresh.claim_token

        done = queue.report_result(item_id, True, claim_token=fresh.claim_token)
        assert done.status is WorkItemStatus.SUCCEEDED

    def test_explicit_timeout(self, queue, clock):
        queue.enqueue("sms", _sms())
        queue.claim_batch("sms", 1)
        clock.advance(60)
        assert queue.reap_stale_claims(timeout_seconds=30) == 1


class TestMaintenance:
    def test_prune_only_old_succeeded(self, queue, clock):
        done_id = queue.enqueue("sms", _sms(1))
        failed_id = queue.enqueue("sms", _sms(2), max_attempts=1)
        for item in queue.claim_batch("sms", 10):
            queue.report_result(item.id, item.id == done_id, "boom", claim_token=item.claim_token)

        clock.advance(days=31)
        assert queue.prune(30) == 1
        assert queue.get(done_id) is None
        assert queue.get(failed_id).status is WorkItemStatus.FAILED_PERMANENT

    def test_stats(self, queue):
        queue.enqueue("sms", _sms(1))
        queue.enqueue("sms", _sms(2))
        queue.enqueue("email", {"to": "a@example.com"})
        queue.claim_batch("email", 1)
        assert queue.stats() == {"email": {"in_flight": 1}, "sms": {"pending": 2}}

    def test_list_items_filters(self, queue):
        queue.enqueue("sms", _sms(1))
        queue.enqueue("email", {"to": "a@example.com"})
        assert [i.kind for i in queue.list_items(kind="email")] == [WorkItemKind.EMAIL]
        assert len(queue.list_items(status="pending")) == 2
        assert queue.list_items(status=WorkItemStatus.SUCCEEDED) == []
