from datetime import UTC, datetime, timedelta
from threading import Lock, Thread

import pytest

from grantflow.common.job import Job
from grantflow.common.states import (
    CompletedState,
    FailedState,
    ProcessingState,
    RetryState,
    can_transition,
)
from grantflow.storage.memory_storage import MemoryStorage

NOW = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


def _job(job_type="crawl_grant_source", priority=5, scheduled_at=NOW, **kwargs) -> Job:
    return Job(job_type=job_type, priority=priority, scheduled_at=scheduled_at, **kwargs)


# --- State machine ---


@pytest.mark.parametrize(
    "old,new,allowed",
    [
        ("pending", "processing", True),
        ("retry", "processing", True),
        ("processing", "completed", True),
        ("processing", "retry", True),
        ("processing", "failed", True),
        ("pending", "failed", True),
        ("pending", "completed", False),
        ("retry", "failed", False),
        ("completed", "processing", False),
        ("failed", "pending", False),
    ],
)
def test_can_transition(old, new, allowed):
    assert can_transition(old, new) is allowed


def test_job_defaults():
    job = Job(job_type="cleanup_old_data")
    assert job.id is not None
    assert job.status == "pending"
    assert job.priority == 5
    assert job.retry_count == 0
    assert job.max_retries == 3
    assert job.payload == {}
    assert job.scheduled_at.tzinfo is not None


# --- Claiming ---


def test_claim_orders_by_priority_then_scheduled_at(memory_storage):
    low = _job(priority=1)
    old_normal = _job(priority=5, scheduled_at=NOW - timedelta(minutes=5))
    new_normal = _job(priority=5)
    high = _job(priority=9)
    for job in (low, new_normal, high, old_normal):
        memory_storage.enqueue(job)

    claimed = memory_storage.claim_batch(10, now=NOW)

    assert [j.id for j in claimed] == [high.id, old_normal.id, new_normal.id, low.id]
    assert all(j.status == ProcessingState.NAME for j in claimed)
    assert all(j.started_at == NOW for j in claimed)


def test_claim_respects_batch_size_and_scheduled_at(memory_storage):
    future = _job(scheduled_at=NOW + timedelta(seconds=30))
    due = [_job() for _ in range(3)]
    memory_storage.enqueue(future)
    for job in due:
        memory_storage.enqueue(job)

    first = memory_storage.claim_batch(2, now=NOW)
    second = memory_storage.claim_batch(2, now=NOW)
    third = memory_storage.claim_batch(2, now=NOW)

    assert len(first) == 2
    assert len(second) == 1
    assert third == []
    assert memory_storage.get_job_data(future.id).status == "pending"

    later = memory_storage.claim_batch(2, now=NOW + timedelta(seconds=30))
    assert [j.id for j in later] == [future.id]


def test_retry_jobs_are_eligible_once_due(memory_storage):
    job = _job()
    memory_storage.enqueue(job)
    memory_storage.claim_batch(1, now=NOW)
    retry_at = NOW + timedelta(seconds=60)
    assert memory_storage.set_job_state(
        job.id,
        RetryState(retry_at, 1, "boom", created_at=NOW),
        expected_old_state="processing",
    )

    assert memory_storage.claim_batch(1, now=NOW + timedelta(seconds=59)) == []
    claimed = memory_storage.claim_batch(1, now=retry_at)
    assert [j.id for j in claimed] == [job.id]
    assert claimed[0].retry_count == 1


def test_claimed_jobs_are_copies(memory_storage):
    job = _job(payload={"sourceId": "abc"})
    memory_storage.enqueue(job)
    claimed = memory_storage.claim_batch(1, now=NOW)[0]
    claimed.payload["sourceId"] = "changed"
    claimed.status = "completed"

    stored = memory_storage.get_job_data(job.id)
    assert stored.payload == {"sourceId": "abc"}
    assert stored.status == "processing"


def test_concurrent_claims_never_share_a_job():
    storage = MemoryStorage()
    for _ in range(60):
        storage.enqueue(_job())

    seen = []
    seen_lock = Lock()

    def claimant():
        while True:
            batch = storage.claim_batch(3, now=NOW)
            if not batch:
                return
            with seen_lock:
                seen.extend(j.id for j in batch)

    threads = [Thread(target=claimant) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 60
    assert len(set(seen)) == 60


# --- State updates ---


def test_set_job_state_checks_expected_old_state(memory_storage):
    job = _job()
    memory_storage.enqueue(job)

    assert not memory_storage.set_job_state(
        job.id, CompletedState(created_at=NOW), expected_old_state="processing"
    )
    memory_storage.claim_batch(1, now=NOW)
    assert memory_storage.set_job_state(
        job.id, CompletedState(created_at=NOW), expected_old_state="processing"
    )
    stored = memory_storage.get_job_data(job.id)
    assert stored.status == "completed"
    assert stored.completed_at == NOW


def test_set_job_state_rejects_invalid_transitions(memory_storage):
    job = _job()
    memory_storage.enqueue(job)
    memory_storage.claim_batch(1, now=NOW)
    memory_storage.set_job_state(job.id, CompletedState(created_at=NOW))

    failed = FailedState("ValueError", "late", created_at=NOW)
    assert not memory_storage.set_job_state(job.id, failed)
    assert memory_storage.get_job_data(job.id).status == "completed"
    assert not memory_storage.set_job_state("missing", failed)


def test_failed_state_records_error_message(memory_storage):
    job = _job()
    memory_storage.enqueue(job)
    memory_storage.claim_batch(1, now=NOW)
    memory_storage.set_job_state(
        job.id, FailedState("ValueError", "source offline", created_at=NOW)
    )
    stored = memory_storage.get_job_data(job.id)
    assert stored.status == "failed"
    assert stored.error_message == "source offline"


def test_history_records_every_transition(memory_storage):
    job = _job()
    memory_storage.enqueue(job)
    memory_storage.claim_batch(1, now=NOW)
    memory_storage.set_job_state(
        job.id, RetryState(NOW + timedelta(seconds=60), 1, "boom", created_at=NOW)
    )

    history = memory_storage.get_job_history(job.id)
    assert [h["state"] for h in history] == ["pending", "processing", "retry"]
    assert history[-1]["data"]["retry_count"] == 1
    assert memory_storage.get_job_history("missing") == []


# --- Queries ---


def test_statistics_counts_and_durations(memory_storage):
    done = _job(created_at=NOW)
    waiting = _job(created_at=NOW, scheduled_at=NOW + timedelta(minutes=1))
    stale = _job(
        created_at=NOW - timedelta(hours=30), scheduled_at=NOW + timedelta(hours=1)
    )
    for job in (done, waiting, stale):
        memory_storage.enqueue(job)
    memory_storage.claim_batch(1, now=NOW)
    memory_storage.set_job_state(
        done.id, CompletedState(created_at=NOW + timedelta(seconds=4))
    )

    stats = memory_storage.get_statistics(since=NOW - timedelta(hours=24))

    assert stats["completed"] == {"count": 1, "avg_duration_seconds": 4.0}
    assert stats["pending"] == {"count": 1, "avg_duration_seconds": None}


def test_find_stuck_jobs(memory_storage):
    job = _job()
    memory_storage.enqueue(job)
    memory_storage.claim_batch(1, now=NOW)

    assert memory_storage.find_stuck_jobs(NOW - timedelta(seconds=1)) == []
    stuck = memory_storage.find_stuck_jobs(NOW + timedelta(minutes=5))
    assert [j.id for j in stuck] == [job.id]


def test_get_jobs_by_state_pages_newest_first(memory_storage):
    jobs = [_job(created_at=NOW + timedelta(seconds=i)) for i in range(5)]
    for job in jobs:
        memory_storage.enqueue(job)

    page = memory_storage.get_jobs_by_state("pending", 0, 2)
    assert [j.id for j in page] == [jobs[4].id, jobs[3].id]
    assert memory_storage.get_state_job_count("pending") == 5
    assert memory_storage.get_state_job_count("failed") == 0
