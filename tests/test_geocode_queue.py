import threading
from datetime import timedelta

import pytest

from dispatch_app.models.domain import GeocodeErrorCode, JobStatus
from dispatch_app.persistence.memory import InMemoryDispatchStore
from dispatch_app.services.geocoding.queue import GeocodeJobQueue, JobOutcome, backoff_delay

from conftest import NOW, TENANT


@pytest.fixture
def queue(store, config) -> GeocodeJobQueue:
    return GeocodeJobQueue(store, config)


def _retry_outcome() -> JobOutcome:
    return JobOutcome.failure(GeocodeErrorCode.NO_RESULT, retryable=True, address_line="x", address_hash="h")


def test_enqueue_is_idempotent_per_stop(store, queue):
    job, created = queue.enqueue(TENANT, "S1", reason="backfill", now=NOW)
    again, created_again = queue.enqueue(TENANT, "S1", reason="backfill", now=NOW)

    assert created is True
    assert created_again is False
    assert again.job_id == job.job_id
    assert job.status == JobStatus.QUEUED
    assert job.attempts == 0
    assert len(store.jobs_for_stop(TENANT, "S1")) == 1


def test_enqueue_updates_reason_of_active_job(queue):
    job, _ = queue.enqueue(TENANT, "S1", reason="backfill", now=NOW)
    again, created = queue.enqueue(TENANT, "S1", reason="address_changed", now=NOW)

    assert created is False
    assert again.job_id == job.job_id
    assert again.reason == "address_changed"


def test_force_enqueue_resets_active_job(store, queue):
    job, _ = queue.enqueue(TENANT, "S1", now=NOW)
    claimed = queue.claim(TENANT, job.job_id, now=NOW)
    queue.finish(claimed, _retry_outcome(), now=NOW)

    reset, created = queue.enqueue(TENANT, "S1", force=True, reason="manual", now=NOW + timedelta(minutes=1))

    assert created is True
    assert reset.job_id == job.job_id
    assert reset.status == JobStatus.QUEUED
    assert reset.attempts == 0
    assert reset.last_error is None
    assert reset.next_attempt_at == NOW + timedelta(minutes=1)
    assert len(store.jobs_for_stop(TENANT, "S1")) == 1


def test_new_job_after_terminal_job(queue):
    job, _ = queue.enqueue(TENANT, "S1", now=NOW)
    claimed = queue.claim(TENANT, job.job_id, now=NOW)
    queue.finish(claimed, JobOutcome.success("line", "hash"), now=NOW)

    second, created = queue.enqueue(TENANT, "S1", now=NOW + timedelta(minutes=1))

    assert created is True
    assert second.job_id != job.job_id


@pytest.mark.parametrize(
    ("attempts", "minutes"),
    [(1, 5), (2, 15), (3, 60), (4, 180), (5, 720), (6, 1440), (9, 1440)],
)
def test_backoff_schedule(attempts, minutes):
    assert backoff_delay(attempts) == timedelta(minutes=minutes)


def test_retryable_failure_schedules_next_attempt(queue):
    job, _ = queue.enqueue(TENANT, "S1", now=NOW)
    claimed = queue.claim(TENANT, job.job_id, now=NOW)

    finished = queue.finish(claimed, _retry_outcome(), now=NOW)

    assert finished.status == JobStatus.RETRY
    assert finished.attempts == 1
    assert finished.next_attempt_at == NOW + timedelta(minutes=5)
    assert finished.locked_at is None
    assert finished.error_code == GeocodeErrorCode.NO_RESULT
    assert queue.list_due(TENANT, 10, now=NOW + timedelta(minutes=4)) == []
    assert [j.job_id for j in queue.list_due(TENANT, 10, now=NOW + timedelta(minutes=5))] == [job.job_id]


def test_retryable_failure_turns_terminal_after_max_attempts(queue):
    job, _ = queue.enqueue(TENANT, "S1", now=NOW)
    now = NOW
    for _ in range(6):
        claimed = queue.claim(TENANT, job.job_id, now=now)
        assert claimed is not None
        job = queue.finish(claimed, _retry_outcome(), now=now)
        now = job.next_attempt_at

    assert job.status == JobStatus.FAILED
    assert job.attempts == 6
    assert job.completed_at is not None


def test_non_retryable_failure_is_terminal(queue):
    job, _ = queue.enqueue(TENANT, "S1", now=NOW)
    claimed = queue.claim(TENANT, job.job_id, now=NOW)

    finished = queue.finish(
        claimed, JobOutcome.failure(GeocodeErrorCode.MISSING_ADDRESS, retryable=False), now=NOW
    )

    assert finished.status == JobStatus.FAILED
    assert finished.attempts == 1
    assert finished.error_code == GeocodeErrorCode.MISSING_ADDRESS


def test_losing_claim_is_a_no_op(store, queue):
    job, _ = queue.enqueue(TENANT, "S1", now=NOW)

    first = queue.claim(TENANT, job.job_id, now=NOW)
    second = queue.claim(TENANT, job.job_id, now=NOW)

    assert first is not None and first.status == JobStatus.PROCESSING
    assert second is None
    assert store.get_job(TENANT, job.job_id).locked_at == NOW


def test_stale_processing_lock_is_reclaimable(queue):
    job, _ = queue.enqueue(TENANT, "S1", now=NOW)
    queue.claim(TENANT, job.job_id, now=NOW)

    soon = NOW + timedelta(minutes=5)
    assert queue.list_due(TENANT, 10, now=soon) == []
    assert queue.claim(TENANT, job.job_id, now=soon) is None

    later = NOW + timedelta(minutes=16)
    assert [j.job_id for j in queue.list_due(TENANT, 10, now=later)] == [job.job_id]
    reclaimed = queue.claim(TENANT, job.job_id, now=later)
    assert reclaimed is not None
    assert reclaimed.locked_at == later


def test_jobs_are_tenant_scoped(queue):
    queue.enqueue(TENANT, "S1", now=NOW)
    _, created = queue.enqueue("tenant-b", "S1", now=NOW)

    assert created is True
    assert len(queue.list_due(TENANT, 10, now=NOW)) == 1
    assert len(queue.list_due("tenant-b", 10, now=NOW)) == 1


class LockstepStore(InMemoryDispatchStore):
    """Holds every enqueue after its active-job lookup until both callers arrive."""

    def __init__(self) -> None:
        super().__init__()
        self.barrier = threading.Barrier(2, timeout=5)

    def find_active_job(self, tenant_id, stop_id):
        active = super().find_active_job(tenant_id, stop_id)
        self.barrier.wait()
        return active


def test_concurrent_enqueues_leave_one_active_job(config):
    store = LockstepStore()
    queue = GeocodeJobQueue(store, config)
    results = []

    def enqueue(reason):
        results.append(queue.enqueue(TENANT, "S1", reason=reason, now=NOW))

    threads = [threading.Thread(target=enqueue, args=(reason,)) for reason in ("cron", "manual")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    active = [job for job in store.jobs_for_stop(TENANT, "S1") if job.is_active]
    assert len(active) == 1
    assert sorted(created for _, created in results) == [False, True]
    assert {job.job_id for job, _ in results} == {active[0].job_id}
