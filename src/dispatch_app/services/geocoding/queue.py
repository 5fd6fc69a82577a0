"""Durable, polling-based geocode job queue.

Job lifecycle::

    queued -> processing -> completed | retry | failed
    retry  -> (due at next_attempt_at) -> processing -> ...

The claim is the only operation that races between workers and it is a
compare-and-set on the job status, so concurrent seeders and processors
never corrupt a job. Every other transition is a single-job patch written by
the worker that holds the claim.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from ...config import Settings, settings as default_settings
from ...models.domain import GeocodeErrorCode, GeocodeJob, JobStatus
from ...persistence.base import DispatchStore

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_MINUTES = (5, 15, 60, 180, 720, 1440)
DEFAULT_MAX_ATTEMPTS = 6


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backoff_delay(attempts: int, schedule: Sequence[int] = DEFAULT_BACKOFF_MINUTES) -> timedelta:
    """Delay before the next attempt after ``attempts`` failed attempts."""
    if not schedule:
        raise ValueError("Backoff schedule must not be empty.")
    index = min(max(attempts - 1, 0), len(schedule) - 1)
    return timedelta(minutes=schedule[index])


@dataclass(slots=True)
class JobOutcome:
    """What a worker learned from one attempt.

    ``retryable`` outcomes become ``retry`` until the attempt budget runs
    out; non-retryable failures are terminal immediately.
    """

    succeeded: bool
    address_line: str = ""
    address_hash: str = ""
    error_code: Optional[GeocodeErrorCode] = None
    message: Optional[str] = None
    retryable: bool = False

    @classmethod
    def success(cls, address_line: str, address_hash: str) -> "JobOutcome":
        return cls(succeeded=True, address_line=address_line, address_hash=address_hash)

    @classmethod
    def failure(
        cls,
        error_code: GeocodeErrorCode,
        *,
        retryable: bool,
        address_line: str = "",
        address_hash: str = "",
        message: Optional[str] = None,
    ) -> "JobOutcome":
        return cls(
            succeeded=False,
            address_line=address_line,
            address_hash=address_hash,
            error_code=error_code,
            message=message or error_code.value,
            retryable=retryable,
        )


class GeocodeJobQueue:
    def __init__(self, store: DispatchStore, config: Settings | None = None) -> None:
        config = config or default_settings
        self.store = store
        self.backoff_minutes = tuple(config.geocode_backoff_minutes)
        self.max_attempts = config.geocode_max_attempts
        self.stale_lock = timedelta(minutes=config.geocode_stale_lock_minutes)

    def enqueue(
        self,
        tenant_id: str,
        stop_id: str,
        *,
        reason: str = "manual",
        force: bool = False,
        address_line: str | None = None,
        address_hash: str | None = None,
        now: datetime | None = None,
    ) -> tuple[GeocodeJob, bool]:
        """Queue a geocode for a stop. Returns the job and whether it was (re)queued.

        An active job is returned untouched apart from its reason unless
        ``force`` is set, in which case it is reset to a fresh ``queued`` state.
        """
        now = now or utcnow()
        active = self.store.find_active_job(tenant_id, stop_id)

        if active is not None and not force:
            return self._touch_reason(active, reason, now), False

        if active is not None:
            logger.info(f"Force-resetting geocode job {active.job_id} for stop {stop_id} (was {active.status.value})")
            reset = self.store.update_job(
                tenant_id,
                active.job_id,
                {
                    "status": JobStatus.QUEUED,
                    "attempts": 0,
                    "next_attempt_at": now,
                    "reason": reason,
                    "locked_at": None,
                    "completed_at": None,
                    "last_error": None,
                    "error_code": None,
                    "updated_at": now,
                },
            )
            if reset is None:
                raise LookupError(f"Geocode job '{active.job_id}' disappeared during reset.")
            return reset, True

        job = GeocodeJob(
            job_id=uuid.uuid4().hex,
            stop_id=stop_id,
            tenant_id=tenant_id,
            status=JobStatus.QUEUED,
            attempts=0,
            next_attempt_at=now,
            created_at=now,
            updated_at=now,
            reason=reason,
            address_line=address_line,
            address_hash=address_hash,
        )
        stored, created = self.store.insert_job_unless_active(job)
        if not created:
            # Lost the race to a concurrent enqueue for the same stop.
            return self._touch_reason(stored, reason, now), False
        return stored, True

    def _touch_reason(self, active: GeocodeJob, reason: str, now: datetime) -> GeocodeJob:
        if not reason or active.reason == reason:
            return active
        return self.store.update_job(active.tenant_id, active.job_id, {"reason": reason, "updated_at": now}) or active

    def list_due(self, tenant_id: str, limit: int, now: datetime | None = None) -> list[GeocodeJob]:
        if limit <= 0:
            return []
        now = now or utcnow()
        return self.store.list_due_jobs(tenant_id, now=now, stale_before=now - self.stale_lock, limit=limit)

    def claim(self, tenant_id: str, job_id: str, now: datetime | None = None) -> Optional[GeocodeJob]:
        """Move a job into ``processing``; None means another worker has it."""
        now = now or utcnow()
        return self.store.claim_job(tenant_id, job_id, locked_at=now, stale_before=now - self.stale_lock)

    def finish(
        self,
        job: GeocodeJob,
        outcome: JobOutcome,
        now: datetime | None = None,
    ) -> GeocodeJob:
        """Record the result of one attempt and release the lock."""
        now = now or utcnow()
        attempts = job.attempts + 1
        changes: dict = {
            "attempts": attempts,
            "address_line": outcome.address_line,
            "address_hash": outcome.address_hash,
            "locked_at": None,
            "updated_at": now,
        }

        if outcome.succeeded:
            changes.update(
                status=JobStatus.COMPLETED,
                completed_at=now,
                last_error=None,
                error_code=None,
            )
        elif outcome.retryable and attempts < self.max_attempts:
            changes.update(
                status=JobStatus.RETRY,
                next_attempt_at=now + backoff_delay(attempts, self.backoff_minutes),
                last_error=outcome.message,
                error_code=outcome.error_code,
            )
        else:
            changes.update(
                status=JobStatus.FAILED,
                completed_at=now,
                last_error=outcome.message,
                error_code=outcome.error_code,
            )

        updated = self.store.update_job(job.tenant_id, job.job_id, changes)
        if updated is None:
            raise LookupError(f"Geocode job '{job.job_id}' not found while finishing.")
        return updated
