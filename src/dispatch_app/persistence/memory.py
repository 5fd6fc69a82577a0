"""In-process store used when Supabase is not configured and in tests."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from ..models.domain import (
    CLAIMABLE_JOB_STATUSES,
    Assignment,
    ChecklistItem,
    Cleaner,
    CustomerProfile,
    GeocodeJob,
    GeocodeStatus,
    JobStatus,
    QuoteRecord,
    ServiceStop,
)
from .base import DispatchStore


class InMemoryDispatchStore(DispatchStore):
    """Dictionary-backed store; a single lock makes the job claim atomic."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stops: dict[tuple[str, str], ServiceStop] = {}
        self._customers: dict[tuple[str, str], CustomerProfile] = {}
        self._quotes: dict[tuple[str, str], QuoteRecord] = {}
        self._assignments: dict[str, list[Assignment]] = {}
        self._checklists: dict[str, list[ChecklistItem]] = {}
        self._cleaners: dict[str, list[Cleaner]] = {}
        self._jobs: dict[tuple[str, str], GeocodeJob] = {}

    # --- seeding helpers ---------------------------------------------------

    def add_stops(self, stops: Iterable[ServiceStop]) -> None:
        for stop in stops:
            self._stops[(stop.tenant_id, stop.stop_id)] = stop

    def add_customer(self, tenant_id: str, customer: CustomerProfile) -> None:
        self._customers[(tenant_id, customer.customer_id)] = customer

    def add_quote(self, tenant_id: str, quote: QuoteRecord) -> None:
        self._quotes[(tenant_id, quote.quote_id)] = quote

    def add_assignments(self, tenant_id: str, assignments: Iterable[Assignment]) -> None:
        self._assignments.setdefault(tenant_id, []).extend(assignments)

    def add_checklist_items(self, tenant_id: str, items: Iterable[ChecklistItem]) -> None:
        self._checklists.setdefault(tenant_id, []).extend(items)

    def add_cleaners(self, tenant_id: str, cleaners: Iterable[Cleaner]) -> None:
        self._cleaners.setdefault(tenant_id, []).extend(cleaners)

    def jobs_for_stop(self, tenant_id: str, stop_id: str) -> list[GeocodeJob]:
        jobs = [job for job in self._jobs.values() if job.tenant_id == tenant_id and job.stop_id == stop_id]
        return sorted(jobs, key=lambda job: job.created_at)

    # --- stops -------------------------------------------------------------

    def get_stop(self, tenant_id: str, stop_id: str) -> Optional[ServiceStop]:
        return self._stops.get((tenant_id, stop_id))

    def list_recent_stops(self, tenant_id: str, limit: int) -> list[ServiceStop]:
        stops = [stop for (tenant, _), stop in self._stops.items() if tenant == tenant_id]
        stops.sort(key=lambda stop: stop.created_at, reverse=True)
        return stops[:limit]

    def list_stops_for_date(self, tenant_id: str, service_date: str) -> list[ServiceStop]:
        return [
            stop
            for (tenant, _), stop in self._stops.items()
            if tenant == tenant_id and stop.service_date == service_date
        ]

    def update_stop_location(
        self,
        tenant_id: str,
        stop_id: str,
        *,
        geocode_status: GeocodeStatus,
        geocoded_at: datetime,
        provider: Optional[str],
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> None:
        with self._lock:
            stop = self._stops.get((tenant_id, stop_id))
            if stop is None:
                raise LookupError(f"Stop '{stop_id}' not found.")
            stop.geocode_status = geocode_status
            stop.geocoded_at = geocoded_at
            stop.provider = provider
            if latitude is not None and longitude is not None:
                stop.latitude = latitude
                stop.longitude = longitude

    def set_manual_sequence(self, tenant_id: str, stop_id: str, sequence: int) -> None:
        with self._lock:
            stop = self._stops.get((tenant_id, stop_id))
            if stop is None:
                raise LookupError(f"Stop '{stop_id}' not found.")
            stop.manual_sequence = sequence

    # --- address sources ---------------------------------------------------

    def get_customer(self, tenant_id: str, customer_id: str) -> Optional[CustomerProfile]:
        return self._customers.get((tenant_id, customer_id))

    def get_quote(self, tenant_id: str, quote_id: str) -> Optional[QuoteRecord]:
        return self._quotes.get((tenant_id, quote_id))

    def list_assignments(self, tenant_id: str, stop_ids: Sequence[str]) -> list[Assignment]:
        wanted = set(stop_ids)
        return [item for item in self._assignments.get(tenant_id, []) if item.stop_id in wanted]

    def list_checklist_items(self, tenant_id: str, stop_ids: Sequence[str]) -> list[ChecklistItem]:
        wanted = set(stop_ids)
        return [item for item in self._checklists.get(tenant_id, []) if item.stop_id in wanted]

    def list_cleaners(self, tenant_id: str) -> list[Cleaner]:
        return [cleaner for cleaner in self._cleaners.get(tenant_id, []) if cleaner.active]

    # --- geocode jobs ------------------------------------------------------

    def get_job(self, tenant_id: str, job_id: str) -> Optional[GeocodeJob]:
        return self._jobs.get((tenant_id, job_id))

    def find_active_job(self, tenant_id: str, stop_id: str) -> Optional[GeocodeJob]:
        for job in self.jobs_for_stop(tenant_id, stop_id):
            if job.is_active:
                return job
        return None

    def latest_job_for_stop(self, tenant_id: str, stop_id: str) -> Optional[GeocodeJob]:
        jobs = self.jobs_for_stop(tenant_id, stop_id)
        return jobs[-1] if jobs else None

    def insert_job(self, job: GeocodeJob) -> GeocodeJob:
        with self._lock:
            key = (job.tenant_id, job.job_id)
            if key in self._jobs:
                raise ValueError(f"Job '{job.job_id}' already exists.")
            self._jobs[key] = job
        return job

    def insert_job_unless_active(self, job: GeocodeJob) -> tuple[GeocodeJob, bool]:
        with self._lock:
            active = [
                existing
                for existing in self._jobs.values()
                if existing.tenant_id == job.tenant_id and existing.stop_id == job.stop_id and existing.is_active
            ]
            if active:
                return min(active, key=lambda existing: existing.created_at), False
            self._jobs[(job.tenant_id, job.job_id)] = job
        return job, True

    def update_job(self, tenant_id: str, job_id: str, changes: dict[str, Any]) -> Optional[GeocodeJob]:
        with self._lock:
            job = self._jobs.get((tenant_id, job_id))
            if job is None:
                return None
            updated = replace(job, **changes)
            self._jobs[(tenant_id, job_id)] = updated
            return updated

    def claim_job(
        self,
        tenant_id: str,
        job_id: str,
        *,
        locked_at: datetime,
        stale_before: datetime,
    ) -> Optional[GeocodeJob]:
        with self._lock:
            job = self._jobs.get((tenant_id, job_id))
            if job is None or not _is_claimable(job, stale_before):
                return None
            claimed = replace(job, status=JobStatus.PROCESSING, locked_at=locked_at, updated_at=locked_at)
            self._jobs[(tenant_id, job_id)] = claimed
            return claimed

    def list_due_jobs(
        self,
        tenant_id: str,
        *,
        now: datetime,
        stale_before: datetime,
        limit: int,
    ) -> list[GeocodeJob]:
        due = [
            job
            for (tenant, _), job in self._jobs.items()
            if tenant == tenant_id
            and (
                (job.status in CLAIMABLE_JOB_STATUSES and job.next_attempt_at <= now)
                or _is_stale_lock(job, stale_before)
            )
        ]
        due.sort(key=lambda job: (job.next_attempt_at, job.created_at))
        return due[:limit]


def _is_stale_lock(job: GeocodeJob, stale_before: datetime) -> bool:
    return job.status == JobStatus.PROCESSING and job.locked_at is not None and job.locked_at < stale_before


def _is_claimable(job: GeocodeJob, stale_before: datetime) -> bool:
    return job.status in CLAIMABLE_JOB_STATUSES or _is_stale_lock(job, stale_before)
