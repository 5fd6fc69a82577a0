"""Supabase-backed persistence for stops and geocode jobs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Sequence

from postgrest.exceptions import APIError

from ..models.domain import (
    AddressFields,
    Assignment,
    ChecklistItem,
    Cleaner,
    CustomerProfile,
    DispatchPriority,
    GeocodeErrorCode,
    GeocodeJob,
    GeocodeStatus,
    JobStatus,
    QuoteRecord,
    ServiceStop,
)
from .base import DispatchStore

logger = logging.getLogger(__name__)

STOPS_TABLE = "service_stops"
JOBS_TABLE = "geocode_jobs"
CUSTOMERS_TABLE = "customers"
QUOTES_TABLE = "quote_requests"
ASSIGNMENTS_TABLE = "stop_assignments"
CHECKLIST_TABLE = "stop_checklist_items"
CLEANERS_TABLE = "cleaners"

# GeocodeJob field name -> column name, where they differ
_JOB_COLUMNS = {"job_id": "id"}

UNIQUE_VIOLATION = "23505"


def format_timestamp(value: datetime) -> str:
    """UTC timestamp in a form safe to embed in PostgREST filter strings."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # epoch milliseconds
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    text = str(value).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _address_from_row(row: dict, street_key: str = "street") -> AddressFields:
    return AddressFields(
        street=row.get(street_key),
        line2=row.get("address_line2"),
        city=row.get("city"),
        state=row.get("state"),
        postal_code=row.get("postal_code"),
    )


def stop_from_row(row: dict) -> ServiceStop:
    status_value = row.get("geocode_status")
    return ServiceStop(
        stop_id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        service_date=row.get("service_date") or "",
        created_at=parse_timestamp(row.get("created_at")) or datetime.now(timezone.utc),
        status=row.get("status") or "scheduled",
        priority=DispatchPriority.parse(row.get("dispatch_priority")),
        window_start=row.get("window_start"),
        window_end=row.get("window_end"),
        manual_sequence=row.get("dispatch_order"),
        customer_id=row.get("customer_id"),
        quote_id=row.get("quote_id"),
        customer_name=row.get("customer_name"),
        service_type=row.get("service_type"),
        estimated_duration_minutes=row.get("estimated_duration_minutes"),
        address=_address_from_row(row),
        latitude=row.get("latitude"),
        longitude=row.get("longitude"),
        geocode_status=GeocodeStatus(status_value) if status_value else None,
        geocoded_at=parse_timestamp(row.get("geocoded_at")),
        provider=row.get("geocode_provider"),
    )


def job_from_row(row: dict) -> GeocodeJob:
    error_code = row.get("error_code")
    return GeocodeJob(
        job_id=str(row["id"]),
        stop_id=str(row["stop_id"]),
        tenant_id=str(row["tenant_id"]),
        status=JobStatus(row["status"]),
        attempts=int(row.get("attempts") or 0),
        next_attempt_at=parse_timestamp(row.get("next_attempt_at")) or datetime.now(timezone.utc),
        created_at=parse_timestamp(row.get("created_at")) or datetime.now(timezone.utc),
        reason=row.get("reason"),
        address_line=row.get("address_line"),
        address_hash=row.get("address_hash"),
        last_error=row.get("last_error"),
        error_code=GeocodeErrorCode(error_code) if error_code else None,
        locked_at=parse_timestamp(row.get("locked_at")),
        completed_at=parse_timestamp(row.get("completed_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    return value


def job_changes_to_row(changes: dict[str, Any]) -> dict[str, Any]:
    return {_JOB_COLUMNS.get(key, key): _column_value(value) for key, value in changes.items()}


def job_to_row(job: GeocodeJob) -> dict[str, Any]:
    return job_changes_to_row(
        {
            "job_id": job.job_id,
            "stop_id": job.stop_id,
            "tenant_id": job.tenant_id,
            "status": job.status,
            "attempts": job.attempts,
            "next_attempt_at": job.next_attempt_at,
            "created_at": job.created_at,
            "reason": job.reason,
            "address_line": job.address_line,
            "address_hash": job.address_hash,
            "last_error": job.last_error,
            "error_code": job.error_code,
            "locked_at": job.locked_at,
            "completed_at": job.completed_at,
            "updated_at": job.updated_at,
        }
    )


class SupabaseDispatchStore(DispatchStore):
    """Reads and writes dispatch data through the Supabase PostgREST API.

    The jobs table carries a partial unique index so a stop holds at most one
    active job::

        create unique index geocode_jobs_one_active_per_stop
            on geocode_jobs (tenant_id, stop_id)
            where status in ('queued', 'retry', 'processing');
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    def _first(self, response: Any) -> Optional[dict]:
        rows = response.data or []
        return rows[0] if rows else None

    # --- stops -------------------------------------------------------------

    def get_stop(self, tenant_id: str, stop_id: str) -> Optional[ServiceStop]:
        response = (
            self.client.table(STOPS_TABLE).select("*").eq("tenant_id", tenant_id).eq("id", stop_id).limit(1).execute()
        )
        row = self._first(response)
        return stop_from_row(row) if row else None

    def list_recent_stops(self, tenant_id: str, limit: int) -> list[ServiceStop]:
        response = (
            self.client.table(STOPS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [stop_from_row(row) for row in (response.data or [])]

    def list_stops_for_date(self, tenant_id: str, service_date: str) -> list[ServiceStop]:
        response = (
            self.client.table(STOPS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("service_date", service_date)
            .execute()
        )
        return [stop_from_row(row) for row in (response.data or [])]

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
        patch: dict[str, Any] = {
            "geocode_status": geocode_status.value,
            "geocoded_at": format_timestamp(geocoded_at),
            "geocode_provider": provider,
            "updated_at": format_timestamp(datetime.now(timezone.utc)),
        }
        if latitude is not None and longitude is not None:
            patch["latitude"] = latitude
            patch["longitude"] = longitude
        response = self.client.table(STOPS_TABLE).update(patch).eq("tenant_id", tenant_id).eq("id", stop_id).execute()
        if not response.data:
            raise LookupError(f"Stop '{stop_id}' not found.")

    def set_manual_sequence(self, tenant_id: str, stop_id: str, sequence: int) -> None:
        response = (
            self.client.table(STOPS_TABLE)
            .update({"dispatch_order": sequence, "updated_at": format_timestamp(datetime.now(timezone.utc))})
            .eq("tenant_id", tenant_id)
            .eq("id", stop_id)
            .execute()
        )
        if not response.data:
            raise LookupError(f"Stop '{stop_id}' not found.")

    # --- address sources ---------------------------------------------------

    def get_customer(self, tenant_id: str, customer_id: str) -> Optional[CustomerProfile]:
        response = (
            self.client.table(CUSTOMERS_TABLE)
            .select("id,street,address_line2,city,state,postal_code")
            .eq("tenant_id", tenant_id)
            .eq("id", customer_id)
            .limit(1)
            .execute()
        )
        row = self._first(response)
        if not row:
            return None
        return CustomerProfile(customer_id=str(row["id"]), address=_address_from_row(row))

    def get_quote(self, tenant_id: str, quote_id: str) -> Optional[QuoteRecord]:
        response = (
            self.client.table(QUOTES_TABLE)
            .select("id,address,address_line2,city,state,postal_code")
            .eq("tenant_id", tenant_id)
            .eq("id", quote_id)
            .limit(1)
            .execute()
        )
        row = self._first(response)
        if not row:
            return None
        return QuoteRecord(quote_id=str(row["id"]), address=_address_from_row(row, street_key="address"))

    def list_assignments(self, tenant_id: str, stop_ids: Sequence[str]) -> list[Assignment]:
        if not stop_ids:
            return []
        response = (
            self.client.table(ASSIGNMENTS_TABLE)
            .select("stop_id,cleaner_id,crew_id,role,status")
            .eq("tenant_id", tenant_id)
            .in_("stop_id", list(stop_ids))
            .execute()
        )
        return [
            Assignment(
                stop_id=str(row["stop_id"]),
                cleaner_id=row.get("cleaner_id"),
                crew_id=row.get("crew_id"),
                role=row.get("role") or "primary",
                status=row.get("status") or "assigned",
            )
            for row in (response.data or [])
        ]

    def list_checklist_items(self, tenant_id: str, stop_ids: Sequence[str]) -> list[ChecklistItem]:
        if not stop_ids:
            return []
        response = (
            self.client.table(CHECKLIST_TABLE)
            .select("stop_id,is_completed")
            .eq("tenant_id", tenant_id)
            .in_("stop_id", list(stop_ids))
            .execute()
        )
        return [
            ChecklistItem(stop_id=str(row["stop_id"]), is_completed=bool(row.get("is_completed")))
            for row in (response.data or [])
        ]

    def list_cleaners(self, tenant_id: str) -> list[Cleaner]:
        response = (
            self.client.table(CLEANERS_TABLE)
            .select("id,first_name,last_name,status")
            .eq("tenant_id", tenant_id)
            .eq("status", "active")
            .execute()
        )
        return [
            Cleaner(
                cleaner_id=str(row["id"]),
                first_name=row.get("first_name") or "",
                last_name=row.get("last_name") or "",
            )
            for row in (response.data or [])
        ]

    # --- geocode jobs ------------------------------------------------------

    def get_job(self, tenant_id: str, job_id: str) -> Optional[GeocodeJob]:
        response = self.client.table(JOBS_TABLE).select("*").eq("tenant_id", tenant_id).eq("id", job_id).limit(1).execute()
        row = self._first(response)
        return job_from_row(row) if row else None

    def find_active_job(self, tenant_id: str, stop_id: str) -> Optional[GeocodeJob]:
        response = (
            self.client.table(JOBS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("stop_id", stop_id)
            .in_("status", [JobStatus.QUEUED.value, JobStatus.RETRY.value, JobStatus.PROCESSING.value])
            .order("created_at", desc=False)
            .limit(1)
            .execute()
        )
        row = self._first(response)
        return job_from_row(row) if row else None

    def latest_job_for_stop(self, tenant_id: str, stop_id: str) -> Optional[GeocodeJob]:
        response = (
            self.client.table(JOBS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .eq("stop_id", stop_id)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        row = self._first(response)
        return job_from_row(row) if row else None

    def insert_job(self, job: GeocodeJob) -> GeocodeJob:
        response = self.client.table(JOBS_TABLE).insert(job_to_row(job)).execute()
        row = self._first(response)
        return job_from_row(row) if row else job

    def insert_job_unless_active(self, job: GeocodeJob) -> tuple[GeocodeJob, bool]:
        try:
            return self.insert_job(job), True
        except APIError as e:
            if e.code != UNIQUE_VIOLATION:
                raise
        existing = self.find_active_job(job.tenant_id, job.stop_id)
        if existing is None:
            raise LookupError(f"Active geocode job for stop '{job.stop_id}' vanished after a conflicting insert.")
        logger.info(f"Geocode job for stop {job.stop_id} already active as {existing.job_id}")
        return existing, False

    def update_job(self, tenant_id: str, job_id: str, changes: dict[str, Any]) -> Optional[GeocodeJob]:
        response = (
            self.client.table(JOBS_TABLE)
            .update(job_changes_to_row(changes))
            .eq("tenant_id", tenant_id)
            .eq("id", job_id)
            .execute()
        )
        row = self._first(response)
        return job_from_row(row) if row else None

    def claim_job(
        self,
        tenant_id: str,
        job_id: str,
        *,
        locked_at: datetime,
        stale_before: datetime,
    ) -> Optional[GeocodeJob]:
        # The filter is evaluated by Postgres inside the UPDATE, so only one
        # concurrent claimant gets the row back.
        stale = format_timestamp(stale_before)
        response = (
            self.client.table(JOBS_TABLE)
            .update(
                {
                    "status": JobStatus.PROCESSING.value,
                    "locked_at": format_timestamp(locked_at),
                    "updated_at": format_timestamp(locked_at),
                }
            )
            .eq("tenant_id", tenant_id)
            .eq("id", job_id)
            .or_(f'status.in.(queued,retry),and(status.eq.processing,locked_at.lt."{stale}")')
            .execute()
        )
        row = self._first(response)
        if not row:
            logger.debug(f"Claim lost for geocode job {job_id}")
            return None
        return job_from_row(row)

    def list_due_jobs(
        self,
        tenant_id: str,
        *,
        now: datetime,
        stale_before: datetime,
        limit: int,
    ) -> list[GeocodeJob]:
        due = format_timestamp(now)
        stale = format_timestamp(stale_before)
        response = (
            self.client.table(JOBS_TABLE)
            .select("*")
            .eq("tenant_id", tenant_id)
            .or_(
                f'and(status.in.(queued,retry),next_attempt_at.lte."{due}"),'
                f'and(status.eq.processing,locked_at.lt."{stale}")'
            )
            .order("next_attempt_at", desc=False)
            .limit(limit)
            .execute()
        )
        return [job_from_row(row) for row in (response.data or [])]
