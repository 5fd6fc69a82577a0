"""Storage contract shared by the Supabase and in-memory backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional, Sequence

from ..models.domain import (
    Assignment,
    ChecklistItem,
    Cleaner,
    CustomerProfile,
    GeocodeJob,
    GeocodeStatus,
    QuoteRecord,
    ServiceStop,
)


class DispatchStore(ABC):
    """Contract for stop, address-source and geocode job storage.

    Every call is scoped to a tenant. Stop writes are limited to the location
    fields and the manual dispatch sequence; everything else belongs to the
    booking subsystem.
    """

    # --- stops -----------------------------------------------------------

    @abstractmethod
    def get_stop(self, tenant_id: str, stop_id: str) -> Optional[ServiceStop]:
        raise NotImplementedError

    @abstractmethod
    def list_recent_stops(self, tenant_id: str, limit: int) -> list[ServiceStop]:
        """Most recently created stops first."""
        raise NotImplementedError

    @abstractmethod
    def list_stops_for_date(self, tenant_id: str, service_date: str) -> list[ServiceStop]:
        raise NotImplementedError

    @abstractmethod
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
        """Write location metadata; coordinates are only written when both are given."""
        raise NotImplementedError

    @abstractmethod
    def set_manual_sequence(self, tenant_id: str, stop_id: str, sequence: int) -> None:
        raise NotImplementedError

    # --- address sources and read-model inputs -----------------------------

    @abstractmethod
    def get_customer(self, tenant_id: str, customer_id: str) -> Optional[CustomerProfile]:
        raise NotImplementedError

    @abstractmethod
    def get_quote(self, tenant_id: str, quote_id: str) -> Optional[QuoteRecord]:
        raise NotImplementedError

    @abstractmethod
    def list_assignments(self, tenant_id: str, stop_ids: Sequence[str]) -> list[Assignment]:
        raise NotImplementedError

    @abstractmethod
    def list_checklist_items(self, tenant_id: str, stop_ids: Sequence[str]) -> list[ChecklistItem]:
        raise NotImplementedError

    @abstractmethod
    def list_cleaners(self, tenant_id: str) -> list[Cleaner]:
        """Active cleaners of the tenant."""
        raise NotImplementedError

    # --- geocode jobs ------------------------------------------------------

    @abstractmethod
    def get_job(self, tenant_id: str, job_id: str) -> Optional[GeocodeJob]:
        raise NotImplementedError

    @abstractmethod
    def find_active_job(self, tenant_id: str, stop_id: str) -> Optional[GeocodeJob]:
        raise NotImplementedError

    @abstractmethod
    def latest_job_for_stop(self, tenant_id: str, stop_id: str) -> Optional[GeocodeJob]:
        raise NotImplementedError

    @abstractmethod
    def insert_job(self, job: GeocodeJob) -> GeocodeJob:
        raise NotImplementedError

    @abstractmethod
    def insert_job_unless_active(self, job: GeocodeJob) -> tuple[GeocodeJob, bool]:
        """Insert ``job`` unless its stop already has an active job.

        Returns the stored job and whether it was inserted. The check and the
        insert are atomic: concurrent callers for one stop get one insert.
        """
        raise NotImplementedError

    @abstractmethod
    def update_job(self, tenant_id: str, job_id: str, changes: dict[str, Any]) -> Optional[GeocodeJob]:
        """Patch a job by field name and return the updated record."""
        raise NotImplementedError

    @abstractmethod
    def claim_job(
        self,
        tenant_id: str,
        job_id: str,
        *,
        locked_at: datetime,
        stale_before: datetime,
    ) -> Optional[GeocodeJob]:
        """Compare-and-set a job into ``processing``.

        Succeeds only when the job is ``queued``/``retry``, or ``processing``
        with a lock older than ``stale_before``. Returns None otherwise.
        """
        raise NotImplementedError

    @abstractmethod
    def list_due_jobs(
        self,
        tenant_id: str,
        *,
        now: datetime,
        stale_before: datetime,
        limit: int,
    ) -> list[GeocodeJob]:
        raise NotImplementedError
