"""Executes due geocode jobs against the geocoding provider."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional, Protocol

from ...models.domain import GeocodeErrorCode, GeocodeJob, GeocodeStatus, JobStatus
from ...persistence.base import DispatchStore
from .address import AddressSourceLoader
from .mapbox_client import GeocodeMatch, GeocodingProviderError
from .queue import GeocodeJobQueue, JobOutcome, utcnow

logger = logging.getLogger(__name__)


class Geocoder(Protocol):
    provider_name: str

    @property
    def configured(self) -> bool: ...

    def geocode(self, address_line: str) -> Optional[GeocodeMatch]: ...


@dataclass(slots=True)
class ProcessSummary:
    token_configured: bool
    due: int = 0
    claimed: int = 0
    skipped: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    missing_address: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class GeocodeWorker:
    """Claims due jobs, resolves their address and writes coordinates back."""

    def __init__(self, store: DispatchStore, queue: GeocodeJobQueue, geocoder: Geocoder) -> None:
        self.store = store
        self.queue = queue
        self.geocoder = geocoder

    def process(self, tenant_id: str, limit: int, now: datetime | None = None) -> ProcessSummary:
        summary = ProcessSummary(token_configured=self.geocoder.configured)
        jobs = self.queue.list_due(tenant_id, limit, now=now)
        summary.due = len(jobs)
        loader = AddressSourceLoader(self.store, tenant_id)

        for job in jobs:
            claimed = self.queue.claim(tenant_id, job.job_id, now=now)
            if claimed is None:
                summary.skipped += 1
                continue
            summary.claimed += 1
            finished = self.run_job(claimed, loader, now=now)

            if finished.status == JobStatus.COMPLETED:
                summary.completed += 1
            elif finished.status == JobStatus.RETRY:
                summary.retried += 1
            elif finished.error_code == GeocodeErrorCode.MISSING_ADDRESS:
                summary.missing_address += 1
            else:
                summary.failed += 1

        logger.info(
            f"Geocode process for tenant {tenant_id}: {summary.claimed}/{summary.due} claimed, "
            f"{summary.completed} completed, {summary.retried} retry, "
            f"{summary.failed} failed, {summary.missing_address} missing address"
        )
        return summary

    def run_job(
        self,
        job: GeocodeJob,
        loader: AddressSourceLoader | None = None,
        now: datetime | None = None,
    ) -> GeocodeJob:
        """Run one claimed job to a terminal or retry state."""
        loader = loader or AddressSourceLoader(self.store, job.tenant_id)
        stop = self.store.get_stop(job.tenant_id, job.stop_id)
        if stop is None:
            logger.warning(f"Stop {job.stop_id} vanished before geocode job {job.job_id} ran")
            outcome = JobOutcome.failure(GeocodeErrorCode.STOP_NOT_FOUND, retryable=False)
            return self.queue.finish(job, outcome, now=now)

        resolved = loader.resolve(stop)
        line, digest = resolved.line, resolved.hash
        provider = self.geocoder.provider_name

        if resolved.is_empty:
            outcome = JobOutcome.failure(GeocodeErrorCode.MISSING_ADDRESS, retryable=False)
        elif not self.geocoder.configured:
            outcome = JobOutcome.failure(
                GeocodeErrorCode.PROVIDER_UNAVAILABLE,
                retryable=True,
                address_line=line,
                address_hash=digest,
                message="Geocoding provider token is not configured.",
            )
        else:
            try:
                match = self.geocoder.geocode(line)
            except Exception as e:
                if isinstance(e, GeocodingProviderError):
                    logger.warning(f"Geocoding failed for stop {stop.stop_id}: {e}")
                else:
                    logger.exception(f"Unexpected geocoder error for stop {stop.stop_id}")
                match = None
                outcome = JobOutcome.failure(
                    GeocodeErrorCode.PROVIDER_EXCEPTION,
                    retryable=True,
                    address_line=line,
                    address_hash=digest,
                    message=str(e) or type(e).__name__,
                )
            else:
                if match is None:
                    outcome = JobOutcome.failure(
                        GeocodeErrorCode.NO_RESULT,
                        retryable=True,
                        address_line=line,
                        address_hash=digest,
                    )
                else:
                    outcome = JobOutcome.success(line, digest)

            if outcome.succeeded:
                self.store.update_stop_location(
                    stop.tenant_id,
                    stop.stop_id,
                    geocode_status=GeocodeStatus.GEOCODED,
                    geocoded_at=now or utcnow(),
                    provider=match.provider or provider,
                    latitude=match.latitude,
                    longitude=match.longitude,
                )
                return self.queue.finish(job, outcome, now=now)

        finished = self.queue.finish(job, outcome, now=now)
        if finished.status == JobStatus.FAILED:
            # Coordinates are left alone so a stale pin stays visible next to the failure.
            status = (
                GeocodeStatus.MISSING_ADDRESS
                if outcome.error_code == GeocodeErrorCode.MISSING_ADDRESS
                else GeocodeStatus.FAILED
            )
            self.store.update_stop_location(
                stop.tenant_id,
                stop.stop_id,
                geocode_status=status,
                geocoded_at=now or utcnow(),
                provider=provider,
            )
        return finished
