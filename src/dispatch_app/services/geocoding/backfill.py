"""Backfill scan plus the seed, process and sweep commands.

Seed and process are separate commands so a scheduler and a manual trigger
can run either at any time. Both are idempotent: seeding reuses active jobs
and processing only touches jobs it wins the claim for.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from ...config import Settings, settings as default_settings
from ...models.domain import GeocodeErrorCode, GeocodeJob, JobStatus, ServiceStop
from ...persistence.base import DispatchStore
from .address import AddressSourceLoader
from .queue import GeocodeJobQueue, utcnow
from .worker import GeocodeWorker, ProcessSummary

logger = logging.getLogger(__name__)

BACKFILL_REASON = "backfill"


@dataclass(slots=True)
class SeedSummary:
    dry_run: bool
    limit: int
    scanned: int = 0
    skipped_fresh: int = 0
    skipped_unchanged: int = 0
    queued: int = 0
    already_active: int = 0
    missing_address: int = 0
    stop_ids: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(slots=True)
class SweepSummary:
    seed: SeedSummary
    process: ProcessSummary

    def as_dict(self) -> dict:
        return {"seed": self.seed.as_dict(), "process": self.process.as_dict()}


def clamp_limit(limit: int | None, maximum: int, default: int = 100) -> int:
    return min(max(limit if limit is not None else default, 1), maximum)


class BackfillScanner:
    def __init__(self, store: DispatchStore, queue: GeocodeJobQueue, config: Settings | None = None) -> None:
        config = config or default_settings
        self.store = store
        self.queue = queue
        self.staleness = timedelta(days=config.geocode_staleness_days)
        self.sample_multiplier = config.backfill_sample_multiplier
        self.min_sample = config.backfill_min_sample
        self.max_limit = config.backfill_max_limit

    def sample_size(self, limit: int) -> int:
        return max(limit * self.sample_multiplier, self.min_sample)

    def is_fresh(self, stop: ServiceStop, now: datetime) -> bool:
        """Mapped and geocoded recently; pins without a timestamp count as fresh."""
        if not stop.has_coordinates:
            return False
        if stop.geocoded_at is None:
            return True
        return now - stop.geocoded_at <= self.staleness

    def seed(
        self,
        tenant_id: str,
        limit: int | None = None,
        *,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> SeedSummary:
        now = now or utcnow()
        effective_limit = clamp_limit(limit, self.max_limit)
        summary = SeedSummary(dry_run=dry_run, limit=effective_limit)
        loader = AddressSourceLoader(self.store, tenant_id)

        for stop in self.store.list_recent_stops(tenant_id, self.sample_size(effective_limit)):
            if summary.queued + summary.already_active >= effective_limit:
                break
            summary.scanned += 1

            if self.is_fresh(stop, now):
                summary.skipped_fresh += 1
                continue

            resolved = loader.resolve(stop)
            latest = self.store.latest_job_for_stop(tenant_id, stop.stop_id)
            if (
                latest is not None
                and latest.status == JobStatus.FAILED
                and latest.error_code == GeocodeErrorCode.MISSING_ADDRESS
                and (latest.address_hash or "") == resolved.hash
            ):
                # Still no address to geocode. Provider failures and no-match results are always retried.
                summary.skipped_unchanged += 1
                continue

            if resolved.is_empty:
                summary.missing_address += 1

            if dry_run:
                summary.queued += 1
                summary.stop_ids.append(stop.stop_id)
                continue

            _, created = self.queue.enqueue(
                tenant_id,
                stop.stop_id,
                reason=BACKFILL_REASON,
                address_line=resolved.line,
                address_hash=resolved.hash,
                now=now,
            )
            if created:
                summary.queued += 1
            else:
                summary.already_active += 1
            summary.stop_ids.append(stop.stop_id)

        logger.info(
            f"Geocode seed for tenant {tenant_id}: scanned {summary.scanned}, queued {summary.queued}, "
            f"already active {summary.already_active}, fresh {summary.skipped_fresh}, "
            f"unchanged {summary.skipped_unchanged}{' (dry run)' if dry_run else ''}"
        )
        return summary


class GeocodeCommands:
    """The trigger surface: seed, process and sweep for one tenant."""

    def __init__(self, scanner: BackfillScanner, worker: GeocodeWorker, config: Settings | None = None) -> None:
        self.config = config or default_settings
        self.scanner = scanner
        self.worker = worker

    def enqueue(
        self,
        tenant_id: str,
        stop_id: str,
        *,
        reason: str = "manual",
        force: bool = False,
    ) -> tuple[GeocodeJob, bool]:
        """Queue one stop by id, recording its current address line and hash."""
        stop = self.scanner.store.get_stop(tenant_id, stop_id)
        if stop is None:
            raise LookupError(f"Stop '{stop_id}' not found.")
        resolved = AddressSourceLoader(self.scanner.store, tenant_id).resolve(stop)
        return self.scanner.queue.enqueue(
            tenant_id,
            stop_id,
            reason=reason,
            force=force,
            address_line=resolved.line,
            address_hash=resolved.hash,
        )

    def seed(self, tenant_id: str, limit: int | None = None, *, dry_run: bool = False) -> SeedSummary:
        return self.scanner.seed(tenant_id, limit, dry_run=dry_run)

    def process(self, tenant_id: str, limit: int | None = None) -> ProcessSummary:
        effective_limit = clamp_limit(limit, self.config.backfill_max_limit)
        return self.worker.process(tenant_id, effective_limit)

    def sweep(
        self,
        tenant_id: str,
        seed_limit: int | None = None,
        process_limit: int | None = None,
    ) -> SweepSummary:
        seed_summary = self.seed(tenant_id, seed_limit if seed_limit is not None else self.config.sweep_seed_limit)
        process_summary = self.process(
            tenant_id, process_limit if process_limit is not None else self.config.sweep_process_limit
        )
        return SweepSummary(seed=seed_summary, process=process_summary)
