"""Dispatch-day read model: stops joined with assignments, checklists and locations."""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from ...models.domain import (
    Assignment,
    ChecklistItem,
    Cleaner,
    DispatchPriority,
    GeocodeStatus,
    ServiceStop,
    has_coordinates,
    parse_window_minutes,
)
from ...persistence.base import DispatchStore
from ..geocoding.address import AddressSourceLoader

AssignmentState = Literal["all", "assigned", "unassigned"]

PRIORITY_RANK = {
    DispatchPriority.URGENT: 4,
    DispatchPriority.HIGH: 3,
    DispatchPriority.NORMAL: 2,
    DispatchPriority.LOW: 1,
}


@dataclass(slots=True)
class DispatchFilters:
    status: Optional[str] = None
    cleaner_id: Optional[str] = None
    assignment_state: AssignmentState = "all"
    priority: str = "all"


@dataclass(slots=True)
class LocationView:
    street: Optional[str]
    line2: Optional[str]
    city: Optional[str]
    state: Optional[str]
    postal_code: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    geocode_status: str
    geocoded_at: Optional[datetime]
    provider: Optional[str]
    source: str
    address_line: str

    @property
    def mapped(self) -> bool:
        return has_coordinates(self.latitude, self.longitude)


@dataclass(slots=True)
class AssignedCleaner:
    cleaner_id: str
    role: str
    status: str
    name: str


@dataclass(slots=True)
class AssignmentSummary:
    total: int = 0
    assigned: int = 0
    cleaners: list[AssignedCleaner] = field(default_factory=list)


@dataclass(slots=True)
class ChecklistSummary:
    total: int = 0
    completed: int = 0

    @property
    def complete(self) -> bool:
        return self.total == 0 or self.completed == self.total


@dataclass(slots=True)
class DispatchRow:
    stop: ServiceStop
    priority: DispatchPriority
    location: LocationView
    assignments: AssignmentSummary
    checklist: ChecklistSummary
    badges: list[str]


@dataclass(slots=True)
class DispatchTotals:
    total: int = 0
    assigned: int = 0
    unassigned: int = 0
    missing_location: int = 0


@dataclass(slots=True)
class CleanerSummary:
    cleaner_id: str
    name: str
    assignment_count: int


@dataclass(slots=True)
class DispatchDay:
    date: str
    totals: DispatchTotals
    rows: list[DispatchRow]
    cleaners: list[CleanerSummary]


def compute_badges(priority: DispatchPriority, assigned: int, mapped: bool, checklist: ChecklistSummary) -> list[str]:
    badges = ["assigned" if assigned > 0 else "unassigned", "mapped" if mapped else "needs_location"]
    if not checklist.complete:
        badges.append("checklist_blocked")
    if priority != DispatchPriority.NORMAL:
        badges.append(f"{priority.value}_priority")
    return badges


def _window_or_last(value: Optional[str]) -> float:
    minutes = parse_window_minutes(value)
    return math.inf if minutes is None else minutes


def dispatch_sort_key(row: DispatchRow) -> tuple:
    """Priority descending, then window, manual sequence and creation time ascending."""
    stop = row.stop
    return (
        -PRIORITY_RANK[row.priority],
        _window_or_last(stop.window_start),
        stop.manual_sequence if stop.manual_sequence is not None else math.inf,
        stop.created_at.timestamp(),
    )


def row_is_visible(row: DispatchRow, filters: DispatchFilters) -> bool:
    if filters.cleaner_id and not any(c.cleaner_id == filters.cleaner_id for c in row.assignments.cleaners):
        return False
    if filters.assignment_state == "assigned" and row.assignments.assigned == 0:
        return False
    if filters.assignment_state == "unassigned" and row.assignments.assigned > 0:
        return False
    if (filters.priority or "all") != "all" and row.priority.value != filters.priority:
        return False
    return True


class DispatchViewAssembler:
    def __init__(self, store: DispatchStore) -> None:
        self.store = store

    def assemble(
        self,
        tenant_id: str,
        service_date: str,
        filters: DispatchFilters | None = None,
    ) -> DispatchDay:
        filters = filters or DispatchFilters()
        stops = [
            stop
            for stop in self.store.list_stops_for_date(tenant_id, service_date)
            if not filters.status or stop.status == filters.status
        ]
        stop_ids = [stop.stop_id for stop in stops]

        assignments_by_stop: dict[str, list[Assignment]] = defaultdict(list)
        for assignment in self.store.list_assignments(tenant_id, stop_ids):
            assignments_by_stop[assignment.stop_id].append(assignment)
        checklist_by_stop: dict[str, list[ChecklistItem]] = defaultdict(list)
        for item in self.store.list_checklist_items(tenant_id, stop_ids):
            checklist_by_stop[item.stop_id].append(item)

        cleaners = self.store.list_cleaners(tenant_id)
        cleaners_by_id: dict[str, Cleaner] = {cleaner.cleaner_id: cleaner for cleaner in cleaners}
        loader = AddressSourceLoader(self.store, tenant_id)

        rows = [
            self._build_row(stop, assignments_by_stop[stop.stop_id], checklist_by_stop[stop.stop_id], cleaners_by_id, loader)
            for stop in stops
        ]
        rows = sorted((row for row in rows if row_is_visible(row, filters)), key=dispatch_sort_key)

        assignment_counts: dict[str, int] = defaultdict(int)
        for items in assignments_by_stop.values():
            for assignment in items:
                if assignment.cleaner_id:
                    assignment_counts[assignment.cleaner_id] += 1

        totals = DispatchTotals(
            total=len(rows),
            assigned=sum(1 for row in rows if row.assignments.assigned > 0),
            unassigned=sum(1 for row in rows if row.assignments.assigned == 0),
            missing_location=sum(1 for row in rows if not row.location.mapped),
        )
        roster = sorted(
            (
                CleanerSummary(cleaner.cleaner_id, cleaner.name, assignment_counts.get(cleaner.cleaner_id, 0))
                for cleaner in cleaners
            ),
            key=lambda summary: summary.name,
        )
        return DispatchDay(date=service_date, totals=totals, rows=rows, cleaners=roster)

    def _build_row(
        self,
        stop: ServiceStop,
        assignments: list[Assignment],
        checklist_items: list[ChecklistItem],
        cleaners_by_id: dict[str, Cleaner],
        loader: AddressSourceLoader,
    ) -> DispatchRow:
        priority = DispatchPriority.parse(stop.priority)
        resolved = loader.resolve(stop)
        if stop.geocode_status is not None:
            geocode_status = GeocodeStatus(stop.geocode_status).value
        else:
            geocode_status = (GeocodeStatus.PENDING if resolved.line else GeocodeStatus.MISSING_ADDRESS).value

        location = LocationView(
            street=resolved.fields.street,
            line2=resolved.fields.line2,
            city=resolved.fields.city,
            state=resolved.fields.state,
            postal_code=resolved.fields.postal_code,
            latitude=stop.latitude,
            longitude=stop.longitude,
            geocode_status=geocode_status,
            geocoded_at=stop.geocoded_at,
            provider=stop.provider,
            source=resolved.source,
            address_line=resolved.line,
        )

        summary = AssignmentSummary(
            total=len(assignments),
            assigned=sum(1 for assignment in assignments if assignment.cleaner_id or assignment.crew_id),
        )
        for assignment in assignments:
            if not assignment.cleaner_id:
                continue
            cleaner = cleaners_by_id.get(assignment.cleaner_id)
            summary.cleaners.append(
                AssignedCleaner(
                    cleaner_id=assignment.cleaner_id,
                    role=assignment.role,
                    status=assignment.status,
                    name=cleaner.name if cleaner else "Unknown cleaner",
                )
            )

        checklist = ChecklistSummary(
            total=len(checklist_items),
            completed=sum(1 for item in checklist_items if item.is_completed),
        )
        return DispatchRow(
            stop=stop,
            priority=priority,
            location=location,
            assignments=summary,
            checklist=checklist,
            badges=compute_badges(priority, summary.assigned, location.mapped, checklist),
        )
