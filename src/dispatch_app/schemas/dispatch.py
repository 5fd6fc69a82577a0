"""Dispatch request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class SeedRequest(BaseModel):
    limit: Optional[int] = Field(default=None, description="Maximum stops to queue (clamped to 1-500).")
    dry_run: bool = Field(default=False, description="Report what would be queued without writing jobs.")


class ProcessRequest(BaseModel):
    limit: Optional[int] = Field(default=None, description="Maximum due jobs to run (clamped to 1-500).")


class SweepRequest(BaseModel):
    seed_limit: Optional[int] = None
    process_limit: Optional[int] = None


class EnqueueRequest(BaseModel):
    stop_id: str
    force: bool = Field(default=False, description="Reset an active job back to queued.")
    reason: str = "manual"


class SeedSummaryModel(BaseModel):
    dry_run: bool
    limit: int
    scanned: int
    skipped_fresh: int
    skipped_unchanged: int
    queued: int
    already_active: int
    missing_address: int
    stop_ids: List[str]


class ProcessSummaryModel(BaseModel):
    token_configured: bool
    due: int
    claimed: int
    skipped: int
    completed: int
    retried: int
    failed: int
    missing_address: int


class SweepSummaryModel(BaseModel):
    seed: SeedSummaryModel
    process: ProcessSummaryModel


class GeocodeJobModel(BaseModel):
    job_id: str
    stop_id: str
    status: str
    attempts: int
    next_attempt_at: datetime
    reason: Optional[str] = None
    last_error: Optional[str] = None
    error_code: Optional[str] = None


class EnqueueResponse(BaseModel):
    created: bool
    job: GeocodeJobModel


class LocationModel(BaseModel):
    street: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geocode_status: str
    geocoded_at: Optional[datetime] = None
    provider: Optional[str] = None
    source: str
    address_line: str


class AssignedCleanerModel(BaseModel):
    cleaner_id: str
    role: str
    status: str
    name: str


class AssignmentSummaryModel(BaseModel):
    total: int
    assigned: int
    cleaners: List[AssignedCleanerModel]


class ChecklistSummaryModel(BaseModel):
    total: int
    completed: int
    complete: bool


class DispatchRowModel(BaseModel):
    stop_id: str
    service_date: str
    status: str
    priority: str
    window_start: Optional[str] = None
    window_end: Optional[str] = None
    manual_sequence: Optional[int] = None
    customer_name: Optional[str] = None
    service_type: Optional[str] = None
    estimated_duration_minutes: Optional[int] = None
    location: LocationModel
    assignments: AssignmentSummaryModel
    checklist: ChecklistSummaryModel
    badges: List[str]


class DispatchTotalsModel(BaseModel):
    total: int
    assigned: int
    unassigned: int
    missing_location: int


class CleanerSummaryModel(BaseModel):
    cleaner_id: str
    name: str
    assignment_count: int


class DispatchDayResponse(BaseModel):
    date: str
    totals: DispatchTotalsModel
    rows: List[DispatchRowModel]
    cleaners: List[CleanerSummaryModel]


class RouteSuggestionRequest(BaseModel):
    date: str = Field(..., description="Service date (YYYY-MM-DD).")
    max_stops: Optional[int] = Field(default=None, ge=1, description="Capped at the configured hard maximum.")
    status: Optional[str] = None
    cleaner_id: Optional[str] = None
    assignment_state: Literal["all", "assigned", "unassigned"] = "all"
    priority: str = "all"


class RouteSuggestionResponse(BaseModel):
    date: str
    ordered_stop_ids: List[str]
    skipped_stop_ids: List[str]
    unmapped_stop_ids: List[str]
    coordinates: List[List[float]]
    distance_meters: Optional[float] = None
    duration_seconds: Optional[float] = None
    provider: str
    token_configured: bool
    directions_requests: int = 0
    metadata: dict = Field(default_factory=dict)


class ReorderRequest(BaseModel):
    date: str
    ordered_stop_ids: List[str] = Field(..., min_length=1)


class ReorderResponse(BaseModel):
    date: str
    sequence: List[str]
