"""Dispatch endpoints: geocode triggers, dispatch day and route suggestion."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from ...models.domain import GeocodeJob
from ...persistence import DispatchStore, get_dispatch_store
from ...schemas.dispatch import (
    AssignedCleanerModel,
    AssignmentSummaryModel,
    ChecklistSummaryModel,
    CleanerSummaryModel,
    DispatchDayResponse,
    DispatchRowModel,
    DispatchTotalsModel,
    EnqueueRequest,
    EnqueueResponse,
    GeocodeJobModel,
    LocationModel,
    ProcessRequest,
    ProcessSummaryModel,
    ReorderRequest,
    ReorderResponse,
    RouteSuggestionRequest,
    RouteSuggestionResponse,
    SeedRequest,
    SeedSummaryModel,
    SweepRequest,
    SweepSummaryModel,
)
from ...services.dispatch.view import DispatchDay, DispatchFilters, DispatchRow, DispatchViewAssembler
from ...services.geocoding import GeocodeCommands, build_geocode_commands
from ...services.routing import RouteSuggestionEngine, apply_route_order, build_route_engine, suggest_route

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


def get_store() -> DispatchStore:
    return get_dispatch_store()


def get_geocode_commands(store: DispatchStore = Depends(get_store)) -> GeocodeCommands:
    return build_geocode_commands(store)


def get_route_engine() -> RouteSuggestionEngine:
    return build_route_engine()


def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-Id")) -> str:
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Tenant-Id header is empty.")
    return tenant_id


def _server_error(action: str, exc: Exception) -> HTTPException:
    logging.exception(f"Error {action}: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed {action}: {str(exc)}",
    )


def _job_to_model(job: GeocodeJob) -> GeocodeJobModel:
    return GeocodeJobModel(
        job_id=job.job_id,
        stop_id=job.stop_id,
        status=job.status.value,
        attempts=job.attempts,
        next_attempt_at=job.next_attempt_at,
        reason=job.reason,
        last_error=job.last_error,
        error_code=job.error_code.value if job.error_code else None,
    )


def _row_to_model(row: DispatchRow) -> DispatchRowModel:
    stop = row.stop
    location = row.location
    return DispatchRowModel(
        stop_id=stop.stop_id,
        service_date=stop.service_date,
        status=stop.status,
        priority=row.priority.value,
        window_start=stop.window_start,
        window_end=stop.window_end,
        manual_sequence=stop.manual_sequence,
        customer_name=stop.customer_name,
        service_type=stop.service_type,
        estimated_duration_minutes=stop.estimated_duration_minutes,
        location=LocationModel(
            street=location.street,
            line2=location.line2,
            city=location.city,
            state=location.state,
            postal_code=location.postal_code,
            latitude=location.latitude,
            longitude=location.longitude,
            geocode_status=location.geocode_status,
            geocoded_at=location.geocoded_at,
            provider=location.provider,
            source=location.source,
            address_line=location.address_line,
        ),
        assignments=AssignmentSummaryModel(
            total=row.assignments.total,
            assigned=row.assignments.assigned,
            cleaners=[
                AssignedCleanerModel(cleaner_id=c.cleaner_id, role=c.role, status=c.status, name=c.name)
                for c in row.assignments.cleaners
            ],
        ),
        checklist=ChecklistSummaryModel(
            total=row.checklist.total,
            completed=row.checklist.completed,
            complete=row.checklist.complete,
        ),
        badges=list(row.badges),
    )


def _day_to_response(day: DispatchDay) -> DispatchDayResponse:
    return DispatchDayResponse(
        date=day.date,
        totals=DispatchTotalsModel(
            total=day.totals.total,
            assigned=day.totals.assigned,
            unassigned=day.totals.unassigned,
            missing_location=day.totals.missing_location,
        ),
        rows=[_row_to_model(row) for row in day.rows],
        cleaners=[
            CleanerSummaryModel(cleaner_id=c.cleaner_id, name=c.name, assignment_count=c.assignment_count)
            for c in day.cleaners
        ],
    )


@router.post("/geocode/seed", response_model=SeedSummaryModel, status_code=status.HTTP_200_OK)
def seed_geocodes(
    payload: SeedRequest,
    tenant_id: str = Depends(get_tenant_id),
    commands: GeocodeCommands = Depends(get_geocode_commands),
) -> SeedSummaryModel:
    """Scan recent stops and queue geocode jobs for stale or unmapped ones."""
    try:
        summary = commands.seed(tenant_id, payload.limit, dry_run=payload.dry_run)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error("seeding geocode jobs", exc) from exc
    return SeedSummaryModel(**summary.as_dict())


@router.post("/geocode/process", response_model=ProcessSummaryModel, status_code=status.HTTP_200_OK)
def process_geocodes(
    payload: ProcessRequest,
    tenant_id: str = Depends(get_tenant_id),
    commands: GeocodeCommands = Depends(get_geocode_commands),
) -> ProcessSummaryModel:
    """Run due geocode jobs."""
    try:
        summary = commands.process(tenant_id, payload.limit)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error("processing geocode jobs", exc) from exc
    return ProcessSummaryModel(**summary.as_dict())


@router.post("/geocode/sweep", response_model=SweepSummaryModel, status_code=status.HTTP_200_OK)
def sweep_geocodes(
    payload: SweepRequest,
    tenant_id: str = Depends(get_tenant_id),
    commands: GeocodeCommands = Depends(get_geocode_commands),
) -> SweepSummaryModel:
    """Seed then process, as the scheduler does."""
    try:
        summary = commands.sweep(tenant_id, payload.seed_limit, payload.process_limit)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error("sweeping geocode jobs", exc) from exc
    return SweepSummaryModel(**summary.as_dict())


@router.post("/geocode/enqueue", response_model=EnqueueResponse, status_code=status.HTTP_200_OK)
def enqueue_geocode(
    payload: EnqueueRequest,
    tenant_id: str = Depends(get_tenant_id),
    commands: GeocodeCommands = Depends(get_geocode_commands),
) -> EnqueueResponse:
    """Queue one stop, for example after its address was edited."""
    try:
        job, created = commands.enqueue(tenant_id, payload.stop_id, reason=payload.reason, force=payload.force)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error("enqueueing geocode job", exc) from exc
    return EnqueueResponse(created=created, job=_job_to_model(job))


@router.get("/day", response_model=DispatchDayResponse, status_code=status.HTTP_200_OK)
def dispatch_day(
    date: str = Query(..., description="Service date (YYYY-MM-DD)"),
    status_filter: str | None = Query(default=None, alias="status", description="Booking status"),
    cleaner_id: str | None = Query(default=None),
    assignment_state: str = Query(default="all", pattern="^(all|assigned|unassigned)$"),
    priority: str = Query(default="all"),
    tenant_id: str = Depends(get_tenant_id),
    store: DispatchStore = Depends(get_store),
) -> DispatchDayResponse:
    filters = DispatchFilters(
        status=status_filter,
        cleaner_id=cleaner_id,
        assignment_state=assignment_state,
        priority=priority,
    )
    try:
        day = DispatchViewAssembler(store).assemble(tenant_id, date, filters)
    except Exception as exc:
        raise _server_error("building dispatch day", exc) from exc
    return _day_to_response(day)


@router.post("/route-suggestion", response_model=RouteSuggestionResponse, status_code=status.HTTP_200_OK)
def route_suggestion(
    payload: RouteSuggestionRequest,
    tenant_id: str = Depends(get_tenant_id),
    store: DispatchStore = Depends(get_store),
    engine: RouteSuggestionEngine = Depends(get_route_engine),
) -> RouteSuggestionResponse:
    """Suggest a visiting order for the day's visible stops without saving it."""
    filters = DispatchFilters(
        status=payload.status,
        cleaner_id=payload.cleaner_id,
        assignment_state=payload.assignment_state,
        priority=payload.priority,
    )
    try:
        suggestion = suggest_route(store, engine, tenant_id, payload.date, filters, payload.max_stops)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error("suggesting route", exc) from exc

    data = suggestion.as_dict()
    data["coordinates"] = [list(point) for point in suggestion.coordinates]
    return RouteSuggestionResponse(**data)


@router.post("/reorder", response_model=ReorderResponse, status_code=status.HTTP_200_OK)
def reorder_stops(
    payload: ReorderRequest,
    tenant_id: str = Depends(get_tenant_id),
    store: DispatchStore = Depends(get_store),
) -> ReorderResponse:
    """Apply a (possibly suggested) visiting order as the day's manual sequence."""
    try:
        sequence = apply_route_order(store, tenant_id, payload.date, payload.ordered_stop_ids)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        raise _server_error("reordering stops", exc) from exc
    return ReorderResponse(date=payload.date, sequence=sequence)
