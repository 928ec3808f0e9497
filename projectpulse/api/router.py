"""
Project Pulse API Router — Read and Cache-Control Endpoints

Exposes a ProjectPulseEngine over JSON. The engine lives on app.state, so
each app (and each test) gets its own instance.

Usage:
    from projectpulse.api.router import create_app
    app = create_app(engine)

Endpoints:
- GET    /projects                    — Paginated, filtered, sorted overviews
- GET    /projects/search             — Substring search (2+ characters)
- GET    /projects/categories         — Categories with project counts
- GET    /projects/{name}/health      — Health assessment for one project
- GET    /progress/analytics          — Per-project analytics plus aggregates
- GET    /progress/incomplete         — Outstanding work ranked by priority
- GET    /progress/blocked            — Blocked and stale work items
- GET    /progress/velocity           — Weekly commit velocity and trend
- GET    /consistency                 — Inconsistency reports and status
- DELETE /consistency/{name}          — Clear one project's reports
- GET    /cache/stats                 — Cache statistics
- GET    /metrics                     — Operation timings plus cache statistics
- POST   /cache/invalidate/{name}     — Drop cached results for one project
"""

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field

from projectpulse.api.pagination import PaginationParams, pagination_params
from projectpulse.engine import ProjectPulseEngine
from projectpulse.errors import ProjectNotFound
from projectpulse.normalize.domain_models import ActivityStatus, HealthStatus
from projectpulse.observability import RunIdMiddleware
from projectpulse.query_engine import ProjectFilters, SortKey

logger = logging.getLogger(__name__)

pulse_router = APIRouter(tags=["Project Pulse"])


class PulseResponse(BaseModel):
    """Standard envelope: {status, data, metadata}."""

    status: str = Field(description="ok or error")
    data: Any = Field(default=None, description="Response payload")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Paging, params, timing")


def get_engine(request: Request) -> ProjectPulseEngine:
    return request.app.state.engine


def _wrap_response(data: Any, **metadata: Any) -> dict:
    """Wrap response in standard envelope."""
    return {
        "status": "ok",
        "data": data,
        "metadata": {"computed_at": datetime.now(UTC).isoformat(), **metadata},
    }


def project_filters(
    search: str | None = Query(None, description="Substring of name, repository or category"),
    category: str | None = Query(None),
    status: str | None = Query(None),
    health_status: HealthStatus | None = Query(None),
    activity_status: ActivityStatus | None = Query(None),
    min_completion: float | None = Query(None, ge=0, le=100),
    max_completion: float | None = Query(None, ge=0, le=100),
    min_velocity: float | None = Query(None, ge=0),
    max_velocity: float | None = Query(None, ge=0),
) -> ProjectFilters:
    """FastAPI dependency collecting project filters from the query string."""
    return ProjectFilters(
        search=search,
        category=category,
        status=status,
        health_status=health_status,
        activity_status=activity_status,
        min_completion=min_completion,
        max_completion=max_completion,
        min_velocity=min_velocity,
        max_velocity=max_velocity,
    )


def _filter_params(filters: ProjectFilters) -> dict:
    return filters.model_dump(mode="json", exclude_none=True)


# =============================================================================
# PROJECT ENDPOINTS
# =============================================================================


@pulse_router.get("/projects", response_model=PulseResponse)
def list_projects(
    filters: ProjectFilters = Depends(project_filters),
    sort: SortKey = Query(SortKey.LAST_ACTIVITY, description="Sort order"),
    paging: PaginationParams = Depends(pagination_params),
    engine: ProjectPulseEngine = Depends(get_engine),
):
    """Project overviews with health and analytics, one page at a time."""
    result = engine.project_overview(filters, sort=sort, page=paging.page, limit=paging.limit)
    return _wrap_response(
        [overview.to_dict() for overview in result.data],
        pagination=result.pagination.model_dump(),
        params={**_filter_params(filters), "sort": sort.value},
    )


@pulse_router.get("/projects/search", response_model=PulseResponse)
def search_projects(
    q: str = Query("", description="Search text, at least 2 characters"),
    sort: SortKey = Query(SortKey.LAST_ACTIVITY),
    paging: PaginationParams = Depends(pagination_params),
    engine: ProjectPulseEngine = Depends(get_engine),
):
    result = engine.search_projects(q, sort=sort, page=paging.page, limit=paging.limit)
    return _wrap_response(
        [overview.to_dict() for overview in result.data],
        pagination=result.pagination.model_dump(),
        params={"q": q, "sort": sort.value},
    )


@pulse_router.get("/projects/categories", response_model=PulseResponse)
def project_categories(engine: ProjectPulseEngine = Depends(get_engine)):
    categories = engine.project_categories()
    return _wrap_response(categories, total=len(categories))


@pulse_router.get("/projects/{name}/health", response_model=PulseResponse)
def project_health(name: str, engine: ProjectPulseEngine = Depends(get_engine)):
    try:
        assessment = engine.project_health(name)
    except ProjectNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return _wrap_response(assessment.to_dict(), project=name)


# =============================================================================
# PROGRESS ENDPOINTS
# =============================================================================


@pulse_router.get("/progress/analytics", response_model=PulseResponse)
def progress_analytics(
    filters: ProjectFilters = Depends(project_filters),
    engine: ProjectPulseEngine = Depends(get_engine),
):
    return _wrap_response(engine.progress_analytics(filters), params=_filter_params(filters))


@pulse_router.get("/progress/incomplete", response_model=PulseResponse)
def incomplete_work(
    filters: ProjectFilters = Depends(project_filters),
    engine: ProjectPulseEngine = Depends(get_engine),
):
    work = engine.incomplete_work(filters)
    return _wrap_response(work, total=len(work), params=_filter_params(filters))


@pulse_router.get("/progress/blocked", response_model=PulseResponse)
def blocked_items(
    filters: ProjectFilters = Depends(project_filters),
    engine: ProjectPulseEngine = Depends(get_engine),
):
    return _wrap_response(engine.blocked_and_stale_items(filters), params=_filter_params(filters))


@pulse_router.get("/progress/velocity", response_model=PulseResponse)
def velocity_trends(
    project: str | None = Query(None, description="Limit to one project"),
    engine: ProjectPulseEngine = Depends(get_engine),
):
    try:
        trends = engine.velocity_trends(project)
    except ProjectNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return _wrap_response(trends, project=project)


# =============================================================================
# DIAGNOSTICS AND CACHE CONTROL
# =============================================================================


@pulse_router.get("/consistency", response_model=PulseResponse)
def consistency_report(engine: ProjectPulseEngine = Depends(get_engine)):
    return _wrap_response(engine.consistency_report())


@pulse_router.delete("/consistency/{name}", response_model=PulseResponse)
def clear_inconsistencies(name: str, engine: ProjectPulseEngine = Depends(get_engine)):
    cleared = engine.clear_inconsistencies(name)
    return _wrap_response({"project": name, "cleared": cleared})


@pulse_router.get("/cache/stats", response_model=PulseResponse)
def cache_stats(engine: ProjectPulseEngine = Depends(get_engine)):
    return _wrap_response(engine.cache_stats())


@pulse_router.get("/metrics", response_model=PulseResponse)
def performance_metrics(engine: ProjectPulseEngine = Depends(get_engine)):
    return _wrap_response(engine.performance_stats())


@pulse_router.post("/cache/invalidate/{name}", response_model=PulseResponse)
def invalidate_project(name: str, engine: ProjectPulseEngine = Depends(get_engine)):
    count = engine.invalidate_project(name)
    logger.info("Cache invalidated for %s via API", name)
    return _wrap_response({"project": name, "invalidated": count})


def create_app(engine: ProjectPulseEngine) -> FastAPI:
    """Build a FastAPI app serving one engine. The cache sweeper runs for the app's lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine.start()
        try:
            yield
        finally:
            engine.close()

    app = FastAPI(title="Project Pulse", version="1.0.0", lifespan=lifespan)
    app.state.engine = engine
    app.add_middleware(RunIdMiddleware)
    app.include_router(pulse_router)
    return app
