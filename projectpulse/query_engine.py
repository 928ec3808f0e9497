"""
Query Engine — Filter, Sort and Paginate Project Overviews

Pure functions over already-built ProjectOverview objects. Nothing here
reconciles, scores or caches; the engine facade does that and hands the
results in.
"""

import logging
from collections.abc import Sequence
from enum import StrEnum

from pydantic import BaseModel, Field

from projectpulse import config
from projectpulse.api.pagination import PagedResult, paginate
from projectpulse.normalize.domain_models import ActivityStatus, HealthStatus, ProjectOverview

logger = logging.getLogger(__name__)


class SortKey(StrEnum):
    """Sort orders. Everything but name sorts descending."""

    NAME = "name"
    HEALTH_SCORE = "healthScore"
    PROGRESS = "progress"
    LAST_ACTIVITY = "lastActivity"


class ProjectFilters(BaseModel):
    """All filters are optional and AND-combined. Ranges are inclusive."""

    search: str | None = Field(None, description="Substring of name, repository or category")
    category: str | None = None
    status: str | None = None
    health_status: HealthStatus | None = None
    activity_status: ActivityStatus | None = None
    min_completion: float | None = Field(None, ge=0, le=100)
    max_completion: float | None = Field(None, ge=0, le=100)
    min_velocity: float | None = Field(None, ge=0)
    max_velocity: float | None = Field(None, ge=0)


def matches(overview: ProjectOverview, filters: ProjectFilters) -> bool:
    record = overview.record

    if filters.search:
        needle = filters.search.lower()
        haystacks = (record.name, record.repository, record.category)
        if not any(needle in h.lower() for h in haystacks):
            return False
    if filters.category is not None and record.category != filters.category:
        return False
    if filters.status is not None and record.status != filters.status:
        return False
    if filters.health_status is not None and overview.health.status != filters.health_status:
        return False
    if filters.activity_status is not None and overview.activity_status != filters.activity_status:
        return False

    completion = overview.completion_percentage
    if filters.min_completion is not None and completion < filters.min_completion:
        return False
    if filters.max_completion is not None and completion > filters.max_completion:
        return False

    velocity = overview.analytics.velocity
    if filters.min_velocity is not None and velocity < filters.min_velocity:
        return False
    if filters.max_velocity is not None and velocity > filters.max_velocity:
        return False

    return True


def _last_activity_key(overview: ProjectOverview) -> tuple[bool, float]:
    moment = overview.record.last_activity
    if moment is None:
        return (True, 0.0)
    return (False, -moment.timestamp())


def sort_overviews(
    overviews: Sequence[ProjectOverview], sort: SortKey | str = SortKey.LAST_ACTIVITY
) -> list[ProjectOverview]:
    """Stable sort; ties keep their input order."""
    sort = SortKey(sort)
    if sort is SortKey.NAME:
        return sorted(overviews, key=lambda o: o.record.name.lower())
    if sort is SortKey.HEALTH_SCORE:
        return sorted(overviews, key=lambda o: -o.health.score)
    if sort is SortKey.PROGRESS:
        return sorted(overviews, key=lambda o: -o.record.progress)
    return sorted(overviews, key=_last_activity_key)


class QueryEngine:
    """
    Filter/sort/paginate interface over project overviews.

    Usage:
        engine = QueryEngine(max_limit=100)
        page = engine.query(overviews, ProjectFilters(category="Games"), "healthScore", 1, 20)
    """

    def __init__(self, max_limit: int = config.MAX_PAGE_LIMIT):
        if max_limit < 1:
            raise ValueError("max_limit must be at least 1")
        self.max_limit = max_limit

    def filter(
        self, overviews: Sequence[ProjectOverview], filters: ProjectFilters | None = None
    ) -> list[ProjectOverview]:
        if filters is None:
            return list(overviews)
        return [o for o in overviews if matches(o, filters)]

    def query(
        self,
        overviews: Sequence[ProjectOverview],
        filters: ProjectFilters | None = None,
        sort: SortKey | str = SortKey.LAST_ACTIVITY,
        page: int = 1,
        limit: int = config.DEFAULT_PAGE_LIMIT,
    ) -> PagedResult:
        """
        Filter, sort, then paginate.

        Raises:
            ValueError: If page < 1 or sort is not a known SortKey
        """
        selected = sort_overviews(self.filter(overviews, filters), sort)
        logger.debug("Query matched %d of %d projects", len(selected), len(overviews))
        return paginate(selected, page=page, limit=limit, max_limit=self.max_limit)

    @staticmethod
    def categories(overviews: Sequence[ProjectOverview]) -> list[dict]:
        """Distinct categories with project counts, most populated first."""
        counts: dict[str, int] = {}
        for overview in overviews:
            counts[overview.record.category] = counts.get(overview.record.category, 0) + 1
        return [
            {"category": category, "count": count}
            for category, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        ]
