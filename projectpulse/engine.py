"""
Project Pulse Engine — Reconciliation, Scoring and Query Facade.

One ProjectPulseEngine instance owns every piece of mutable state:
- the latest canonical record per project (the working set)
- the tagged cache (query results plus each project's reconciled baseline)
- the inconsistency store
- operation timings (PerformanceMetrics)

Independent instances share nothing, so tests and tenants never interfere.

Cache tags:
- project:<name>: everything derived from one project, and its baseline
- projects: every result computed over the whole working set
"""

import contextvars
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from projectpulse.api.pagination import PagedResult, paginate
from projectpulse.cache import CachePriority, TaggedCache, cached
from projectpulse.config import EngineConfig
from projectpulse.errors import (
    ProjectNotFound,
    PulseError,
    ReconciliationError,
    SourceUnavailable,
)
from projectpulse.intelligence import (
    AnalyticsEngine,
    HealthScorer,
    HealthThresholds,
    activity_status,
    aggregate_metrics,
    incomplete_work_priority,
)
from projectpulse.normalize import (
    ActivityLog,
    CachedSnapshot,
    CanonicalProjectRecord,
    ConsistencyChecker,
    HealthAssessment,
    InconsistencyStore,
    ProjectOverview,
    ProjectSources,
    Reconciler,
    utc_now,
)
from projectpulse.observability import PerformanceMetrics, RunContext, timed
from projectpulse.query_engine import ProjectFilters, QueryEngine, SortKey
from projectpulse.sources import SourceProvider, WorkItemActivityLookup

logger = logging.getLogger(__name__)

PROJECTS_TAG = "projects"
MIN_SEARCH_LENGTH = 2


def project_tag(name: str) -> str:
    return f"project:{name}"


def baseline_key(name: str) -> str:
    return f"baseline:{name}"


@dataclass
class BatchResult:
    """Outcome of reconciling many projects with partial-success semantics."""

    run_id: str
    total: int
    records: dict[str, CanonicalProjectRecord] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.records)

    @property
    def omitted(self) -> int:
        return self.total - self.succeeded

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "omitted": self.omitted,
            "failed": dict(self.failed),
            "records": {name: record.to_dict() for name, record in self.records.items()},
        }


class ProjectPulseEngine:
    """
    Facade over reconciliation, health, analytics, querying and caching.

    Usage:
        engine = ProjectPulseEngine(provider=provider)
        engine.refresh()                      # gather + reconcile every project
        page = engine.project_overview(sort="healthScore", limit=20)
        health = engine.project_health("alpha")
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        provider: SourceProvider | None = None,
        work_items: WorkItemActivityLookup | None = None,
        activity_log: ActivityLog | None = None,
        thresholds: HealthThresholds | None = None,
        cache: TaggedCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or EngineConfig()
        self.provider = provider
        self.work_items = work_items
        self.activity_log = activity_log
        self._clock = clock

        self.reconciler = Reconciler(clock=clock, default_category=self.config.default_category)
        self.checker = ConsistencyChecker(clock=clock)
        self.inconsistencies = InconsistencyStore(self.config.max_reports_per_project)
        self.health = HealthScorer(
            thresholds, velocity_weeks=self.config.velocity_weeks, clock=clock
        )
        self.analytics = AnalyticsEngine(
            velocity_weeks=self.config.velocity_weeks,
            blocked_after_days=self.config.blocked_after_days,
            stale_after_days=self.config.stale_after_days,
            missing_activity_days=self.config.missing_activity_days,
            clock=clock,
        )
        self.query_engine = QueryEngine(max_limit=self.config.max_page_limit)
        self.cache = cache or TaggedCache(
            max_size=self.config.cache_max_size, default_ttl=self.config.cache_default_ttl
        )

        self._records: dict[str, CanonicalProjectRecord] = {}
        self._lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self.metrics = PerformanceMetrics(max_history=self.config.metrics_history, clock=clock)

        # Read paths are cached per instance; reconcile/invalidate clear them by tag.
        # Timings wrap the cache, so hits are measured too.
        by_project = cached(self.cache, tags=lambda name, now=None: [project_tag(name)])
        whole_set = cached(self.cache, tags=[PROJECTS_TAG])
        self.project_health = timed(self.metrics, "project_health")(
            by_project(self._project_health)
        )
        for operation in (
            "project_overview",
            "progress_analytics",
            "incomplete_work",
            "blocked_and_stale_items",
            "velocity_trends",
            "project_categories",
        ):
            query = whole_set(getattr(self, f"_{operation}"))
            setattr(self, operation, timed(self.metrics, operation)(query))

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> "ProjectPulseEngine":
        """Start the cache's background expiry sweep."""
        self.cache.start_sweeper(self.config.cache_sweep_interval)
        return self

    def close(self) -> None:
        self.cache.stop_sweeper()

    def __enter__(self) -> "ProjectPulseEngine":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    def reconcile(
        self, project_name: str, sources: ProjectSources | Mapping[str, Any]
    ) -> CanonicalProjectRecord:
        """
        Reconcile one project and make it part of the working set.

        When no cached snapshot is supplied, the project's previous record
        (if still cached) is used as the baseline.

        Raises:
            ReconciliationError: If the merge fails
        """
        with self.metrics.track("reconcile"):
            if not isinstance(sources, ProjectSources):
                try:
                    sources = ProjectSources.from_dict(sources)
                except Exception as e:
                    raise ReconciliationError(project_name, e) from e
            if sources.cached is None:
                # Internal bookkeeping read; must not show up in hit/miss stats
                baseline = self.cache.peek(baseline_key(project_name))
                if baseline is not None:
                    sources = replace(sources, cached=CachedSnapshot.from_record(baseline))

            record = self.reconciler.reconcile(project_name, sources)
        reports = self.checker.detect(record, sources)
        self.inconsistencies.record(project_name, reports, at=record.reconciled_at)

        self.cache.invalidate_by_tag([project_tag(project_name), PROJECTS_TAG])
        self.cache.set(
            baseline_key(project_name),
            record,
            ttl=self.config.baseline_ttl,
            priority=CachePriority.HIGH,
            tags=[project_tag(project_name)],
        )
        with self._lock:
            self._records[project_name] = record
        return record

    def reconcile_batch(
        self,
        sources_by_project: Mapping[str, ProjectSources | Mapping[str, Any]],
        max_workers: int | None = None,
    ) -> BatchResult:
        """
        Reconcile many projects in parallel.

        A failure in one project is logged with its name and counted in
        BatchResult.omitted; the rest of the batch proceeds.
        """
        with RunContext() as ctx, self.metrics.track("reconcile_batch") as timing:
            timing.data_size = len(sources_by_project)
            result = BatchResult(run_id=ctx.run_id, total=len(sources_by_project))
            if not sources_by_project:
                return result

            workers = min(max_workers or self.config.batch_workers, len(sources_by_project))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reconcile") as pool:
                futures = {
                    # Each task runs in a copy of this context so logs keep the run ID
                    pool.submit(
                        contextvars.copy_context().run, self.reconcile, name, sources
                    ): name
                    for name, sources in sources_by_project.items()
                }
                for future in as_completed(futures):
                    name = futures[future]
                    try:
                        result.records[name] = future.result()
                    except Exception as e:
                        result.failed[name] = str(e)
                        logger.error(
                            "Reconciliation failed for %s",
                            name,
                            exc_info=True,
                            extra={"project": name},
                        )

            logger.info(
                "Reconciled %d/%d projects (%d omitted)",
                result.succeeded,
                result.total,
                result.omitted,
                extra={"succeeded": result.succeeded, "omitted": result.omitted},
            )
            return result

    def _fetch(self, fetch: Callable[[str], Any], source: str, project_name: str) -> Any:
        try:
            return fetch(project_name)
        except SourceUnavailable as e:
            logger.warning("%s", e, extra={"project": project_name, "source": source})
            return None

    def gather_sources(self, names: Iterable[str] | None = None) -> dict[str, ProjectSources]:
        """
        Ask the provider for every snapshot of every project.

        An unavailable source becomes a missing snapshot. When the provider
        has no activity snapshot, the activity log fills it in.
        """
        if self.provider is None:
            raise PulseError("No source provider configured")

        now = self._clock()
        names = list(names) if names is not None else self.provider.project_names()
        gathered: dict[str, ProjectSources] = {}
        for name in names:
            activity = self._fetch(self.provider.fetch_activity, "activity", name)
            if activity is None and self.activity_log is not None:
                activity = self.activity_log.snapshot_for(
                    name, now, self.config.activity_window_days
                )
            gathered[name] = ProjectSources(
                cached=self._fetch(self.provider.fetch_cached, "cached", name),
                vcs=self._fetch(self.provider.fetch_vcs, "vcs", name),
                planning=self._fetch(self.provider.fetch_planning, "planning", name),
                activity=activity,
            )
        return gathered

    def refresh(self, names: Iterable[str] | None = None) -> BatchResult:
        """Gather sources from the provider and reconcile them as one batch."""
        return self.reconcile_batch(self.gather_sources(names))

    # =========================================================================
    # WORKING SET
    # =========================================================================

    def records(self) -> list[CanonicalProjectRecord]:
        """Latest record per project, refreshing from the provider if nothing is loaded yet."""
        with self._lock:
            empty = not self._records
        if empty and self.provider is not None:
            with self._refresh_lock:
                # Another reader may have loaded the working set while we waited
                with self._lock:
                    empty = not self._records
                if empty:
                    self.refresh()
        with self._lock:
            return [self._records[name] for name in sorted(self._records)]

    def record(self, project_name: str) -> CanonicalProjectRecord:
        self.records()
        with self._lock:
            try:
                return self._records[project_name]
            except KeyError:
                raise ProjectNotFound(project_name) from None

    def build_overview(
        self, record: CanonicalProjectRecord, now: datetime | None = None
    ) -> ProjectOverview:
        now = now or self._clock()
        history = None
        if self.activity_log is not None:
            history = self.activity_log.weekly_buckets(record.name, now, self.config.velocity_weeks)
        return ProjectOverview(
            record=record,
            health=self.health.score(record, now),
            analytics=self.analytics.analyze(record, self.work_items, history, now),
            activity_status=activity_status(record.last_activity, now),
        )

    def overviews(self, filters: ProjectFilters | None = None) -> list[ProjectOverview]:
        now = self._clock()
        built = [self.build_overview(record, now) for record in self.records()]
        return self.query_engine.filter(built, filters)

    # =========================================================================
    # QUERIES (cached per instance, see __init__)
    # =========================================================================

    def _project_overview(
        self,
        filters: ProjectFilters | None = None,
        sort: SortKey | str = SortKey.LAST_ACTIVITY,
        page: int = 1,
        limit: int | None = None,
    ) -> PagedResult:
        return self.query_engine.query(
            self.overviews(),
            filters,
            sort=sort,
            page=page,
            limit=limit or self.config.default_page_limit,
        )

    def search_projects(
        self,
        query: str,
        filters: ProjectFilters | None = None,
        sort: SortKey | str = SortKey.LAST_ACTIVITY,
        page: int = 1,
        limit: int | None = None,
    ) -> PagedResult:
        """Substring search over name, repository and category. Needs 2+ characters."""
        query = (query or "").strip()
        limit = limit or self.config.default_page_limit
        if len(query) < MIN_SEARCH_LENGTH:
            return paginate([], page=page, limit=limit, max_limit=self.config.max_page_limit)

        merged = (filters or ProjectFilters()).model_copy(update={"search": query})
        return self.project_overview(merged, sort=sort, page=page, limit=limit)

    def _project_health(self, name: str, now: datetime | None = None) -> HealthAssessment:
        return self.health.score(self.record(name), now)

    def _progress_analytics(self, filters: ProjectFilters | None = None) -> dict:
        snapshots = [o.analytics for o in self.overviews(filters)]
        return {
            "projects": [s.to_dict() for s in snapshots],
            "aggregate": aggregate_metrics(snapshots),
        }

    def _incomplete_work(self, filters: ProjectFilters | None = None) -> list[dict]:
        work = []
        for overview in self.overviews(filters):
            analytics = overview.analytics
            work.append(
                {
                    "project_name": overview.name,
                    "incomplete_stories": analytics.incomplete_stories,
                    "incomplete_tasks": analytics.incomplete_tasks,
                    "total_incomplete": analytics.incomplete_stories + analytics.incomplete_tasks,
                    "completion_percentage": analytics.overall_pct,
                    "velocity": analytics.velocity,
                    "blocked_items": [item.to_dict() for item in analytics.blocked_items],
                    "stale_items": [item.to_dict() for item in analytics.stale_items],
                    "priority": incomplete_work_priority(analytics),
                }
            )
        work.sort(key=lambda w: (-w["priority"], w["completion_percentage"]))
        return work

    def _blocked_and_stale_items(self, filters: ProjectFilters | None = None) -> dict:
        blocked, stale = [], []
        for overview in self.overviews(filters):
            for item in overview.analytics.blocked_items:
                blocked.append({**item.to_dict(), "project_name": overview.name})
            for item in overview.analytics.stale_items:
                stale.append({**item.to_dict(), "project_name": overview.name})

        blocked.sort(key=lambda i: (-i["priority"], i["project_name"], i["id"]))
        stale.sort(key=lambda i: (-i["priority"], i["project_name"], i["id"]))
        return {
            "blocked_items": blocked,
            "stale_items": stale,
            "summary": {
                "total_blocked": len(blocked),
                "total_stale": len(stale),
                "projects_with_blocked_items": len({i["project_name"] for i in blocked}),
                "projects_with_stale_items": len({i["project_name"] for i in stale}),
            },
        }

    def _velocity_trends(self, name: str | None = None) -> list[dict]:
        now = self._clock()
        records = [self.record(name)] if name is not None else self.records()
        trends = []
        for record in records:
            weekly = []
            if self.activity_log is not None:
                weekly = self.activity_log.weekly_buckets(
                    record.name, now, self.config.velocity_weeks
                )
            analytics = self.analytics.analyze(record, velocity_history=weekly, now=now)
            trends.append(
                {
                    "project_name": record.name,
                    "velocity": analytics.velocity,
                    "weekly_commits": weekly,
                    "trend": analytics.trend.value,
                    "velocity_change": analytics.velocity_change,
                }
            )
        return trends

    def _project_categories(self) -> list[dict]:
        return self.query_engine.categories(self.overviews())

    # =========================================================================
    # DIAGNOSTICS AND CACHE CONTROL
    # =========================================================================

    def consistency_report(self) -> dict:
        return {
            "status": self.inconsistencies.status(),
            "inconsistencies": {
                name: [r.to_dict() for r in reports]
                for name, reports in self.inconsistencies.all().items()
            },
        }

    def clear_inconsistencies(self, project_name: str) -> bool:
        return self.inconsistencies.clear(project_name)

    def cache_stats(self) -> dict:
        stats = self.cache.stats()
        return {
            "size": stats.size,
            "max_size": stats.max_size,
            "hit_rate": stats.hit_rate,
            "evictions": stats.evictions,
            "hits": stats.hits,
            "misses": stats.misses,
        }

    def performance_stats(self) -> dict:
        """Operation timings summarised per operation, alongside the cache stats."""
        return {**self.metrics.statistics(), "cache": self.cache_stats()}

    def invalidate_project(self, project_name: str) -> int:
        """Drop every cached result derived from one project, its baseline included."""
        count = self.cache.invalidate_by_tag([project_tag(project_name), PROJECTS_TAG])
        logger.info("Invalidated %d cache entries for %s", count, project_name)
        return count

    def clear_cache(self) -> None:
        self.cache.clear()
