"""
Tests for the ProjectPulseEngine facade: reconciliation, batch semantics,
baseline feedback, caching and provider integration.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from projectpulse import EngineConfig, ProjectPulseEngine
from projectpulse.errors import ProjectNotFound, PulseError, ReconciliationError
from projectpulse.intelligence import HealthThresholds
from projectpulse.normalize import (
    ActivityLog,
    InconsistencyKind,
    PlanningSnapshot,
    ProjectSources,
    VcsSnapshot,
    WorkItem,
    WorkItemType,
)
from projectpulse.observability import get_run_id
from projectpulse.query_engine import ProjectFilters
from projectpulse.sources import InMemorySourceProvider, InMemoryWorkItemLookup

from tests.conftest import NOW


@pytest.fixture
def engine(clock):
    return ProjectPulseEngine(thresholds=HealthThresholds(), clock=clock)


@pytest.fixture
def provider():
    return InMemorySourceProvider(
        vcs={
            "alpha": {"name": "alpha-repo", "commits": 25, "pullRequests": 3, "issues": 1,
                      "last_activity": (NOW - timedelta(days=3)).isoformat(), "has_prd": True},
            "beta": {"name": "beta-repo", "commits": 2,
                     "last_activity": (NOW - timedelta(days=60)).isoformat()},
        },
        planning={
            "alpha": {"progress": 60, "storyCount": 10, "stories_completed": 6,
                      "category": "Games"},
            "beta": {"progress": 10, "storyCount": 5, "stories_completed": 1,
                     "category": "Tools"},
            "gamma": {"progress": 0, "category": "Games"},
        },
    )


@pytest.fixture
def provider_engine(provider, clock):
    return ProjectPulseEngine(provider=provider, thresholds=HealthThresholds(), clock=clock)


class TestReconcile:
    def test_record_joins_working_set(self, engine, alpha_sources):
        record = engine.reconcile("alpha", alpha_sources)

        assert record.progress == 70
        assert engine.record("alpha") is record
        assert [r.name for r in engine.records()] == ["alpha"]

    def test_raw_mapping_accepted(self, engine):
        record = engine.reconcile("alpha", {"notionData": {"progress": 30}})
        assert record.progress == 30

    def test_malformed_mapping_raises(self, engine):
        with pytest.raises(ReconciliationError):
            engine.reconcile("alpha", {"vcs": 5})
        with pytest.raises(ProjectNotFound):
            engine.record("alpha")

    def test_previous_record_is_next_baseline(self, engine, alpha_sources):
        engine.reconcile("alpha", alpha_sources)
        record = engine.reconcile("alpha", ProjectSources(planning=PlanningSnapshot(progress=80)))

        assert record.progress == 80
        assert record.stories_total == 10
        assert record.stories_completed == 7
        assert record.sources == ("cached", "planning")

    def test_baseline_divergence_is_reported(self, engine, alpha_sources):
        engine.reconcile("alpha", alpha_sources)
        engine.reconcile("alpha", ProjectSources(planning=PlanningSnapshot(progress=80)))

        reports = engine.inconsistencies.get("alpha")
        assert [r.kind for r in reports][-1] is InconsistencyKind.PROGRESS_MISMATCH
        assert reports[-1].source_values == {"cached": 70, "planning": 80}

    def test_explicit_cached_snapshot_wins_over_baseline(self, engine, alpha_sources):
        engine.reconcile("alpha", alpha_sources)
        record = engine.reconcile("alpha", {"cached": {"progress": 5}})
        assert record.progress == 5
        assert record.stories_total == 0

    def test_baseline_defaults_are_not_reported(self, engine):
        engine.reconcile("alpha", ProjectSources(vcs=VcsSnapshot(commits=3)))
        record = engine.reconcile(
            "alpha", ProjectSources(planning=PlanningSnapshot(progress=50, stories_total=10))
        )

        assert record.progress == 50
        assert record.stories_total == 10
        assert record.vcs_commits == 3
        assert engine.inconsistencies.get("alpha") == []

    def test_baseline_read_leaves_cache_stats_alone(self, engine, alpha_sources):
        engine.reconcile("alpha", alpha_sources)
        engine.reconcile("alpha", alpha_sources)

        stats = engine.cache_stats()
        assert stats["hits"] == 0
        assert stats["misses"] == 0

    def test_unknown_project(self, engine):
        with pytest.raises(ProjectNotFound) as excinfo:
            engine.project_health("nope")
        assert isinstance(excinfo.value, KeyError)
        assert str(excinfo.value) == "Unknown project: nope"


class TestBatch:
    def test_partial_success(self, engine, alpha_sources, full_sources, caplog):
        with caplog.at_level(logging.ERROR, logger="projectpulse.engine"):
            result = engine.reconcile_batch(
                {"alpha": alpha_sources, "beta": full_sources, "broken": {"vcs": 5}}
            )

        assert result.total == 3
        assert result.succeeded == 2
        assert result.omitted == 1
        assert set(result.records) == {"alpha", "beta"}
        assert "broken" in result.failed
        assert result.run_id.startswith("run-")

        failures = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(failures) == 1
        assert failures[0].project == "broken"

    def test_failed_project_left_out_of_queries(self, engine, alpha_sources):
        engine.reconcile_batch({"alpha": alpha_sources, "broken": {"planning": "oops"}})
        assert [o.name for o in engine.overviews()] == ["alpha"]

    def test_empty_batch(self, engine):
        result = engine.reconcile_batch({})
        assert (result.total, result.succeeded, result.omitted) == (0, 0, 0)

    def test_workers_share_run_id(self, engine, alpha_sources):
        seen = []
        original = engine.reconciler.reconcile

        def spy(name, sources):
            seen.append(get_run_id())
            return original(name, sources)

        engine.reconciler.reconcile = spy
        result = engine.reconcile_batch({f"p{i}": alpha_sources for i in range(6)}, max_workers=3)

        assert len(seen) == 6
        assert set(seen) == {result.run_id}
        assert get_run_id() is None

    def test_to_dict(self, engine, alpha_sources):
        data = engine.reconcile_batch({"alpha": alpha_sources}).to_dict()
        assert data["succeeded"] == 1
        assert data["records"]["alpha"]["progress"] == 70


class TestProvider:
    def test_refresh_reconciles_every_project(self, provider_engine):
        result = provider_engine.refresh()

        assert result.succeeded == 3
        alpha = provider_engine.record("alpha")
        assert alpha.repository == "alpha-repo"
        assert alpha.vcs_prs == 3
        assert alpha.category == "Games"

    def test_records_refresh_on_first_read(self, provider_engine):
        assert [r.name for r in provider_engine.records()] == ["alpha", "beta", "gamma"]

    def test_concurrent_first_reads_refresh_once(self, provider_engine):
        calls = []
        refresh = provider_engine.refresh

        def slow_refresh(names=None):
            calls.append(names)
            time.sleep(0.05)
            return refresh(names)

        provider_engine.refresh = slow_refresh
        readers = 6
        barrier = threading.Barrier(readers)

        def read():
            barrier.wait()
            return [r.name for r in provider_engine.records()]

        with ThreadPoolExecutor(max_workers=readers) as pool:
            results = list(pool.map(lambda _: read(), range(readers)))

        assert len(calls) == 1
        assert all(names == ["alpha", "beta", "gamma"] for names in results)

    def test_unavailable_source_becomes_missing(self, provider, provider_engine, caplog):
        provider.mark_unavailable("planning", "alpha", "rate limited")
        with caplog.at_level(logging.WARNING, logger="projectpulse.engine"):
            sources = provider_engine.gather_sources(["alpha"])

        assert sources["alpha"].planning is None
        assert sources["alpha"].vcs is not None
        assert "rate limited" in caplog.text

        provider.mark_available("planning", "alpha")
        assert provider_engine.gather_sources(["alpha"])["alpha"].planning is not None

    def test_activity_log_fills_missing_activity(self, provider, clock):
        log = ActivityLog([{"date": "2025-02-28", "projects": {"alpha": 5}}])
        engine = ProjectPulseEngine(
            provider=provider, activity_log=log, thresholds=HealthThresholds(), clock=clock
        )
        sources = engine.gather_sources(["alpha", "beta"])

        assert sources["alpha"].activity.total_commits == 5
        assert sources["beta"].activity is None

        engine.refresh()
        assert engine.record("alpha").total_commits == 5

    def test_no_provider(self, engine):
        with pytest.raises(PulseError):
            engine.gather_sources()
        assert engine.records() == []


class TestQueries:
    def test_overview_defaults_to_last_activity_order(self, provider_engine):
        page = provider_engine.project_overview()
        assert [o.name for o in page.data] == ["alpha", "beta", "gamma"]
        assert page.pagination.total == 3

    def test_overview_filters(self, provider_engine):
        page = provider_engine.project_overview(ProjectFilters(category="Games"), sort="name")
        assert [o.name for o in page.data] == ["alpha", "gamma"]

    def test_search_needs_two_characters(self, provider_engine):
        assert provider_engine.search_projects("a").pagination.total == 0
        assert [o.name for o in provider_engine.search_projects("alp").data] == ["alpha"]
        assert [o.name for o in provider_engine.search_projects(" tools ").data] == ["beta"]

    def test_health(self, provider_engine):
        assessment = provider_engine.project_health("alpha")
        assert 0 <= assessment.score <= 90
        assert "Missing task list" in assessment.risk_factors

    def test_progress_analytics(self, provider_engine):
        data = provider_engine.progress_analytics()

        assert [p["project_name"] for p in data["projects"]] == ["alpha", "beta", "gamma"]
        assert data["aggregate"]["total_stories"] == 15
        assert data["aggregate"]["completed_stories"] == 7

    def test_incomplete_work_ranked(self, provider_engine):
        work = provider_engine.incomplete_work()
        priorities = [w["priority"] for w in work]
        assert priorities == sorted(priorities, reverse=True)
        assert work[0]["project_name"] == "gamma"

    def test_categories(self, provider_engine):
        assert provider_engine.project_categories() == [
            {"category": "Games", "count": 2},
            {"category": "Tools", "count": 1},
        ]

    def test_blocked_and_stale(self, provider, clock):
        lookup = InMemoryWorkItemLookup(
            items={"alpha": [WorkItem("S-1", "Checkout", WorkItemType.STORY)]},
            touched={"alpha": {"S-1": NOW - timedelta(days=20)}},
        )
        engine = ProjectPulseEngine(
            provider=provider, work_items=lookup, thresholds=HealthThresholds(), clock=clock
        )
        data = engine.blocked_and_stale_items()

        assert [i["id"] for i in data["blocked_items"]] == ["S-1"]
        assert data["blocked_items"][0]["project_name"] == "alpha"
        assert data["summary"] == {
            "total_blocked": 1,
            "total_stale": 1,
            "projects_with_blocked_items": 1,
            "projects_with_stale_items": 1,
        }

    def test_velocity_trends(self, provider, clock):
        log = ActivityLog(
            [
                {"date": "2025-02-20", "projects": {"alpha": 4}},
                {"date": "2025-02-27", "projects": {"alpha": 8}},
            ]
        )
        engine = ProjectPulseEngine(
            provider=provider, activity_log=log, thresholds=HealthThresholds(), clock=clock
        )
        (alpha,) = engine.velocity_trends("alpha")

        assert alpha["weekly_commits"] == [0, 0, 4, 8]
        assert alpha["trend"] == "increasing"
        assert alpha["velocity_change"] == 100.0

        with pytest.raises(ProjectNotFound):
            engine.velocity_trends("nope")


class TestCaching:
    def test_repeated_reads_hit_cache(self, engine, alpha_sources):
        engine.reconcile("alpha", alpha_sources)
        first = engine.project_health("alpha")

        assert engine.project_health("alpha") is first
        assert engine.cache_stats()["hits"] >= 1

    def test_reconcile_invalidates_project_results(self, engine, alpha_sources, full_sources):
        engine.reconcile("alpha", alpha_sources)
        engine.reconcile("beta", full_sources)
        alpha_health = engine.project_health("alpha")
        beta_health = engine.project_health("beta")
        overview = engine.project_overview()

        engine.reconcile("alpha", alpha_sources)

        assert engine.project_health("alpha") is not alpha_health
        assert engine.project_health("beta") is beta_health
        assert engine.project_overview() is not overview

    def test_invalidate_project(self, engine, alpha_sources):
        engine.reconcile("alpha", alpha_sources)
        first = engine.project_health("alpha")

        assert engine.invalidate_project("alpha") >= 2
        assert engine.project_health("alpha") is not first

    def test_clear_cache_keeps_working_set(self, engine, alpha_sources):
        engine.reconcile("alpha", alpha_sources)
        engine.project_overview()
        engine.clear_cache()

        assert engine.cache_stats()["size"] == 0
        assert engine.record("alpha").progress == 70

    def test_cache_stays_bounded(self, clock, alpha_sources):
        engine = ProjectPulseEngine(
            EngineConfig(cache_max_size=5), thresholds=HealthThresholds(), clock=clock
        )
        for i in range(20):
            engine.reconcile(f"p{i}", alpha_sources)
            engine.project_health(f"p{i}")

        stats = engine.cache_stats()
        assert stats["size"] <= 5
        assert stats["evictions"] > 0
        assert len(engine.records()) == 20

    def test_instances_do_not_share_state(self, clock, alpha_sources):
        first = ProjectPulseEngine(thresholds=HealthThresholds(), clock=clock)
        second = ProjectPulseEngine(thresholds=HealthThresholds(), clock=clock)
        first.reconcile("alpha", alpha_sources)

        assert second.records() == []
        assert second.cache_stats()["size"] == 0


class TestDiagnostics:
    def test_consistency_report(self, engine, alpha_sources, clock):
        engine.reconcile("alpha", alpha_sources)
        report = engine.consistency_report()

        assert report["status"]["last_reconciliation"] == clock.now.isoformat()
        assert report["inconsistencies"]["alpha"][0]["type"] == "progress_mismatch"

        assert engine.clear_inconsistencies("alpha") is True
        assert engine.consistency_report()["inconsistencies"] == {}

    def test_lifecycle_runs_sweeper(self, clock):
        with ProjectPulseEngine(thresholds=HealthThresholds(), clock=clock) as engine:
            assert engine.cache.sweeper_running
        assert not engine.cache.sweeper_running

    def test_performance_stats(self, engine, alpha_sources, full_sources):
        engine.reconcile("alpha", alpha_sources)
        engine.reconcile_batch({"beta": full_sources, "gamma": alpha_sources})
        engine.project_overview()
        engine.project_overview()
        engine.project_health("alpha")

        stats = engine.performance_stats()
        operations = stats["operations"]

        assert operations["reconcile"]["count"] == 3
        assert operations["reconcile_batch"]["total_data_size"] == 2
        assert operations["project_overview"]["count"] == 2
        assert operations["project_overview"]["total_data_size"] == 6
        assert operations["project_health"]["count"] == 1
        assert stats["total_operations"] == 7
        assert stats["cache"]["hits"] == 1

    def test_metrics_history_is_bounded(self, clock, alpha_sources):
        engine = ProjectPulseEngine(
            EngineConfig(metrics_history=3), thresholds=HealthThresholds(), clock=clock
        )
        for i in range(5):
            engine.reconcile(f"p{i}", alpha_sources)

        assert len(engine.metrics) == 3
        assert engine.performance_stats()["total_operations"] == 3
