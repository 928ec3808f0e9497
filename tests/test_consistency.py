"""
Tests for cross-source consistency detection and the report store.
"""

import logging
from datetime import timedelta

import pytest

from projectpulse.normalize import (
    ActivitySnapshot,
    CachedSnapshot,
    ConsistencyChecker,
    InconsistencyKind,
    InconsistencyStore,
    PlanningSnapshot,
    ProjectSources,
    Reconciler,
    VcsSnapshot,
)

from tests.conftest import NOW


@pytest.fixture
def checker(clock):
    return ConsistencyChecker(clock=clock)


def _detect(checker, clock, name, sources):
    record = Reconciler(clock=clock).reconcile(name, sources)
    return checker.detect(record, sources)


class TestProgressMismatch:
    def test_eighty_versus_sixty_is_one_report(self, checker, clock):
        sources = ProjectSources(
            cached=CachedSnapshot(progress=80),
            planning=PlanningSnapshot(progress=60),
        )
        reports = _detect(checker, clock, "alpha", sources)

        assert len(reports) == 1
        report = reports[0]
        assert report.kind is InconsistencyKind.PROGRESS_MISMATCH
        assert report.field == "progress"
        assert report.source_values == {"cached": 80, "planning": 60}
        assert report.reconciled_value == 60
        assert report.timestamp == clock.now

    def test_within_tolerance(self, checker, clock):
        sources = ProjectSources(
            cached=CachedSnapshot(progress=65),
            planning=PlanningSnapshot(progress=60),
        )
        assert _detect(checker, clock, "alpha", sources) == []

    def test_single_source_never_mismatches(self, checker, clock):
        sources = ProjectSources(planning=PlanningSnapshot(progress=60))
        assert _detect(checker, clock, "alpha", sources) == []

    def test_report_does_not_change_record(self, clock):
        sources = ProjectSources(
            cached=CachedSnapshot(progress=80),
            planning=PlanningSnapshot(progress=60),
        )
        record = Reconciler(clock=clock).reconcile("alpha", sources)
        ConsistencyChecker(clock=clock).detect(record, sources)

        assert record.progress == 60


class TestStoryCountMismatch:
    def test_any_difference_is_reported(self, checker, clock):
        sources = ProjectSources(
            cached=CachedSnapshot(stories_total=10),
            planning=PlanningSnapshot(stories_total=11),
        )
        reports = _detect(checker, clock, "alpha", sources)

        assert [r.kind for r in reports] == [InconsistencyKind.STORY_COUNT_MISMATCH]
        assert reports[0].reconciled_value == 11

    def test_equal_counts(self, checker, clock, alpha_sources):
        reports = _detect(checker, clock, "alpha", alpha_sources)
        assert InconsistencyKind.STORY_COUNT_MISMATCH not in [r.kind for r in reports]


class TestActivityMismatch:
    def test_more_than_seven_days_apart(self, checker, clock):
        sources = ProjectSources(
            vcs=VcsSnapshot(last_activity=NOW - timedelta(days=20)),
            activity=ActivitySnapshot(last_activity=NOW - timedelta(days=2)),
        )
        reports = _detect(checker, clock, "alpha", sources)

        assert len(reports) == 1
        assert reports[0].kind is InconsistencyKind.ACTIVITY_MISMATCH
        assert set(reports[0].source_values) == {"vcs", "activity"}
        assert reports[0].to_dict()["type"] == "activity_mismatch"

    def test_exactly_seven_days_is_consistent(self, checker, clock):
        sources = ProjectSources(
            vcs=VcsSnapshot(last_activity=NOW - timedelta(days=9)),
            activity=ActivitySnapshot(last_activity=NOW - timedelta(days=2)),
        )
        assert _detect(checker, clock, "alpha", sources) == []

    def test_full_sources_are_consistent(self, checker, clock, full_sources):
        reports = _detect(checker, clock, "beta", full_sources)
        # cached 50 vs planning 75 is the only divergence
        assert [r.kind for r in reports] == [InconsistencyKind.PROGRESS_MISMATCH]


class TestInconsistencyStore:
    def _report(self, checker, clock, name="alpha"):
        sources = ProjectSources(
            cached=CachedSnapshot(progress=80),
            planning=PlanningSnapshot(progress=60),
        )
        return _detect(checker, clock, name, sources)

    def test_record_and_get(self, checker, clock):
        store = InconsistencyStore()
        store.record("alpha", self._report(checker, clock), at=NOW)

        assert len(store.get("alpha")) == 1
        assert store.get("beta") == []
        status = store.status()
        assert status["last_reconciliation"] == NOW.isoformat()
        assert status["total_projects"] == 1
        assert status["projects_with_inconsistencies"] == ["alpha"]

    def test_clean_run_updates_timestamp_only(self):
        store = InconsistencyStore()
        store.record("alpha", [], at=NOW)

        assert store.all() == {}
        assert store.status()["last_reconciliation"] == NOW.isoformat()

    def test_reports_are_logged_as_warning(self, checker, clock, caplog):
        store = InconsistencyStore()
        with caplog.at_level(logging.WARNING, logger="projectpulse.normalize.consistency"):
            store.record("alpha", self._report(checker, clock))

        assert "progress_mismatch" in caplog.text

    def test_bounded_history(self, checker, clock):
        store = InconsistencyStore(max_per_project=3)
        for _ in range(5):
            store.record("alpha", self._report(checker, clock))

        assert len(store.get("alpha")) == 3

    def test_clear(self, checker, clock):
        store = InconsistencyStore()
        store.record("alpha", self._report(checker, clock))
        store.record("beta", self._report(checker, clock, "beta"))

        assert store.clear("alpha") is True
        assert store.clear("alpha") is False
        assert store.clear_all() == 1
        assert store.status()["total_projects"] == 0

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            InconsistencyStore(max_per_project=0)
