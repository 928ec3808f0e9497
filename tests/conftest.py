"""
Test configuration — ensures repo root is in sys.path + deterministic clocks.

Every time-dependent component takes an injectable clock, so tests never
sleep to age a cache entry or a work item.
"""

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Add repo root to sys.path so tests can import projectpulse without installing
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from projectpulse.normalize.domain_models import (  # noqa: E402
    ActivitySnapshot,
    CachedSnapshot,
    PlanningSnapshot,
    ProjectSources,
    VcsSnapshot,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class FakeMonotonic:
    """Manually advanced stand-in for time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClock:
    """Manually advanced stand-in for utc_now."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def alpha_sources() -> ProjectSources:
    """Cached baseline at 40%, planning at 70%: planning must win."""
    return ProjectSources(
        cached=CachedSnapshot(progress=40, stories_total=10, stories_completed=4),
        planning=PlanningSnapshot(progress=70, stories_total=10, stories_completed=7),
    )


@pytest.fixture
def full_sources() -> ProjectSources:
    """All four sources for a healthy, well-documented project."""
    return ProjectSources(
        cached=CachedSnapshot(
            name="beta", progress=50, stories_total=8, stories_completed=4, category="Games"
        ),
        vcs=VcsSnapshot(
            name="beta-repo",
            commits=60,
            prs=12,
            issues=6,
            last_activity=NOW - timedelta(days=2),
            has_prd=True,
            has_task_list=True,
        ),
        planning=PlanningSnapshot(
            progress=75,
            stories_total=8,
            stories_completed=6,
            tasks_total=20,
            tasks_completed=15,
            category="Games",
            status="active",
        ),
        activity=ActivitySnapshot(last_activity=NOW - timedelta(days=1), total_commits=42),
    )
