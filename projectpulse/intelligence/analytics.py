"""
Progress Analytics — Completion, Velocity and Idle Work Detection.

Derived from a canonical record, optionally enriched with:
- a WorkItemActivityLookup (per-item last-touch times) for blocked/stale items
- weekly velocity buckets (oldest first) for the trend

All percentages use half-up rounding so 2.5 becomes 3, not 2.
"""

import logging
import math
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from projectpulse import config
from projectpulse.normalize.domain_models import (
    ActivityStatus,
    AnalyticsSnapshot,
    BlockedItem,
    CanonicalProjectRecord,
    StaleItem,
    Trend,
    WorkItemType,
    to_utc,
    utc_now,
)
from projectpulse.sources import WorkItemActivityLookup

logger = logging.getLogger(__name__)

DAY = timedelta(days=1)


# =============================================================================
# HELPERS
# =============================================================================


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from negative infinity."""
    return math.floor(value + 0.5)


def percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(100, max(0, round_half_up(completed / total * 100)))


def completion_velocity(
    record: CanonicalProjectRecord, weeks: int = config.VELOCITY_WEEKS
) -> int:
    """Stories per week, assuming the project ran for `weeks` weeks."""
    if record.stories_total <= 0:
        return 0
    return max(0, round_half_up(record.stories_completed / record.stories_total * weeks))


def days_since(moment: datetime | None, now: datetime) -> float | None:
    if moment is None:
        return None
    return (now - moment) / DAY


def activity_status(last_activity: datetime | None, now: datetime) -> ActivityStatus:
    """Bucket recency: recent (7d), moderate (30d), stale (90d), else inactive."""
    days = days_since(last_activity, now)
    if days is None:
        return ActivityStatus.INACTIVE
    if days <= 7:
        return ActivityStatus.RECENT
    if days <= 30:
        return ActivityStatus.MODERATE
    if days <= 90:
        return ActivityStatus.STALE
    return ActivityStatus.INACTIVE


def velocity_trend(
    buckets: Sequence[float] | None,
    change_percent: float = config.TREND_CHANGE_PERCENT,
) -> tuple[Trend, float]:
    """
    Compare the last two weekly buckets.

    Returns:
        (trend, percent change). Change is 0.0 when the previous week was 0.
    """
    if not buckets or len(buckets) < 2:
        return Trend.STABLE, 0.0

    previous, current = buckets[-2], buckets[-1]
    if previous == 0:
        return (Trend.INCREASING if current > 0 else Trend.STABLE), 0.0

    change = (current - previous) / previous * 100
    if change > change_percent:
        trend = Trend.INCREASING
    elif change < -change_percent:
        trend = Trend.DECREASING
    else:
        trend = Trend.STABLE
    return trend, round(change, 1)


def incomplete_work_priority(analytics: AnalyticsSnapshot) -> int:
    """
    Rank a project's outstanding work; higher means look at it sooner.

    Formula: (100 - overall%) * 0.5 + blocked * 10 + stale * 5 - velocity * 2,
    floored at 0.
    """
    raw = (
        (100 - analytics.overall_pct) * 0.5
        + len(analytics.blocked_items) * 10
        + len(analytics.stale_items) * 5
        - analytics.velocity * 2
    )
    return round_half_up(max(0.0, raw))


def aggregate_metrics(snapshots: Sequence[AnalyticsSnapshot]) -> dict:
    """Portfolio totals over many analytics snapshots."""
    if not snapshots:
        return {
            "total_projects": 0,
            "average_completion": 0,
            "total_stories": 0,
            "completed_stories": 0,
            "total_tasks": 0,
            "completed_tasks": 0,
            "total_incomplete": 0,
            "average_velocity": 0.0,
            "projects_with_blocked_items": 0,
            "projects_with_stale_items": 0,
            "completion_rate": 0,
        }

    total_stories = sum(s.total_stories for s in snapshots)
    completed_stories = sum(s.completed_stories for s in snapshots)
    total_tasks = sum(s.total_tasks for s in snapshots)
    completed_tasks = sum(s.completed_tasks for s in snapshots)

    return {
        "total_projects": len(snapshots),
        "average_completion": round_half_up(sum(s.overall_pct for s in snapshots) / len(snapshots)),
        "total_stories": total_stories,
        "completed_stories": completed_stories,
        "total_tasks": total_tasks,
        "completed_tasks": completed_tasks,
        "total_incomplete": sum(s.incomplete_stories + s.incomplete_tasks for s in snapshots),
        "average_velocity": round_half_up(sum(s.velocity for s in snapshots) / len(snapshots) * 10)
        / 10,
        "projects_with_blocked_items": sum(1 for s in snapshots if s.blocked_items),
        "projects_with_stale_items": sum(1 for s in snapshots if s.stale_items),
        "completion_rate": percentage(
            completed_stories + completed_tasks, total_stories + total_tasks
        ),
    }


# =============================================================================
# ENGINE
# =============================================================================


class AnalyticsEngine:
    """Computes AnalyticsSnapshots. Stateless apart from its settings."""

    def __init__(
        self,
        velocity_weeks: int = config.VELOCITY_WEEKS,
        blocked_after_days: int = config.BLOCKED_AFTER_DAYS,
        stale_after_days: int = config.STALE_AFTER_DAYS,
        missing_activity_days: int = config.MISSING_ACTIVITY_DAYS,
        low_velocity_threshold: int = config.LOW_VELOCITY_THRESHOLD,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.velocity_weeks = velocity_weeks
        self.blocked_after_days = blocked_after_days
        self.stale_after_days = stale_after_days
        self.missing_activity_days = missing_activity_days
        self.low_velocity_threshold = low_velocity_threshold
        self._clock = clock

    def analyze(
        self,
        canonical: CanonicalProjectRecord,
        work_items: WorkItemActivityLookup | None = None,
        velocity_history: Sequence[float] | None = None,
        now: datetime | None = None,
    ) -> AnalyticsSnapshot:
        now = now or self._clock()
        velocity = completion_velocity(canonical, self.velocity_weeks)
        trend, change = velocity_trend(velocity_history)

        blocked: list[BlockedItem] = []
        stale: list[StaleItem] = []
        if work_items is not None:
            blocked, stale = self.detect_idle_items(canonical.name, work_items, velocity, now)

        return AnalyticsSnapshot(
            project_name=canonical.name,
            story_pct=percentage(canonical.stories_completed, canonical.stories_total),
            task_pct=percentage(canonical.tasks_completed, canonical.tasks_total),
            overall_pct=percentage(
                canonical.stories_completed + canonical.tasks_completed,
                canonical.stories_total + canonical.tasks_total,
            ),
            total_stories=canonical.stories_total,
            completed_stories=canonical.stories_completed,
            total_tasks=canonical.tasks_total,
            completed_tasks=canonical.tasks_completed,
            velocity=velocity,
            trend=trend,
            velocity_change=change,
            blocked_items=blocked,
            stale_items=stale,
        )

    def _idle_days(
        self, project_name: str, item_id: str, lookup: WorkItemActivityLookup, now: datetime
    ) -> tuple[int, datetime | None]:
        try:
            touched = to_utc(lookup.last_touched(project_name, item_id))
        except Exception as e:
            logger.warning(
                "Activity lookup failed for %s/%s, assuming %d idle days: %s",
                project_name,
                item_id,
                self.missing_activity_days,
                e,
            )
            touched = None

        if touched is None:
            return self.missing_activity_days, None
        return max(0, math.floor((now - touched) / DAY)), touched

    def detect_idle_items(
        self,
        project_name: str,
        lookup: WorkItemActivityLookup,
        velocity: int,
        now: datetime,
    ) -> tuple[list[BlockedItem], list[StaleItem]]:
        """
        Find incomplete items idle long enough to be blocked or stale.

        Blocked items are also stale. Both lists are sorted by priority
        (highest first), then id.
        """
        try:
            items = list(lookup.incomplete_items(project_name))
        except Exception as e:
            logger.warning("Could not list work items for %s: %s", project_name, e)
            return [], []

        slow = velocity < self.low_velocity_threshold
        blocked: list[BlockedItem] = []
        stale: list[StaleItem] = []

        for item in items:
            if item.completed:
                continue
            days, touched = self._idle_days(project_name, item.id, lookup, now)
            is_story = item.type == WorkItemType.STORY

            if days >= self.blocked_after_days:
                blocked.append(
                    BlockedItem(
                        id=item.id,
                        title=item.title,
                        type=WorkItemType(item.type),
                        reason=f"No activity for {days} days",
                        last_activity=touched,
                        days_blocked=days,
                        priority=days * 10 + (50 if is_story else 0) + (30 if slow else 0),
                    )
                )
            if days >= self.stale_after_days:
                stale.append(
                    StaleItem(
                        id=item.id,
                        title=item.title,
                        type=WorkItemType(item.type),
                        reason=f"Idle for {days} days",
                        last_activity=touched,
                        days_stale=days,
                        priority=days * 5 + (25 if is_story else 0) + (15 if slow else 0),
                    )
                )

        blocked.sort(key=lambda i: (-i.priority, i.id))
        stale.sort(key=lambda i: (-i.priority, i.id))
        return blocked, stale
