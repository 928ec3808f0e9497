"""
Domain Models — Canonical Types for Reconciled Project Data.

Snapshots are the partial per-source views handed to the reconciler. Every
snapshot field is optional: None means "this source said nothing", which is
different from a reported 0, False or "".

The canonical record is the single merged view of a project; health,
analytics and inconsistency reports are derived from it and never feed back
into it.
"""

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, Optional, TypeVar

from projectpulse.errors import ValidationError

# =============================================================================
# ENUMS
# =============================================================================


class DocumentStatus(StrEnum):
    """Tri-state status of a PRD or task list."""

    PRESENT = "present"
    MISSING = "missing"
    OUTDATED = "outdated"


class HealthStatus(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


class ActivityStatus(StrEnum):
    RECENT = "recent"
    MODERATE = "moderate"
    STALE = "stale"
    INACTIVE = "inactive"


class Trend(StrEnum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class WorkItemType(StrEnum):
    STORY = "story"
    TASK = "task"


class InconsistencyKind(StrEnum):
    PROGRESS_MISMATCH = "progress_mismatch"
    STORY_COUNT_MISMATCH = "story_count_mismatch"
    ACTIVITY_MISMATCH = "activity_mismatch"


# =============================================================================
# COERCION HELPERS
# =============================================================================

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def to_utc(value: Any, field_name: str = "last_activity") -> datetime | None:
    """
    Interpret a timestamp reported by a source.

    Accepts datetimes (naive ones are taken as UTC), dates, ISO-8601 strings
    and epoch seconds.

    Raises:
        ValidationError: If the value cannot be read as a timestamp
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, bool):
        raise ValidationError(field_name, value, "not a timestamp")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValidationError(field_name, value, "not a finite epoch")
        try:
            return datetime.fromtimestamp(value, tz=UTC)
        except (ValueError, OverflowError, OSError) as e:
            raise ValidationError(field_name, value, "epoch out of range") from e
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise ValidationError(field_name, value, "not an ISO-8601 timestamp") from e
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise ValidationError(field_name, value, f"unsupported type {type(value).__name__}")


def utc_now() -> datetime:
    """Default clock for everything that stamps or ages records."""
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


S = TypeVar("S")


def _from_mapping(cls: type[S], data: Mapping[str, Any] | None, **renames: str) -> Optional[S]:
    """Build a snapshot from a provider payload (snake_case or camelCase keys)."""
    if data is None:
        return None
    known = {f.name for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for raw_key, value in data.items():
        key = renames.get(raw_key, _snake(raw_key))
        if key in known:
            kwargs[key] = value
    return cls(**kwargs)


# =============================================================================
# SNAPSHOTS
# =============================================================================


@dataclass
class VcsSnapshot:
    """Source-control activity for one repository."""

    name: str | None = None
    commits: Any = None
    prs: Any = None
    issues: Any = None
    last_activity: Any = None
    has_prd: Any = None
    has_task_list: Any = None
    prd_status: str | None = None
    task_list_status: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Optional["VcsSnapshot"]:
        return _from_mapping(cls, data, pullRequests="prs", updated_at="last_activity")


@dataclass
class PlanningSnapshot:
    """Completion data from the planning/tracking tool."""

    progress: Any = None
    stories_total: Any = None
    stories_completed: Any = None
    tasks_total: Any = None
    tasks_completed: Any = None
    category: str | None = None
    status: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Optional["PlanningSnapshot"]:
        return _from_mapping(cls, data, storyCount="stories_total", taskCount="tasks_total")


@dataclass
class ActivitySnapshot:
    """Recency and volume derived from the rolling commit-activity log."""

    last_activity: Any = None
    total_commits: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Optional["ActivitySnapshot"]:
        return _from_mapping(cls, data)


@dataclass
class CachedSnapshot:
    """The engine's own previous canonical output, used as the merge baseline."""

    name: str | None = None
    repository: str | None = None
    progress: Any = None
    stories_total: Any = None
    stories_completed: Any = None
    tasks_total: Any = None
    tasks_completed: Any = None
    category: str | None = None
    status: str | None = None
    last_activity: Any = None
    total_commits: Any = None
    has_prd: Any = None
    has_task_list: Any = None
    vcs_commits: Any = None
    vcs_prs: Any = None
    vcs_issues: Any = None
    prd_status: str | None = None
    task_list_status: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> Optional["CachedSnapshot"]:
        return _from_mapping(cls, data, storyCount="stories_total", taskCount="tasks_total")

    @classmethod
    def from_record(cls, record: "CanonicalProjectRecord") -> "CachedSnapshot":
        """
        Baseline from a previous record, keeping only the fields a source
        reported. Validation defaults never come back as reported values.
        """
        snapshot = cls(
            name=record.name,
            repository=record.repository,
            progress=record.progress,
            stories_total=record.stories_total,
            stories_completed=record.stories_completed,
            tasks_total=record.tasks_total,
            tasks_completed=record.tasks_completed,
            category=record.category,
            status=record.status,
            last_activity=record.last_activity,
            total_commits=record.total_commits,
            has_prd=record.has_prd,
            has_task_list=record.has_task_list,
            vcs_commits=record.vcs_commits,
            vcs_prs=record.vcs_prs,
            vcs_issues=record.vcs_issues,
            prd_status=record.prd_status.value,
            task_list_status=record.task_list_status.value,
        )
        if record.reported is not None:
            for f in fields(cls):
                if f.name not in record.reported:
                    setattr(snapshot, f.name, None)
        return snapshot


@dataclass
class ProjectSources:
    """Up to four snapshots for one project; any may be None."""

    cached: CachedSnapshot | None = None
    vcs: VcsSnapshot | None = None
    planning: PlanningSnapshot | None = None
    activity: ActivitySnapshot | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProjectSources":
        """
        Build from a dict of raw payloads.

        Accepts both the short keys (cached, vcs, planning, activity) and the
        provider names (cachedData, githubData, notionData, commitLogData).
        """

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        return cls(
            cached=CachedSnapshot.from_dict(pick("cached", "cachedData")),
            vcs=VcsSnapshot.from_dict(pick("vcs", "githubData")),
            planning=PlanningSnapshot.from_dict(pick("planning", "notionData")),
            activity=ActivitySnapshot.from_dict(pick("activity", "commitLogData")),
        )

    def present(self) -> list[str]:
        """Names of the sources that supplied a snapshot, in merge order."""
        return [
            name
            for name in ("cached", "vcs", "planning", "activity")
            if getattr(self, name) is not None
        ]


# =============================================================================
# CANONICAL RECORD
# =============================================================================


@dataclass
class CanonicalProjectRecord:
    """
    Single merged truth for a project.

    Invariants (enforced by the reconciler's validation step):
    - 0 <= progress <= 100
    - 0 <= stories_completed <= stories_total
    - 0 <= tasks_completed <= tasks_total
    """

    name: str
    repository: str
    category: str
    status: str
    progress: float = 0.0
    stories_total: int = 0
    stories_completed: int = 0
    tasks_total: int = 0
    tasks_completed: int = 0
    last_activity: datetime | None = None
    total_commits: int = 0
    has_prd: bool = False
    has_task_list: bool = False
    vcs_commits: int = 0
    vcs_prs: int = 0
    vcs_issues: int = 0
    prd_status: DocumentStatus = DocumentStatus.MISSING
    task_list_status: DocumentStatus = DocumentStatus.MISSING
    sources: tuple[str, ...] = ()
    reconciled_at: datetime | None = None
    # Fields some source actually supplied; None means treat every field as reported
    reported: frozenset[str] | None = field(default=None, compare=False, repr=False)

    @property
    def incomplete_stories(self) -> int:
        return max(0, self.stories_total - self.stories_completed)

    @property
    def incomplete_tasks(self) -> int:
        return max(0, self.tasks_total - self.tasks_completed)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "repository": self.repository,
            "category": self.category,
            "status": self.status,
            "progress": self.progress,
            "stories_total": self.stories_total,
            "stories_completed": self.stories_completed,
            "tasks_total": self.tasks_total,
            "tasks_completed": self.tasks_completed,
            "last_activity": _iso(self.last_activity),
            "total_commits": self.total_commits,
            "has_prd": self.has_prd,
            "has_task_list": self.has_task_list,
            "vcs_commits": self.vcs_commits,
            "vcs_prs": self.vcs_prs,
            "vcs_issues": self.vcs_issues,
            "prd_status": self.prd_status.value,
            "task_list_status": self.task_list_status.value,
            "sources": list(self.sources),
            "reconciled_at": _iso(self.reconciled_at),
        }


# =============================================================================
# DIAGNOSTICS
# =============================================================================


@dataclass
class InconsistencyReport:
    """Cross-source divergence for one field. Never alters the canonical record."""

    project_name: str
    kind: InconsistencyKind
    field: str
    source_values: dict[str, Any]
    reconciled_value: Any
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "project_name": self.project_name,
            "type": self.kind.value,
            "field": self.field,
            "source_values": {
                k: _iso(v) if isinstance(v, datetime) else v for k, v in self.source_values.items()
            },
            "reconciled_value": (
                _iso(self.reconciled_value)
                if isinstance(self.reconciled_value, datetime)
                else self.reconciled_value
            ),
            "timestamp": _iso(self.timestamp),
        }


# =============================================================================
# DERIVED VIEWS
# =============================================================================


@dataclass
class HealthAssessment:
    """Weighted 0-100 health score with its breakdown and risk factors."""

    score: int
    status: HealthStatus
    risk_factors: list[str] = field(default_factory=list)
    factor_breakdown: dict[str, int] = field(default_factory=dict)
    prd_status: DocumentStatus = DocumentStatus.MISSING
    task_list_status: DocumentStatus = DocumentStatus.MISSING
    completion_velocity: int = 0
    last_activity: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "health_score": self.score,
            "health_status": self.status.value,
            "risk_factors": list(self.risk_factors),
            "health_factors": dict(self.factor_breakdown),
            "prd_status": self.prd_status.value,
            "task_list_status": self.task_list_status.value,
            "completion_velocity": self.completion_velocity,
            "last_activity": _iso(self.last_activity),
        }


@dataclass
class WorkItem:
    """A story or task known to the planning provider."""

    id: str
    title: str
    type: WorkItemType = WorkItemType.TASK
    completed: bool = False


@dataclass
class BlockedItem:
    """An incomplete item idle for at least the blocked threshold."""

    id: str
    title: str
    type: WorkItemType
    reason: str
    last_activity: datetime | None
    days_blocked: int
    priority: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "reason": self.reason,
            "last_activity": _iso(self.last_activity),
            "days_blocked": self.days_blocked,
            "priority": self.priority,
        }


@dataclass
class StaleItem:
    """An incomplete item idle for at least the stale threshold."""

    id: str
    title: str
    type: WorkItemType
    reason: str
    last_activity: datetime | None
    days_stale: int
    priority: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "reason": self.reason,
            "last_activity": _iso(self.last_activity),
            "days_stale": self.days_stale,
            "priority": self.priority,
        }


@dataclass
class AnalyticsSnapshot:
    """Completion and velocity view of one project."""

    project_name: str
    story_pct: int
    task_pct: int
    overall_pct: int
    total_stories: int = 0
    completed_stories: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    velocity: int = 0
    trend: Trend = Trend.STABLE
    velocity_change: float = 0.0
    blocked_items: list[BlockedItem] = field(default_factory=list)
    stale_items: list[StaleItem] = field(default_factory=list)

    @property
    def incomplete_stories(self) -> int:
        return max(0, self.total_stories - self.completed_stories)

    @property
    def incomplete_tasks(self) -> int:
        return max(0, self.total_tasks - self.completed_tasks)

    def to_dict(self) -> dict:
        return {
            "project_name": self.project_name,
            "total_stories": self.total_stories,
            "completed_stories": self.completed_stories,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "incomplete_stories": self.incomplete_stories,
            "incomplete_tasks": self.incomplete_tasks,
            "story_completion_percentage": self.story_pct,
            "task_completion_percentage": self.task_pct,
            "overall_completion_percentage": self.overall_pct,
            "velocity": self.velocity,
            "trend": self.trend.value,
            "velocity_change": self.velocity_change,
            "blocked_items": [item.to_dict() for item in self.blocked_items],
            "stale_items": [item.to_dict() for item in self.stale_items],
        }


@dataclass
class ProjectOverview:
    """Canonical record enriched with health and analytics, as served to callers."""

    record: CanonicalProjectRecord
    health: HealthAssessment
    analytics: AnalyticsSnapshot
    activity_status: ActivityStatus

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def completion_percentage(self) -> int:
        """Story completion; projects tracked only by tasks fall back to overall."""
        if self.record.stories_total > 0:
            return self.analytics.story_pct
        return self.analytics.overall_pct

    def to_dict(self) -> dict:
        data = self.record.to_dict()
        data["completion_percentage"] = self.completion_percentage
        data["activity_status"] = self.activity_status.value
        data["health"] = self.health.to_dict()
        data["analytics"] = self.analytics.to_dict()
        return data
