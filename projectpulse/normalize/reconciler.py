"""
Reconciler — Merge Partial Source Snapshots into One Canonical Record.

Precedence, lowest to highest:
1. cached baseline (the engine's previous output)
2. VCS snapshot (identity, recency, commit/PR/issue counts, documentation)
3. planning snapshot (progress, story/task counts, category, status)
4. activity log (recency and commit total, only when strictly newer)

Each source has its own merge function that copies the fields it owns
when they are present. Presence means "is not None": a reported 0, False
or "" overrides a lower-precedence value.

After merging, a validation pass defaults malformed fields, clamps counts
and progress into range and fills identity defaults. Validation problems
are logged and recovered, never raised.
"""

import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from projectpulse import config
from projectpulse.errors import ReconciliationError, ValidationError

from .domain_models import (
    ActivitySnapshot,
    CachedSnapshot,
    CanonicalProjectRecord,
    DocumentStatus,
    PlanningSnapshot,
    ProjectSources,
    VcsSnapshot,
    to_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

_TRUE_STRINGS = frozenset({"true", "1", "yes", "y"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", ""})


# =============================================================================
# WORKING DRAFT
# =============================================================================


@dataclass
class _Draft:
    """Raw merged values before validation. None means no source supplied it."""

    name: Any = None
    repository: Any = None
    progress: Any = None
    stories_total: Any = None
    stories_completed: Any = None
    tasks_total: Any = None
    tasks_completed: Any = None
    category: Any = None
    status: Any = None
    last_activity: Any = None
    total_commits: Any = None
    has_prd: Any = None
    has_task_list: Any = None
    vcs_commits: Any = None
    vcs_prs: Any = None
    vcs_issues: Any = None
    prd_status: Any = None
    task_list_status: Any = None


def _copy_present(draft: _Draft, snapshot: Any, mapping: dict[str, str]) -> None:
    for draft_field, snapshot_field in mapping.items():
        value = getattr(snapshot, snapshot_field)
        if value is not None:
            setattr(draft, draft_field, value)


def _timestamp_or_none(value: Any) -> datetime | None:
    try:
        return to_utc(value)
    except ValidationError:
        return None


# =============================================================================
# PER-SOURCE MERGE FUNCTIONS
# =============================================================================


def merge_cached(draft: _Draft, cached: CachedSnapshot) -> None:
    """Seed the draft with every field of the previous canonical output."""
    _copy_present(
        draft,
        cached,
        {
            "name": "name",
            "repository": "repository",
            "progress": "progress",
            "stories_total": "stories_total",
            "stories_completed": "stories_completed",
            "tasks_total": "tasks_total",
            "tasks_completed": "tasks_completed",
            "category": "category",
            "status": "status",
            "last_activity": "last_activity",
            "total_commits": "total_commits",
            "has_prd": "has_prd",
            "has_task_list": "has_task_list",
            "vcs_commits": "vcs_commits",
            "vcs_prs": "vcs_prs",
            "vcs_issues": "vcs_issues",
            "prd_status": "prd_status",
            "task_list_status": "task_list_status",
        },
    )


def merge_vcs(draft: _Draft, vcs: VcsSnapshot) -> None:
    """Apply source-control identity, activity and documentation signals."""
    _copy_present(
        draft,
        vcs,
        {
            "repository": "name",
            "last_activity": "last_activity",
            "total_commits": "commits",
            "vcs_commits": "commits",
            "vcs_prs": "prs",
            "vcs_issues": "issues",
            "has_prd": "has_prd",
            "has_task_list": "has_task_list",
        },
    )
    # A fresh documentation signal replaces whatever status the baseline carried
    if vcs.has_prd is not None or vcs.prd_status is not None:
        draft.prd_status = vcs.prd_status
    if vcs.has_task_list is not None or vcs.task_list_status is not None:
        draft.task_list_status = vcs.task_list_status


def merge_planning(draft: _Draft, planning: PlanningSnapshot) -> None:
    """Apply completion data and classification from the planning tool."""
    _copy_present(
        draft,
        planning,
        {
            "progress": "progress",
            "stories_total": "stories_total",
            "stories_completed": "stories_completed",
            "tasks_total": "tasks_total",
            "tasks_completed": "tasks_completed",
            "category": "category",
            "status": "status",
        },
    )


def merge_activity(draft: _Draft, activity: ActivitySnapshot) -> None:
    """
    Apply activity-log recency only when it is strictly newer.

    A snapshot without a readable timestamp is skipped entirely, commit
    total included.
    """
    activity_ts = _timestamp_or_none(activity.last_activity)
    if activity_ts is None:
        return

    current_ts = _timestamp_or_none(draft.last_activity)
    if current_ts is not None and activity_ts <= current_ts:
        return

    draft.last_activity = activity_ts
    if activity.total_commits is not None:
        draft.total_commits = activity.total_commits


# =============================================================================
# VALIDATION
# =============================================================================


class _FieldValidator:
    """Coerces draft values, logging and defaulting anything malformed."""

    def __init__(self, project_name: str):
        self.project_name = project_name
        self.issues: list[ValidationError] = []

    def _recover(self, error: ValidationError) -> None:
        self.issues.append(error)
        logger.warning(
            "Recovered invalid field for %s: %s",
            self.project_name,
            error,
            extra={"project": self.project_name, "field": error.field},
        )

    def number(self, field: str, value: Any) -> float | None:
        if value is None:
            return None
        try:
            if isinstance(value, str):
                number = float(value.strip())
            elif isinstance(value, (int, float)):
                number = float(value)
            else:
                raise ValidationError(field, value, f"not numeric ({type(value).__name__})")
        except ValueError:
            self._recover(ValidationError(field, value, "not numeric"))
            return None
        except ValidationError as e:
            self._recover(e)
            return None
        if not math.isfinite(number):
            self._recover(ValidationError(field, value, "not finite"))
            return None
        return number

    def count(self, field: str, value: Any) -> int:
        number = self.number(field, value)
        if number is None:
            return 0
        return max(0, int(number))

    def flag(self, field: str, value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            self._recover(ValidationError(field, value, "not a boolean"))
            return False
        return bool(value)

    def text(self, value: Any, default: str) -> str:
        if value is None:
            return default
        text = str(value).strip()
        return text or default

    def timestamp(self, field: str, value: Any) -> datetime | None:
        try:
            return to_utc(value, field)
        except ValidationError as e:
            self._recover(e)
            return None

    def document(self, field: str, explicit: Any, exists: bool) -> DocumentStatus:
        if explicit is not None:
            try:
                if DocumentStatus(str(explicit).lower()) is DocumentStatus.OUTDATED:
                    return DocumentStatus.OUTDATED
            except ValueError:
                self._recover(ValidationError(field, explicit, "unknown document status"))
        return DocumentStatus.PRESENT if exists else DocumentStatus.MISSING


def validate(
    draft: _Draft,
    project_name: str,
    sources: tuple[str, ...] = (),
    reconciled_at: datetime | None = None,
    default_category: str = config.DEFAULT_CATEGORY,
) -> CanonicalProjectRecord:
    """Turn a merged draft into a record that satisfies every range invariant."""
    v = _FieldValidator(project_name)

    progress = v.number("progress", draft.progress)
    progress = 0.0 if progress is None else min(100.0, max(0.0, progress))

    stories_total = v.count("stories_total", draft.stories_total)
    stories_completed = min(v.count("stories_completed", draft.stories_completed), stories_total)
    tasks_total = v.count("tasks_total", draft.tasks_total)
    tasks_completed = min(v.count("tasks_completed", draft.tasks_completed), tasks_total)

    has_prd = v.flag("has_prd", draft.has_prd)
    has_task_list = v.flag("has_task_list", draft.has_task_list)
    prd_status = v.document("prd_status", draft.prd_status, has_prd)
    task_list_status = v.document("task_list_status", draft.task_list_status, has_task_list)
    last_activity = v.timestamp("last_activity", draft.last_activity)
    total_commits = v.count("total_commits", draft.total_commits)
    vcs_commits = v.count("vcs_commits", draft.vcs_commits)
    vcs_prs = v.count("vcs_prs", draft.vcs_prs)
    vcs_issues = v.count("vcs_issues", draft.vcs_issues)

    # Fields a later run may treat as reported by the cached baseline
    recovered = {issue.field for issue in v.issues}
    reported = frozenset(
        f.name
        for f in fields(draft)
        if getattr(draft, f.name) is not None and f.name not in recovered
    )

    return CanonicalProjectRecord(
        name=v.text(draft.name, project_name),
        repository=v.text(draft.repository, project_name),
        category=v.text(draft.category, default_category),
        status=v.text(draft.status, config.DEFAULT_STATUS),
        progress=progress,
        stories_total=stories_total,
        stories_completed=stories_completed,
        tasks_total=tasks_total,
        tasks_completed=tasks_completed,
        last_activity=last_activity,
        total_commits=total_commits,
        has_prd=has_prd or prd_status is DocumentStatus.OUTDATED,
        has_task_list=has_task_list or task_list_status is DocumentStatus.OUTDATED,
        vcs_commits=vcs_commits,
        vcs_prs=vcs_prs,
        vcs_issues=vcs_issues,
        prd_status=prd_status,
        task_list_status=task_list_status,
        sources=sources,
        reconciled_at=reconciled_at,
        reported=reported,
    )


# =============================================================================
# RECONCILER
# =============================================================================


class Reconciler:
    """
    Pure merge of up to four snapshots into a CanonicalProjectRecord.

    The clock only stamps reconciled_at; identical inputs always produce
    identical records apart from that field.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        default_category: str = config.DEFAULT_CATEGORY,
    ):
        self._clock = clock
        self._default_category = default_category

    def reconcile(
        self,
        project_name: str,
        sources: ProjectSources | Mapping[str, Any],
    ) -> CanonicalProjectRecord:
        """
        Reconcile one project's snapshots.

        Args:
            project_name: Canonical project name, used for identity defaults
            sources: ProjectSources, or a dict of raw payloads keyed by source

        Raises:
            ReconciliationError: If merging fails for any unexpected reason
        """
        try:
            if not isinstance(project_name, str) or not project_name.strip():
                raise ValueError(f"project name must be a non-empty string, got {project_name!r}")
            if not isinstance(sources, ProjectSources):
                sources = ProjectSources.from_dict(sources)

            draft = _Draft(name=project_name)
            if sources.cached is not None:
                merge_cached(draft, sources.cached)
            if sources.vcs is not None:
                merge_vcs(draft, sources.vcs)
            if sources.planning is not None:
                merge_planning(draft, sources.planning)
            if sources.activity is not None:
                merge_activity(draft, sources.activity)

            # The caller's name is the identity; a baseline may not rename it
            draft.name = project_name

            record = validate(
                draft,
                project_name,
                sources=tuple(sources.present()),
                reconciled_at=self._clock(),
                default_category=self._default_category,
            )
        except ReconciliationError:
            raise
        except Exception as e:
            raise ReconciliationError(project_name, e) from e

        logger.debug(
            "Reconciled %s from %s", project_name, ",".join(record.sources) or "no sources"
        )
        return record
