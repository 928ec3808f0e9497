"""
Consistency checking across source snapshots.

Detection compares what each source reported against the others and against
the reconciled value. Reports are diagnostics only: they are logged, kept in
an InconsistencyStore, and never change the canonical record.
"""

import logging
import math
import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from projectpulse import config
from projectpulse.errors import ValidationError

from .domain_models import (
    CanonicalProjectRecord,
    InconsistencyKind,
    InconsistencyReport,
    ProjectSources,
    to_utc,
    utc_now,
)

logger = logging.getLogger(__name__)

PROGRESS_TOLERANCE = 5.0
ACTIVITY_TOLERANCE = timedelta(days=7)


def _reported_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _reported_timestamp(value: Any) -> datetime | None:
    try:
        return to_utc(value)
    except ValidationError:
        return None


class ConsistencyChecker:
    """Detects cross-source divergence for progress, story counts and activity."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    def detect(
        self, canonical: CanonicalProjectRecord, sources: ProjectSources
    ) -> list[InconsistencyReport]:
        """
        Compare the snapshots that fed a reconciliation.

        Rules:
        - progress: two or more sources report it and any differs from the
          reconciled value by more than 5 points
        - stories_total: two or more sources report it and they disagree
        - last_activity: VCS and activity log differ by more than 7 days

        Returns:
            At most one report per rule
        """
        now = self._clock()
        reports: list[InconsistencyReport] = []

        progress = {
            name: value
            for name, value in (
                ("cached", _reported_number(getattr(sources.cached, "progress", None))),
                ("planning", _reported_number(getattr(sources.planning, "progress", None))),
            )
            if value is not None
        }
        if len(progress) >= 2 and any(
            abs(value - canonical.progress) > PROGRESS_TOLERANCE for value in progress.values()
        ):
            reports.append(
                InconsistencyReport(
                    project_name=canonical.name,
                    kind=InconsistencyKind.PROGRESS_MISMATCH,
                    field="progress",
                    source_values=progress,
                    reconciled_value=canonical.progress,
                    timestamp=now,
                )
            )

        stories = {
            name: value
            for name, value in (
                ("cached", _reported_number(getattr(sources.cached, "stories_total", None))),
                ("planning", _reported_number(getattr(sources.planning, "stories_total", None))),
            )
            if value is not None
        }
        if len(stories) >= 2 and len(set(stories.values())) > 1:
            reports.append(
                InconsistencyReport(
                    project_name=canonical.name,
                    kind=InconsistencyKind.STORY_COUNT_MISMATCH,
                    field="stories_total",
                    source_values=stories,
                    reconciled_value=canonical.stories_total,
                    timestamp=now,
                )
            )

        vcs_ts = _reported_timestamp(getattr(sources.vcs, "last_activity", None))
        log_ts = _reported_timestamp(getattr(sources.activity, "last_activity", None))
        if vcs_ts is not None and log_ts is not None and abs(vcs_ts - log_ts) > ACTIVITY_TOLERANCE:
            reports.append(
                InconsistencyReport(
                    project_name=canonical.name,
                    kind=InconsistencyKind.ACTIVITY_MISMATCH,
                    field="last_activity",
                    source_values={"vcs": vcs_ts, "activity": log_ts},
                    reconciled_value=canonical.last_activity,
                    timestamp=now,
                )
            )

        return reports


class InconsistencyStore:
    """
    Thread-safe, instance-owned history of inconsistency reports.

    Keeps at most max_per_project reports per project; the oldest are
    dropped first.
    """

    def __init__(self, max_per_project: int = config.MAX_REPORTS_PER_PROJECT):
        if max_per_project < 1:
            raise ValueError("max_per_project must be at least 1")
        self._max_per_project = max_per_project
        self._reports: dict[str, deque[InconsistencyReport]] = {}
        self._last_reconciliation: datetime | None = None
        self._lock = threading.Lock()

    def record(
        self, project_name: str, reports: list[InconsistencyReport], at: datetime | None = None
    ) -> None:
        """Mark a reconciliation of project_name and keep any reports it produced."""
        with self._lock:
            self._last_reconciliation = at or utc_now()
            if not reports:
                return
            history = self._reports.setdefault(
                project_name, deque(maxlen=self._max_per_project)
            )
            history.extend(reports)

        logger.warning(
            "Found %d inconsistencies for %s: %s",
            len(reports),
            project_name,
            ", ".join(r.kind.value for r in reports),
            extra={"project": project_name, "inconsistencies": len(reports)},
        )

    def get(self, project_name: str) -> list[InconsistencyReport]:
        with self._lock:
            return list(self._reports.get(project_name, ()))

    def all(self) -> dict[str, list[InconsistencyReport]]:
        with self._lock:
            return {name: list(reports) for name, reports in self._reports.items()}

    def clear(self, project_name: str) -> bool:
        """Drop one project's reports. Returns whether any were held."""
        with self._lock:
            return self._reports.pop(project_name, None) is not None

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._reports)
            self._reports.clear()
            return count

    def status(self) -> dict:
        with self._lock:
            last = self._last_reconciliation
            return {
                "last_reconciliation": last.isoformat() if last else None,
                "total_projects": len(self._reports),
                "projects_with_inconsistencies": sorted(self._reports),
            }
