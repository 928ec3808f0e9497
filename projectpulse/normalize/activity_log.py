"""
Rolling commit-activity log.

The log is a daily time series: date -> {project: commit count}. It is
the source of activity snapshots (recency plus windowed commit total) and of
the weekly buckets used for velocity trends.

Accepted entry shapes:
    {"date": "2025-01-07", "projects": {"glyph": 4}}
    {"date": "2025-01-07", "projects": {"glyph": {"commits": 4}}}
"""

import json
import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

from projectpulse import config
from projectpulse.errors import ValidationError

from .domain_models import ActivitySnapshot, to_utc

logger = logging.getLogger(__name__)


def _commit_count(value: Any) -> int:
    if isinstance(value, Mapping):
        value = value.get("commits", 0)
    if value is None or isinstance(value, bool):
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _as_day(value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = to_utc(value, "date")
    if parsed is None:
        raise ValidationError("date", value, "missing")
    return parsed.date()


class ActivityLog:
    """Thread-safe daily commit counts per project."""

    def __init__(self, entries: Iterable[Mapping[str, Any]] = ()):
        self._days: dict[date, dict[str, int]] = {}
        self._lock = threading.Lock()
        for entry in entries:
            self.add_entry(entry)

    @classmethod
    def from_file(cls, path: str | Path) -> "ActivityLog":
        """Load a JSON commit log (a list of daily entries). A missing file is an empty log."""
        path = Path(path)
        if not path.exists():
            logger.info("Commit log %s not found, starting empty", path)
            return cls()
        with open(path, encoding="utf-8") as f:
            entries = json.load(f)
        if not isinstance(entries, list):
            raise ValueError(f"Commit log {path} must contain a JSON list")
        return cls(entries)

    def add_entry(self, entry: Mapping[str, Any]) -> None:
        """Merge one daily entry. Entries with an unreadable date are skipped."""
        try:
            day = _as_day(entry.get("date"))
        except ValidationError as e:
            logger.warning("Skipping commit log entry: %s", e)
            return
        for project, value in (entry.get("projects") or {}).items():
            self.add(day, project, _commit_count(value))

    def add(self, day: date, project: str, commits: int) -> None:
        with self._lock:
            counts = self._days.setdefault(day, {})
            counts[project] = counts.get(project, 0) + commits

    def projects(self) -> list[str]:
        with self._lock:
            return sorted({name for counts in self._days.values() for name in counts})

    def _commits_between(self, project: str, first: date, last: date) -> dict[date, int]:
        with self._lock:
            return {
                day: counts[project]
                for day, counts in self._days.items()
                if first <= day <= last and counts.get(project, 0) > 0
            }

    def snapshot_for(
        self,
        project: str,
        now: datetime,
        window_days: int = config.ACTIVITY_WINDOW_DAYS,
    ) -> ActivitySnapshot | None:
        """
        Activity snapshot over the trailing window ending today.

        Only days with at least one commit count as activity.

        Returns:
            ActivitySnapshot, or None if the project had no commits in the window
        """
        today = now.astimezone(UTC).date()
        first_day = today - timedelta(days=window_days - 1)
        commits = self._commits_between(project, first_day, today)
        if not commits:
            return None
        last_day = max(commits)
        return ActivitySnapshot(
            last_activity=datetime(last_day.year, last_day.month, last_day.day, tzinfo=UTC),
            total_commits=sum(commits.values()),
        )

    def weekly_buckets(
        self, project: str, now: datetime, weeks: int = config.VELOCITY_WEEKS
    ) -> list[int]:
        """
        Commit totals per trailing 7-day week, oldest first.

        The last bucket ends today; a project with no commits gets all zeros.
        """
        today = now.astimezone(UTC).date()
        start = today - timedelta(days=7 * weeks - 1)
        commits = self._commits_between(project, start, today)

        buckets = [0] * weeks
        for day, count in commits.items():
            buckets[(day - start).days // 7] += count
        return buckets
