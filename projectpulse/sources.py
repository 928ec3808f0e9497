"""
Collaborator interfaces for snapshot providers and work-item activity.

Network clients for version control, the planning tool and the commit log
live outside this package; they plug in by implementing these protocols.
The in-memory implementations back tests and offline runs.
"""

import json
import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from projectpulse.errors import SourceUnavailable
from projectpulse.normalize.domain_models import (
    ActivitySnapshot,
    CachedSnapshot,
    PlanningSnapshot,
    VcsSnapshot,
    WorkItem,
    WorkItemType,
)

logger = logging.getLogger(__name__)


# =============================================================================
# PROTOCOLS
# =============================================================================


class SourceProvider(Protocol):
    """Supplies raw snapshots. Any fetch may return None or raise SourceUnavailable."""

    def project_names(self) -> list[str]:
        """All projects this provider knows about."""
        ...

    def fetch_vcs(self, project_name: str) -> VcsSnapshot | None:
        ...

    def fetch_planning(self, project_name: str) -> PlanningSnapshot | None:
        ...

    def fetch_activity(self, project_name: str) -> ActivitySnapshot | None:
        ...

    def fetch_cached(self, project_name: str) -> CachedSnapshot | None:
        ...


class WorkItemActivityLookup(Protocol):
    """Per-item activity for blocked/stale detection."""

    def incomplete_items(self, project_name: str) -> Iterable[WorkItem]:
        """Stories and tasks not yet completed."""
        ...

    def last_touched(self, project_name: str, item_id: str) -> datetime | str | None:
        """When the item last changed, or None if unknown."""
        ...


# =============================================================================
# IN-MEMORY IMPLEMENTATIONS
# =============================================================================


class InMemorySourceProvider:
    """
    SourceProvider over plain dicts of payloads keyed by project name.

    Payloads may be snapshot objects or raw dicts (camelCase or snake_case).
    """

    def __init__(
        self,
        vcs: Mapping[str, Any] | None = None,
        planning: Mapping[str, Any] | None = None,
        activity: Mapping[str, Any] | None = None,
        cached: Mapping[str, Any] | None = None,
    ):
        self._payloads: dict[str, dict[str, Any]] = {
            "vcs": dict(vcs or {}),
            "planning": dict(planning or {}),
            "activity": dict(activity or {}),
            "cached": dict(cached or {}),
        }
        self._unavailable: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemorySourceProvider":
        """
        Load payloads from a JSON document of the form
        {"vcs": {name: {...}}, "planning": {...}, "activity": {...}, "cached": {...}}.
        """
        with open(path, encoding="utf-8") as f:
            document = json.load(f)
        if not isinstance(document, dict):
            raise ValueError(f"{path} must contain a JSON object")
        unknown = set(document) - {"vcs", "planning", "activity", "cached"}
        if unknown:
            logger.warning("Ignoring unknown sources in %s: %s", path, ", ".join(sorted(unknown)))
        return cls(
            vcs=document.get("vcs"),
            planning=document.get("planning"),
            activity=document.get("activity"),
            cached=document.get("cached"),
        )

    def mark_unavailable(self, source: str, project_name: str, reason: str = "") -> None:
        """Make fetches of one source for one project raise SourceUnavailable."""
        with self._lock:
            self._unavailable[(source, project_name)] = reason

    def mark_available(self, source: str, project_name: str) -> None:
        with self._lock:
            self._unavailable.pop((source, project_name), None)

    def project_names(self) -> list[str]:
        with self._lock:
            return sorted({name for payloads in self._payloads.values() for name in payloads})

    def _fetch(self, source: str, project_name: str) -> Any:
        with self._lock:
            if (source, project_name) in self._unavailable:
                raise SourceUnavailable(
                    source, project_name, self._unavailable[(source, project_name)]
                )
            return self._payloads[source].get(project_name)

    def fetch_vcs(self, project_name: str) -> VcsSnapshot | None:
        payload = self._fetch("vcs", project_name)
        return payload if isinstance(payload, VcsSnapshot) else VcsSnapshot.from_dict(payload)

    def fetch_planning(self, project_name: str) -> PlanningSnapshot | None:
        payload = self._fetch("planning", project_name)
        if isinstance(payload, PlanningSnapshot):
            return payload
        return PlanningSnapshot.from_dict(payload)

    def fetch_activity(self, project_name: str) -> ActivitySnapshot | None:
        payload = self._fetch("activity", project_name)
        if isinstance(payload, ActivitySnapshot):
            return payload
        return ActivitySnapshot.from_dict(payload)

    def fetch_cached(self, project_name: str) -> CachedSnapshot | None:
        payload = self._fetch("cached", project_name)
        if isinstance(payload, CachedSnapshot):
            return payload
        return CachedSnapshot.from_dict(payload)


class InMemoryWorkItemLookup:
    """
    WorkItemActivityLookup over dicts.

    Args:
        items: project name -> list of WorkItem (or dicts with id/title/type/completed)
        touched: project name -> {item id -> last-touch timestamp}
    """

    def __init__(
        self,
        items: Mapping[str, Iterable[WorkItem | Mapping[str, Any]]] | None = None,
        touched: Mapping[str, Mapping[str, Any]] | None = None,
    ):
        self._items: dict[str, list[WorkItem]] = {
            project: [self._as_item(item) for item in project_items]
            for project, project_items in (items or {}).items()
        }
        self._touched = {project: dict(times) for project, times in (touched or {}).items()}

    @staticmethod
    def _as_item(item: WorkItem | Mapping[str, Any]) -> WorkItem:
        if isinstance(item, WorkItem):
            return item
        return WorkItem(
            id=str(item["id"]),
            title=str(item.get("title", item["id"])),
            type=WorkItemType(item.get("type", WorkItemType.TASK)),
            completed=bool(item.get("completed", False)),
        )

    def incomplete_items(self, project_name: str) -> list[WorkItem]:
        return [item for item in self._items.get(project_name, []) if not item.completed]

    def last_touched(self, project_name: str, item_id: str) -> datetime | str | None:
        return self._touched.get(project_name, {}).get(item_id)
