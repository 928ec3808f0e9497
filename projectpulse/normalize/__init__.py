"""
Normalize Module — Canonical Project Records from Partial Sources.

This module provides:
- domain_models.py: snapshots, the canonical record and derived views
- reconciler.py: precedence merge plus validation
- consistency.py: cross-source divergence detection and report store
- activity_log.py: rolling commit-activity time series
"""

from .activity_log import ActivityLog
from .consistency import ConsistencyChecker, InconsistencyStore
from .domain_models import (
    ActivitySnapshot,
    ActivityStatus,
    AnalyticsSnapshot,
    BlockedItem,
    CachedSnapshot,
    CanonicalProjectRecord,
    DocumentStatus,
    HealthAssessment,
    HealthStatus,
    InconsistencyKind,
    InconsistencyReport,
    PlanningSnapshot,
    ProjectOverview,
    ProjectSources,
    StaleItem,
    Trend,
    VcsSnapshot,
    WorkItem,
    WorkItemType,
    to_utc,
    utc_now,
)
from .reconciler import Reconciler

__all__ = [
    # Domain models
    "ActivitySnapshot",
    "CachedSnapshot",
    "PlanningSnapshot",
    "VcsSnapshot",
    "ProjectSources",
    "CanonicalProjectRecord",
    "HealthAssessment",
    "AnalyticsSnapshot",
    "BlockedItem",
    "StaleItem",
    "WorkItem",
    "InconsistencyReport",
    "ProjectOverview",
    # Enums
    "ActivityStatus",
    "DocumentStatus",
    "HealthStatus",
    "InconsistencyKind",
    "Trend",
    "WorkItemType",
    # Helpers
    "to_utc",
    "utc_now",
    # Services
    "Reconciler",
    "ConsistencyChecker",
    "InconsistencyStore",
    "ActivityLog",
]
