# Project Pulse - Core Library
"""
Reconciles partial project metrics from independent sources into one
canonical record per project, scores health, and serves progress analytics.
"""

from .config import EngineConfig
from .engine import BatchResult, ProjectPulseEngine
from .errors import (
    InconsistencyWarning,
    ProjectNotFound,
    PulseError,
    ReconciliationError,
    SourceUnavailable,
    ValidationError,
)
from .normalize import ActivityLog, CanonicalProjectRecord, ProjectSources, Reconciler
from .query_engine import ProjectFilters, QueryEngine, SortKey
from .sources import InMemorySourceProvider, InMemoryWorkItemLookup

__version__ = "1.0.0"

__all__ = [
    "ProjectPulseEngine",
    "BatchResult",
    "EngineConfig",
    "Reconciler",
    "ProjectSources",
    "CanonicalProjectRecord",
    "ActivityLog",
    "QueryEngine",
    "ProjectFilters",
    "SortKey",
    "InMemorySourceProvider",
    "InMemoryWorkItemLookup",
    "PulseError",
    "ValidationError",
    "ReconciliationError",
    "SourceUnavailable",
    "ProjectNotFound",
    "InconsistencyWarning",
]
