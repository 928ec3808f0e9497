"""
Centralized configuration for Project Pulse.

All tunable values that vary by deployment belong here.
Override via environment variables where marked.
"""

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


# ============================================================
# Cache
# ============================================================

CACHE_MAX_SIZE: int = _env_int("PULSE_CACHE_MAX_SIZE", 1000)
"""Hard cap on entries held by the tagged cache."""

CACHE_DEFAULT_TTL: float = _env_float("PULSE_CACHE_DEFAULT_TTL", 300.0)
"""Default time-to-live in seconds (5 minutes)."""

CACHE_SWEEP_INTERVAL: float = _env_float("PULSE_CACHE_SWEEP_INTERVAL", 60.0)
"""Seconds between background sweeps of expired cache entries."""

BASELINE_TTL: float = _env_float("PULSE_BASELINE_TTL", 3600.0)
"""How long a reconciled record is kept as the next run's cached baseline."""

# ============================================================
# Reconciliation
# ============================================================

DEFAULT_CATEGORY: str = os.environ.get("PULSE_DEFAULT_CATEGORY", "Miscellaneous / Standalone")
"""Category assigned to projects no source has categorized."""

DEFAULT_STATUS: str = "unknown"

ACTIVITY_WINDOW_DAYS: int = _env_int("PULSE_ACTIVITY_WINDOW_DAYS", 90)
"""Rolling window of the commit-activity log used for activity snapshots."""

MAX_REPORTS_PER_PROJECT: int = _env_int("PULSE_MAX_REPORTS_PER_PROJECT", 100)
"""Inconsistency reports kept per project before the oldest are dropped."""

BATCH_WORKERS: int = _env_int("PULSE_BATCH_WORKERS", 8)
"""Thread pool size for batch reconciliation."""

METRICS_HISTORY: int = _env_int("PULSE_METRICS_HISTORY", 1000)
"""Operation timings kept for performance statistics before the oldest are dropped."""

# ============================================================
# Analytics
# ============================================================

VELOCITY_WEEKS: int = _env_int("PULSE_VELOCITY_WEEKS", 4)
"""Assumed project duration in weeks when turning completion rate into velocity."""

BLOCKED_AFTER_DAYS: int = _env_int("PULSE_BLOCKED_AFTER_DAYS", 14)
STALE_AFTER_DAYS: int = _env_int("PULSE_STALE_AFTER_DAYS", 7)

MISSING_ACTIVITY_DAYS: int = _env_int("PULSE_MISSING_ACTIVITY_DAYS", 30)
"""Idle days assumed for a work item with no recorded activity."""

LOW_VELOCITY_THRESHOLD: int = 5
TREND_CHANGE_PERCENT: float = 10.0

# ============================================================
# Query / pagination
# ============================================================

DEFAULT_PAGE_LIMIT: int = _env_int("PULSE_DEFAULT_PAGE_LIMIT", 10)
MAX_PAGE_LIMIT: int = _env_int("PULSE_MAX_PAGE_LIMIT", 100)


@dataclass(frozen=True)
class EngineConfig:
    """Settings for one ProjectPulseEngine instance."""

    cache_max_size: int = CACHE_MAX_SIZE
    cache_default_ttl: float = CACHE_DEFAULT_TTL
    cache_sweep_interval: float = CACHE_SWEEP_INTERVAL
    baseline_ttl: float = BASELINE_TTL
    default_category: str = DEFAULT_CATEGORY
    activity_window_days: int = ACTIVITY_WINDOW_DAYS
    max_reports_per_project: int = MAX_REPORTS_PER_PROJECT
    batch_workers: int = BATCH_WORKERS
    metrics_history: int = METRICS_HISTORY
    velocity_weeks: int = VELOCITY_WEEKS
    blocked_after_days: int = BLOCKED_AFTER_DAYS
    stale_after_days: int = STALE_AFTER_DAYS
    missing_activity_days: int = MISSING_ACTIVITY_DAYS
    default_page_limit: int = DEFAULT_PAGE_LIMIT
    max_page_limit: int = MAX_PAGE_LIMIT

    def __post_init__(self) -> None:
        if self.cache_max_size < 1:
            raise ValueError("cache_max_size must be at least 1")
        if self.cache_default_ttl <= 0:
            raise ValueError("cache_default_ttl must be positive")
        if self.velocity_weeks < 1:
            raise ValueError("velocity_weeks must be at least 1")
        if self.stale_after_days > self.blocked_after_days:
            raise ValueError("stale_after_days must not exceed blocked_after_days")
        if not 1 <= self.default_page_limit <= self.max_page_limit:
            raise ValueError("default_page_limit must be within [1, max_page_limit]")
        if self.batch_workers < 1:
            raise ValueError("batch_workers must be at least 1")
        if self.metrics_history < 1:
            raise ValueError("metrics_history must be at least 1")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from the current PULSE_* environment variables."""
        return cls(
            cache_max_size=_env_int("PULSE_CACHE_MAX_SIZE", 1000),
            cache_default_ttl=_env_float("PULSE_CACHE_DEFAULT_TTL", 300.0),
            cache_sweep_interval=_env_float("PULSE_CACHE_SWEEP_INTERVAL", 60.0),
            baseline_ttl=_env_float("PULSE_BASELINE_TTL", 3600.0),
            default_category=os.environ.get("PULSE_DEFAULT_CATEGORY", "Miscellaneous / Standalone"),
            activity_window_days=_env_int("PULSE_ACTIVITY_WINDOW_DAYS", 90),
            max_reports_per_project=_env_int("PULSE_MAX_REPORTS_PER_PROJECT", 100),
            batch_workers=_env_int("PULSE_BATCH_WORKERS", 8),
            metrics_history=_env_int("PULSE_METRICS_HISTORY", 1000),
            velocity_weeks=_env_int("PULSE_VELOCITY_WEEKS", 4),
            blocked_after_days=_env_int("PULSE_BLOCKED_AFTER_DAYS", 14),
            stale_after_days=_env_int("PULSE_STALE_AFTER_DAYS", 7),
            missing_activity_days=_env_int("PULSE_MISSING_ACTIVITY_DAYS", 30),
            default_page_limit=_env_int("PULSE_DEFAULT_PAGE_LIMIT", 10),
            max_page_limit=_env_int("PULSE_MAX_PAGE_LIMIT", 100),
        )
