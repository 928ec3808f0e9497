"""
Project Pulse intelligence layer.

- health.py: weighted health score, status and risk factors
- analytics.py: completion, velocity, trend and blocked/stale detection

Usage:
    from projectpulse.intelligence import HealthScorer, AnalyticsEngine
    assessment = HealthScorer().score(record)
    analytics = AnalyticsEngine().analyze(record, work_items=lookup)
"""

from .analytics import (
    AnalyticsEngine,
    activity_status,
    aggregate_metrics,
    completion_velocity,
    incomplete_work_priority,
    percentage,
    round_half_up,
    velocity_trend,
)
from .health import HealthScorer, HealthThresholds, load_health_thresholds

__all__ = [
    "AnalyticsEngine",
    "HealthScorer",
    "HealthThresholds",
    "load_health_thresholds",
    "activity_status",
    "aggregate_metrics",
    "completion_velocity",
    "incomplete_work_priority",
    "percentage",
    "round_half_up",
    "velocity_trend",
]
