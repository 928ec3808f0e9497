"""
Health Scoring — Weighted 0-100 Health Indicator per Project.

Six sub-scores, each 0-100, combined with the weights from thresholds.yaml:
- activity recency (days since last activity)
- commit volume
- pull-request volume
- issue volume
- documentation (task list, scaled by whether a PRD exists)
- PRD status

The shipped weights sum to 0.90, so a perfect project scores 90. They are
kept that way on purpose; every stored score depends on them.
"""

import logging
import warnings
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from projectpulse import config
from projectpulse.normalize.domain_models import (
    CanonicalProjectRecord,
    DocumentStatus,
    HealthAssessment,
    HealthStatus,
    utc_now,
)

from .analytics import completion_velocity, days_since, round_half_up

logger = logging.getLogger(__name__)

THRESHOLDS_PATH = Path(__file__).parent / "thresholds.yaml"

FACTORS = ("activity", "commits", "prs", "issues", "documentation", "prd")


# =============================================================================
# THRESHOLD CONFIGURATION
# =============================================================================


def _doc_scores(present: int, outdated: int, missing: int) -> dict[DocumentStatus, int]:
    return {
        DocumentStatus.PRESENT: present,
        DocumentStatus.OUTDATED: outdated,
        DocumentStatus.MISSING: missing,
    }


@dataclass(frozen=True)
class HealthThresholds:
    """Weights, step tables and status cut-offs for health scoring."""

    weights: dict[str, float] = field(
        default_factory=lambda: {
            "activity": 0.25,
            "commits": 0.20,
            "prs": 0.15,
            "issues": 0.10,
            "documentation": 0.10,
            "prd": 0.10,
        }
    )
    activity_days: tuple[tuple[float, int], ...] = ((7, 100), (30, 75), (90, 50), (180, 25))
    commits: tuple[tuple[float, int], ...] = ((50, 100), (20, 80), (10, 60), (5, 40), (1, 20))
    prs: tuple[tuple[float, int], ...] = ((10, 100), (5, 75), (2, 50), (1, 25))
    issues: tuple[tuple[float, int], ...] = ((10, 100), (5, 75), (2, 50), (1, 25))
    documentation_with_prd: dict[DocumentStatus, int] = field(
        default_factory=lambda: _doc_scores(100, 60, 0)
    )
    documentation_without_prd: dict[DocumentStatus, int] = field(
        default_factory=lambda: _doc_scores(50, 25, 0)
    )
    prd: dict[DocumentStatus, int] = field(default_factory=lambda: _doc_scores(100, 60, 0))
    status: tuple[tuple[HealthStatus, int], ...] = (
        (HealthStatus.EXCELLENT, 80),
        (HealthStatus.GOOD, 60),
        (HealthStatus.FAIR, 40),
        (HealthStatus.POOR, 20),
    )
    inactive_after_days: int = 30
    low_score_below: int = 30

    @property
    def weight_sum(self) -> float:
        return round(sum(self.weights.values()), 6)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HealthThresholds":
        """
        Build from the parsed YAML document.

        Raises:
            KeyError, TypeError, ValueError: If the document is malformed
        """

        def steps(key: str) -> tuple[tuple[float, int], ...]:
            return tuple((float(limit), int(score)) for limit, score in data[key])

        def doc(table: Mapping[str, Any]) -> dict[DocumentStatus, int]:
            return {status: int(table[status.value]) for status in DocumentStatus}

        weights = {name: float(data["weights"][name]) for name in FACTORS}
        if any(w < 0 for w in weights.values()):
            raise ValueError("weights must be non-negative")

        status = tuple(
            sorted(
                ((HealthStatus(name), int(cutoff)) for name, cutoff in data["status"].items()),
                key=lambda pair: -pair[1],
            )
        )
        risk = data.get("risk", {})

        return cls(
            weights=weights,
            activity_days=steps("activity_days"),
            commits=steps("commits"),
            prs=steps("prs"),
            issues=steps("issues"),
            documentation_with_prd=doc(data["documentation"]["with_prd"]),
            documentation_without_prd=doc(data["documentation"]["without_prd"]),
            prd=doc(data["prd"]),
            status=status,
            inactive_after_days=int(risk.get("inactive_after_days", 30)),
            low_score_below=int(risk.get("low_score_below", 30)),
        )


def load_health_thresholds(path: str | Path | None = None) -> HealthThresholds:
    """
    Load health thresholds from YAML.

    Falls back to the built-in defaults, with a warning, when the file is
    missing or malformed.
    """
    path = Path(path) if path is not None else THRESHOLDS_PATH
    if not path.exists():
        warnings.warn(f"{path} not found, using default health thresholds", stacklevel=2)
        return HealthThresholds()

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return HealthThresholds.from_dict(data)
    except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as e:
        warnings.warn(f"Failed to load {path.name}: {e}", stacklevel=2)
        return HealthThresholds()


# =============================================================================
# SCORER
# =============================================================================


def _min_step(value: float, steps: tuple[tuple[float, int], ...]) -> int:
    for minimum, score in steps:
        if value >= minimum:
            return score
    return 0


def _max_step(value: float, steps: tuple[tuple[float, int], ...]) -> int:
    for maximum, score in steps:
        if value <= maximum:
            return score
    return 0


class HealthScorer:
    """Scores canonical records. Pure apart from the clock used for recency."""

    def __init__(
        self,
        thresholds: HealthThresholds | None = None,
        velocity_weeks: int = config.VELOCITY_WEEKS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.thresholds = thresholds or load_health_thresholds()
        self.velocity_weeks = velocity_weeks
        self._clock = clock
        logger.info("Health weights sum to %.2f", self.thresholds.weight_sum)

    def classify(self, score: int) -> HealthStatus:
        """Map numeric score to health status."""
        for status, cutoff in self.thresholds.status:
            if score >= cutoff:
                return status
        return HealthStatus.CRITICAL

    def factor_breakdown(
        self, record: CanonicalProjectRecord, now: datetime
    ) -> dict[str, int]:
        t = self.thresholds
        days = days_since(record.last_activity, now)
        has_prd = record.prd_status is not DocumentStatus.MISSING
        documentation = t.documentation_with_prd if has_prd else t.documentation_without_prd

        return {
            "activity": 0 if days is None else _max_step(days, t.activity_days),
            "commits": _min_step(record.total_commits, t.commits),
            "prs": _min_step(record.vcs_prs, t.prs),
            "issues": _min_step(record.vcs_issues, t.issues),
            "documentation": documentation[record.task_list_status],
            "prd": t.prd[record.prd_status],
        }

    def score(
        self, canonical: CanonicalProjectRecord, now: datetime | None = None
    ) -> HealthAssessment:
        now = now or self._clock()
        breakdown = self.factor_breakdown(canonical, now)
        weighted = sum(breakdown[name] * self.thresholds.weights[name] for name in FACTORS)
        score = min(100, max(0, round_half_up(weighted)))
        velocity = completion_velocity(canonical, self.velocity_weeks)

        return HealthAssessment(
            score=score,
            status=self.classify(score),
            risk_factors=self.risk_factors(canonical, score, velocity, now),
            factor_breakdown=breakdown,
            prd_status=canonical.prd_status,
            task_list_status=canonical.task_list_status,
            completion_velocity=velocity,
            last_activity=canonical.last_activity,
        )

    def risk_factors(
        self, record: CanonicalProjectRecord, score: int, velocity: int, now: datetime
    ) -> list[str]:
        risks = []

        days = days_since(record.last_activity, now)
        if days is None or days > self.thresholds.inactive_after_days:
            risks.append("No recent activity")

        if record.prd_status is DocumentStatus.MISSING:
            risks.append("Missing PRD")
        elif record.prd_status is DocumentStatus.OUTDATED:
            risks.append("Outdated PRD")

        if record.task_list_status is DocumentStatus.MISSING:
            risks.append("Missing task list")
        elif record.task_list_status is DocumentStatus.OUTDATED:
            risks.append("Outdated task list")

        if velocity == 0:
            risks.append("No completion velocity")

        if score < self.thresholds.low_score_below:
            risks.append("Low health score")

        return risks
