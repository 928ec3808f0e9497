"""
Observability module: structured logging, run IDs and operation timings.

Usage:
    from projectpulse.observability import get_logger, RunContext

    logger = get_logger(__name__)

    with RunContext() as ctx:
        logger.info("Batch started", extra={"projects": 12})
"""

from .context import RunContext, generate_run_id, get_run_id, set_run_id
from .logging import HumanFormatter, JSONFormatter, RunIdMiddleware, configure_logging, get_logger
from .metrics import OperationMetric, PerformanceMetrics, timed

__all__ = [
    # Logging
    "get_logger",
    "configure_logging",
    "JSONFormatter",
    "HumanFormatter",
    "RunIdMiddleware",
    # Context
    "RunContext",
    "get_run_id",
    "set_run_id",
    "generate_run_id",
    # Metrics
    "PerformanceMetrics",
    "OperationMetric",
    "timed",
]
