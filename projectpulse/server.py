"""
Run the Project Pulse API from snapshot files.

Usage:
    python -m projectpulse.server --sources data/sources.json --commit-log data/commit-log.json

Environment:
    PORT            listen port (default 8420)
    PULSE_LOG_LEVEL log level (default INFO)
    PULSE_*         engine settings, see projectpulse.config
"""

import argparse
import logging
import os
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from projectpulse.api.router import create_app
from projectpulse.config import EngineConfig
from projectpulse.engine import ProjectPulseEngine
from projectpulse.normalize import ActivityLog
from projectpulse.observability import configure_logging
from projectpulse.sources import InMemorySourceProvider

logger = logging.getLogger(__name__)


def build_app(sources_path: str | Path, commit_log_path: str | Path | None = None) -> FastAPI:
    """Load snapshots, reconcile every project once, and wrap the engine in an app."""
    provider = InMemorySourceProvider.from_file(sources_path)
    activity_log = ActivityLog.from_file(commit_log_path) if commit_log_path else None
    engine = ProjectPulseEngine(
        config=EngineConfig.from_env(), provider=provider, activity_log=activity_log
    )
    batch = engine.refresh()
    logger.info(
        "Loaded %d projects from %s (%d omitted)", batch.succeeded, sources_path, batch.omitted
    )
    return create_app(engine)


def main():
    """Run the server."""
    parser = argparse.ArgumentParser(description="Serve Project Pulse over HTTP")
    parser.add_argument("--sources", required=True, help="JSON file of source snapshots")
    parser.add_argument("--commit-log", help="JSON commit-activity log")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", 8420)))
    args = parser.parse_args()

    configure_logging(os.environ.get("PULSE_LOG_LEVEL", "INFO"))
    uvicorn.run(build_app(args.sources, args.commit_log), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
