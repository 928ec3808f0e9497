"""
Batch run IDs carried through context variables.

reconcile_batch opens a RunContext and submits each project in a copy of
the current context, so worker threads inherit the batch's run ID and the
log formatters can stamp it on every line. HTTP requests get one too, from
the X-Run-ID header or freshly generated, via RunIdMiddleware.
"""

import contextvars
import uuid
from typing import Optional

RUN_ID_PREFIX = "run-"

_run_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "projectpulse_run_id", default=None
)


def get_run_id() -> Optional[str]:
    """Run ID of the batch or request being processed, if any."""
    return _run_id_var.get()


def set_run_id(run_id: str) -> contextvars.Token:
    return _run_id_var.set(run_id)


def generate_run_id() -> str:
    """Short random ID, e.g. run-3f9c0a1b2d4e5f60."""
    return f"{RUN_ID_PREFIX}{uuid.uuid4().hex[:16]}"


class RunContext:
    """
    Scope one batch (or request) to a run ID, restoring the outer one on exit.

    Nesting is allowed; the inner ID wins until its block ends.

        with RunContext() as ctx:
            result = BatchResult(run_id=ctx.run_id, ...)
    """

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id or generate_run_id()
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> "RunContext":
        self._token = set_run_id(self.run_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        token, self._token = self._token, None
        if token is not None:
            _run_id_var.reset(token)
