"""
Error taxonomy for Project Pulse.

- ValidationError: a malformed field found after merging. Recovered by
  defaulting; the reconciler logs it and never lets it escape.
- ReconciliationError: unexpected failure reconciling one project. Batch
  operations catch it at the project boundary and skip that project.
- SourceUnavailable: a collaborator could not supply a snapshot. Treated
  as a missing (None) snapshot, never escalated.
- ProjectNotFound: a query named a project that was never reconciled.
- InconsistencyWarning: diagnostic category only. Cross-source divergence
  is recorded, never raised.
"""


class PulseError(Exception):
    """Base class for all Project Pulse errors."""

    pass


class ValidationError(PulseError):
    """Raised when a merged field cannot be interpreted."""

    def __init__(self, field: str, value: object, reason: str):
        super().__init__(f"Invalid value for {field}: {value!r} ({reason})")
        self.field = field
        self.value = value
        self.reason = reason


class ReconciliationError(PulseError):
    """Raised when merging one project's snapshots fails unexpectedly."""

    def __init__(self, project_name: str, cause: BaseException):
        super().__init__(f"Data reconciliation failed for {project_name}: {cause}")
        self.project_name = project_name
        self.cause = cause


class SourceUnavailable(PulseError):
    """Raised by a source provider that cannot supply a snapshot."""

    def __init__(self, source: str, project_name: str, reason: str = ""):
        message = f"{source} snapshot unavailable for {project_name}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.source = source
        self.project_name = project_name
        self.reason = reason


class InconsistencyWarning(UserWarning):
    """Category for cross-source divergence. Recorded, never raised."""

    pass


class ProjectNotFound(PulseError, KeyError):
    """Raised when a query names a project the engine has never reconciled."""

    def __init__(self, project_name: str):
        super().__init__(f"Unknown project: {project_name}")
        self.project_name = project_name

    def __str__(self) -> str:
        return f"Unknown project: {self.project_name}"
