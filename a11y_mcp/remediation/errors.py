"""Error taxonomy for the remediation engine."""

from typing import Optional


class RemediationError(Exception):
    """Base class for remediation errors."""
    pass


class InvalidInput(RemediationError):
    """Raised when the issue list or a record is empty or malformed.

    This is the only error that aborts a whole run.
    """
    pass


class WorkerError(RemediationError):
    """Raised by a completion worker when a job cannot be completed.

    Attributes:
        transient: True for network/timeout/rate-limit failures that may be
            retried, False for malformed responses that never will succeed
    """

    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.transient = transient


class ValidationError(RemediationError):
    """A line-range or structural mismatch found while validating patches.

    Recorded per patch (``line_number`` set) or per document, never raised
    out of the engine.
    """

    def __init__(self, message: str, line_number: Optional[int] = None):
        super().__init__(message)
        self.line_number = line_number


class DependencyUnmet(RemediationError):
    """A job's prerequisite groups never succeeded."""

    def __init__(self, message: str, missing: Optional[list[str]] = None):
        super().__init__(message)
        self.missing = missing or []
