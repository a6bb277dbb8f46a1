"""Remediation orchestration: turns accessibility issues into validated patches."""

from .errors import RemediationError, InvalidInput, WorkerError, ValidationError, DependencyUnmet
from .models import (
    Issue,
    Job,
    Patch,
    PatchCandidate,
    Conflict,
    JobContext,
    JobResult,
    Progress,
    Statistics,
    RemediationOptions,
    RemediationRequest,
    RemediationResult,
)
from .parser import IssueParser
from .preparer import IssuePreparer
from .dependencies import DependencyResolver
from .scheduler import JobScheduler, CancellationToken
from .conflicts import ConflictResolver
from .validator import PatchValidator
from .engine import RemediationEngine
from .config import RemediationConfig, load_config
from .worker import CompletionWorker, LLMCompletionWorker

__all__ = [
    "RemediationError",
    "InvalidInput",
    "WorkerError",
    "ValidationError",
    "DependencyUnmet",
    "Issue",
    "Job",
    "Patch",
    "PatchCandidate",
    "Conflict",
    "JobContext",
    "JobResult",
    "Progress",
    "Statistics",
    "RemediationOptions",
    "RemediationRequest",
    "RemediationResult",
    "IssueParser",
    "IssuePreparer",
    "DependencyResolver",
    "JobScheduler",
    "CancellationToken",
    "ConflictResolver",
    "PatchValidator",
    "RemediationEngine",
    "RemediationConfig",
    "load_config",
    "CompletionWorker",
    "LLMCompletionWorker",
]
