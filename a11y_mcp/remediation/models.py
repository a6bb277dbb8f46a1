"""Data models for the remediation engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .errors import InvalidInput, WorkerError


SEVERITY_CLASSES = ("error", "warning", "info", "success")

PATCH_STATUSES = ("success", "warning", "merged", "needs_review", "failed")

# Allowed job transitions; terminal states have no outgoing edges.
JOB_TRANSITIONS = {
    "pending": {"processing", "failed"},
    "processing": {"success", "retrying", "failed"},
    "retrying": {"processing", "failed"},
    "success": set(),
    "failed": set(),
}

DEFAULT_CONFIDENCE = 0.8
DEFAULT_EXPLANATION = "Accessibility improvement"


@dataclass(frozen=True)
class Issue:
    """A single accessibility defect reported by the detector.

    Attributes:
        id: Unique issue identifier
        criterion_key: Success criterion the issue violates (e.g. '1.1.1')
        severity_class: One of 'error', 'warning', 'info', 'success'
        location: CSS selector of the offending element, if known
        description: Human readable description
        suggested_fix_text: Fix suggestion from the detector
        affected_element_count: Number of elements affected
        title: Short title, used as a grouping fallback
        issue_type: Detector issue type, used as a grouping fallback
    """
    id: str
    criterion_key: Optional[str]
    severity_class: str
    location: Optional[str] = None
    description: str = ""
    suggested_fix_text: str = ""
    affected_element_count: int = 0
    title: Optional[str] = None
    issue_type: Optional[str] = None

    def __post_init__(self):
        if not self.id or not isinstance(self.id, str):
            raise InvalidInput("Issue requires a non-empty string id")
        if self.severity_class not in SEVERITY_CLASSES:
            raise InvalidInput(
                f"Issue {self.id}: severity_class must be one of {SEVERITY_CLASSES}, "
                f"got {self.severity_class!r}"
            )
        if not isinstance(self.affected_element_count, int) or self.affected_element_count < 0:
            raise InvalidInput(f"Issue {self.id}: affected_element_count must be a non-negative int")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "criterion_key": self.criterion_key,
            "severity_class": self.severity_class,
            "location": self.location,
            "description": self.description,
            "suggested_fix_text": self.suggested_fix_text,
            "affected_element_count": self.affected_element_count,
            "title": self.title,
            "issue_type": self.issue_type,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Issue":
        if "id" not in d or "severity_class" not in d:
            raise InvalidInput("Issue record requires 'id' and 'severity_class'")
        return cls(
            id=d["id"],
            criterion_key=d.get("criterion_key"),
            severity_class=d["severity_class"],
            location=d.get("location"),
            description=d.get("description") or "",
            suggested_fix_text=d.get("suggested_fix_text") or "",
            affected_element_count=d.get("affected_element_count", 0),
            title=d.get("title"),
            issue_type=d.get("issue_type"),
        )


@dataclass
class Job:
    """A unit of scheduled work covering one or more related issues.

    Only the scheduler changes ``status`` and ``attempts``, always through
    ``transition()``.
    """
    id: str
    group_key: str
    issues: list[Issue]
    priority: int = 1
    complexity: int = 1
    dependencies: list[str] = field(default_factory=list)
    status: str = "pending"
    attempts: int = 0
    max_attempts: int = 3
    source_snapshot: str = ""

    def __post_init__(self):
        if not self.issues:
            raise InvalidInput(f"Job {self.id} has no issues")
        if self.max_attempts < 1:
            raise InvalidInput(f"Job {self.id}: max_attempts must be at least 1")

    @property
    def is_terminal(self) -> bool:
        return self.status in ("success", "failed")

    @property
    def can_retry(self) -> bool:
        return self.attempts < self.max_attempts

    def transition(self, new_status: str) -> None:
        """Move to ``new_status``, enforcing the job state machine."""
        if new_status not in JOB_TRANSITIONS.get(self.status, set()):
            raise RuntimeError(f"Job {self.id}: illegal transition {self.status} -> {new_status}")
        if new_status == "processing":
            if self.attempts >= self.max_attempts:
                raise RuntimeError(f"Job {self.id}: no attempts left")
            self.attempts += 1
        self.status = new_status


@dataclass
class PatchCandidate:
    """A line-level change proposed by a completion worker."""
    line_number: int
    before_text: str
    after_text: str
    confidence: Optional[float] = None
    explanation: Optional[str] = None
    criterion_key: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.line_number, bool) or not isinstance(self.line_number, int) or self.line_number < 1:
            raise WorkerError("lineNumber must be a positive integer", transient=False)
        if not isinstance(self.before_text, str) or not isinstance(self.after_text, str):
            raise WorkerError("beforeCode and afterCode must be strings", transient=False)
        if self.confidence is not None:
            if isinstance(self.confidence, bool) or not isinstance(self.confidence, (int, float)) \
                    or not 0 <= self.confidence <= 1:
                raise WorkerError("confidence must be a number between 0 and 1", transient=False)

    @classmethod
    def from_dict(cls, d: dict) -> "PatchCandidate":
        """Build from a worker response entry (camelCase or snake_case keys)."""
        if not isinstance(d, dict):
            raise WorkerError("Each change must be a JSON object", transient=False)

        def pick(*keys):
            for key in keys:
                if key in d:
                    return d[key]
            raise WorkerError(f"Missing required field: {keys[0]}", transient=False)

        def pick_optional(*keys):
            for key in keys:
                if key in d:
                    return d[key]
            return None

        return cls(
            line_number=pick("lineNumber", "line_number"),
            before_text=pick("beforeCode", "before_text"),
            after_text=pick("afterCode", "after_text"),
            confidence=pick_optional("confidence"),
            explanation=pick_optional("explanation"),
            criterion_key=pick_optional("wcagCriterion", "criterion_key"),
        )


@dataclass
class Patch:
    """A proposed line-level source change attached to a job.

    Attributes:
        job_id: Job that produced the patch
        group_key: Group key of that job
        line_number: 1-based target line; None for failed placeholders
        before_text: Line content the worker saw
        after_text: Replacement line
        confidence: Worker confidence in [0, 1]
        explanation: Why the change helps
        criterion_key: Criterion the change addresses
        status: 'success', 'warning', 'merged', 'needs_review' or 'failed'
        validated: None until validated, then True/False
        observed_line: Actual source line when before_text was stale
        error: Failure reason for failed patches
        merged_from: Criteria folded into a merged patch
        candidates: Competing patches carried by a needs_review entry
    """
    job_id: str
    group_key: str
    line_number: Optional[int]
    before_text: str = ""
    after_text: str = ""
    confidence: float = DEFAULT_CONFIDENCE
    explanation: str = DEFAULT_EXPLANATION
    criterion_key: Optional[str] = None
    status: str = "success"
    validated: Optional[bool] = None
    observed_line: Optional[str] = None
    error: Optional[str] = None
    merged_from: list[str] = field(default_factory=list)
    candidates: list["Patch"] = field(default_factory=list)
    issue_id: Optional[str] = None

    def __post_init__(self):
        if self.status not in PATCH_STATUSES:
            raise InvalidInput(f"Unknown patch status: {self.status}")

    @property
    def is_applicable(self) -> bool:
        """True for patches that may be written back to the source."""
        return self.status in ("success", "merged")

    @classmethod
    def from_candidate(cls, candidate: PatchCandidate, job: Job) -> "Patch":
        return cls(
            job_id=job.id,
            group_key=job.group_key,
            line_number=candidate.line_number,
            before_text=candidate.before_text,
            after_text=candidate.after_text,
            confidence=DEFAULT_CONFIDENCE if candidate.confidence is None else float(candidate.confidence),
            explanation=candidate.explanation or DEFAULT_EXPLANATION,
            criterion_key=candidate.criterion_key or job.group_key,
        )

    @classmethod
    def failed_placeholder(cls, job: Job, issue: Issue, error: str) -> "Patch":
        return cls(
            job_id=job.id,
            group_key=job.group_key,
            line_number=None,
            confidence=0.0,
            explanation="",
            criterion_key=issue.criterion_key or job.group_key,
            status="failed",
            error=error,
            issue_id=issue.id,
        )

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "group_key": self.group_key,
            "line_number": self.line_number,
            "before_text": self.before_text,
            "after_text": self.after_text,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "criterion_key": self.criterion_key,
            "status": self.status,
            "validated": self.validated,
            "observed_line": self.observed_line,
            "error": self.error,
            "merged_from": self.merged_from,
            "candidates": [c.to_dict() for c in self.candidates],
            "issue_id": self.issue_id,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Patch":
        return cls(
            job_id=d["job_id"],
            group_key=d["group_key"],
            line_number=d.get("line_number"),
            before_text=d.get("before_text", ""),
            after_text=d.get("after_text", ""),
            confidence=d.get("confidence", DEFAULT_CONFIDENCE),
            explanation=d.get("explanation", DEFAULT_EXPLANATION),
            criterion_key=d.get("criterion_key"),
            status=d.get("status", "success"),
            validated=d.get("validated"),
            observed_line=d.get("observed_line"),
            error=d.get("error"),
            merged_from=d.get("merged_from", []),
            candidates=[cls.from_dict(c) for c in d.get("candidates", [])],
            issue_id=d.get("issue_id"),
        )


@dataclass
class Conflict:
    """Two or more patches targeting the same source line."""
    line_number: int
    candidate_patches: list[Patch]
    original_line: Optional[str]

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "candidate_patches": [p.to_dict() for p in self.candidate_patches],
            "original_line": self.original_line,
        }


@dataclass
class JobContext:
    """What a completion worker receives for one job."""
    group_key: str
    issues: list[Issue]
    relevant_source_excerpt: str
    instructions: dict


@dataclass
class JobResult:
    """Outcome of a job once it reached a terminal state."""
    job_id: str
    group_key: str
    status: str  # 'success' or 'failed'
    patches: list[Patch] = field(default_factory=list)
    attempts: int = 0
    error: Optional[str] = None
    processing_ms: float = 0.0
    worker_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "group_key": self.group_key,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "processing_ms": round(self.processing_ms, 2),
            "worker_id": self.worker_id,
            "patch_count": len(self.patches),
        }


@dataclass
class Progress:
    """Snapshot emitted after every job completion."""
    completed_count: int
    total_jobs: int
    percentage: int
    in_flight_count: int
    queued_count: int


@dataclass
class Statistics:
    """Run-level counters and timings."""
    total_jobs: int = 0
    completed: int = 0
    failed: int = 0
    average_processing_time_ms: float = 0.0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "total_jobs": self.total_jobs,
            "completed": self.completed,
            "failed": self.failed,
            "average_processing_time_ms": round(self.average_processing_time_ms, 2),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


@dataclass
class RemediationOptions:
    """Caller-tunable knobs for one run."""
    concurrency_limit: int = 3
    per_job_timeout: float = 60.0
    max_attempts: int = 3
    group_by_type: bool = True
    prioritize: bool = True
    conflict_strategy: str = "merge"
    include_validation: bool = True

    def __post_init__(self):
        if self.concurrency_limit < 1:
            raise InvalidInput("concurrency_limit must be at least 1")
        if self.per_job_timeout <= 0:
            raise InvalidInput("per_job_timeout must be positive")
        if self.max_attempts < 1:
            raise InvalidInput("max_attempts must be at least 1")


@dataclass
class RemediationRequest:
    """Input of a remediation run."""
    issues: list[Issue]
    source_text: str
    options: RemediationOptions = field(default_factory=RemediationOptions)


@dataclass
class RemediationResult:
    """Final output of a remediation run, owned by the caller."""
    patches: list[Patch]
    conflicts: list[Conflict]
    statistics: Statistics
    summary: dict
    validation_errors: list[str] = field(default_factory=list)
    patched_source: Optional[str] = None
    job_results: list[JobResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "patches": [p.to_dict() for p in self.patches],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "statistics": self.statistics.to_dict(),
            "summary": self.summary,
            "validation_errors": self.validation_errors,
            "patched_source": self.patched_source,
            "job_results": [r.to_dict() for r in self.job_results],
        }
