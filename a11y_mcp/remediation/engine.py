"""Remediation engine that runs the full issue-to-patch pipeline."""

import logging
from typing import Optional

from .config import RemediationConfig
from .conflicts import ConflictResolver
from .dependencies import DependencyResolver
from .models import RemediationRequest, RemediationResult
from .preparer import IssuePreparer
from .rate_limit import RateLimiter
from .scheduler import CancellationToken, JobScheduler, ProgressCallback
from .statistics import StatisticsTracker, build_summary
from .validator import PatchValidator
from .worker import CompletionWorker, LLMCompletionWorker

logger = logging.getLogger(__name__)


class RemediationEngine:
    """Turns detected issues into a validated, conflict-free patch set.

    Pipeline: prepare jobs, order by dependency, execute on the worker pool,
    resolve same-line conflicts, validate against the original source.
    """

    def __init__(
        self,
        workers: Optional[list[CompletionWorker]] = None,
        config: Optional[RemediationConfig] = None,
    ):
        """Initialize the engine.

        Args:
            workers: Completion workers; defaults to an LLM worker pool sized
                from the config
            config: Engine configuration (defaults if omitted)
        """
        self.config = config or RemediationConfig()
        if workers is None:
            count = self.config.worker_count or self.config.concurrency_limit
            workers = [
                LLMCompletionWorker(
                    worker_id=f"worker-{i}",
                    model=self.config.llm.model,
                    timeout=self.config.llm.timeout,
                )
                for i in range(count)
            ]
        self.workers = workers
        self.rate_limiter = RateLimiter(
            max_calls=self.config.rate_limit_calls,
            window=self.config.rate_limit_window,
        )
        self.preparer = IssuePreparer()
        self.validator = PatchValidator()
        logger.info(f"Initialized remediation engine with {len(self.workers)} workers")

    def _make_scheduler(self) -> JobScheduler:
        return JobScheduler(
            self.workers,
            rate_limiter=self.rate_limiter,
            backoff_base=self.config.backoff_base,
            backoff_cap=self.config.backoff_cap,
            poll_interval=self.config.dependency_poll_interval,
            poll_limit=self.config.dependency_poll_limit,
            drain_on_cancel=self.config.drain_on_cancel,
        )

    async def remediate(
        self,
        request: RemediationRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RemediationResult:
        """Run one remediation batch.

        Args:
            request: Issues, source text and options
            on_progress: Called after every job completion
            cancel_token: Stops new dispatches when cancelled

        Returns:
            RemediationResult; per-job failures are reported inside it

        Raises:
            InvalidInput: If the issue list or options are invalid
        """
        options = request.options

        # Both raise InvalidInput before any work starts
        conflict_resolver = ConflictResolver(options.conflict_strategy)
        jobs = self.preparer.prepare(
            request.issues,
            prioritize=options.prioritize,
            group_by_type=options.group_by_type,
            source_text=request.source_text,
            max_attempts=options.max_attempts,
        )

        logger.info(f"Starting remediation for {len(request.issues)} issues in {len(jobs)} jobs")

        tracker = StatisticsTracker()
        tracker.start(total_jobs=len(jobs))

        ordered = DependencyResolver().order(jobs)

        results = await self._make_scheduler().execute(
            ordered,
            concurrency_limit=options.concurrency_limit,
            per_job_timeout=options.per_job_timeout,
            max_attempts=options.max_attempts,
            on_progress=on_progress,
            cancel_token=cancel_token,
        )
        tracker.record(results)

        patches, conflicts = conflict_resolver.resolve(results, request.source_text)

        validation_errors: list[str] = []
        patched_source = None
        if options.include_validation:
            report = self.validator.validate(patches, request.source_text)
            patches = report.patches
            validation_errors = report.error_messages
            patched_source = report.patched_source

        statistics = tracker.finish()
        summary = build_summary(patches, tracker.total_processing_ms)

        logger.info(
            f"Remediation finished: {statistics.completed} jobs succeeded, {statistics.failed} failed, "
            f"{len(conflicts)} conflicts, {summary['total_processing_time_ms']}ms"
        )

        return RemediationResult(
            patches=patches,
            conflicts=conflicts,
            statistics=statistics,
            summary=summary,
            validation_errors=validation_errors,
            patched_source=patched_source,
            job_results=results,
        )
