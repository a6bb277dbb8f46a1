"""Bounded-concurrency job scheduler with retries and dependency gating.

A single coordinator coroutine owns the ready queue and the results. Each
dispatched job runs as an asyncio task that never raises; it returns an
outcome which the coordinator consumes with ``asyncio.wait`` in
first-completed order.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from .dependencies import prerequisite_jobs
from .errors import DependencyUnmet, WorkerError
from .models import Job, JobContext, JobResult, Patch, PatchCandidate, Progress
from .rate_limit import RateLimiter
from .worker import CompletionWorker, build_job_context

logger = logging.getLogger(__name__)


ProgressCallback = Callable[[Progress], None]


class CancellationToken:
    """Cooperative cancellation signal.

    The coordinator checks it before every dispatch and also waits on it,
    so a cancel interrupts a wait on in-flight calls.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class _Outcome:
    job: Job
    worker_id: str
    candidates: Optional[list] = None
    error: Optional[Exception] = None
    processing_ms: float = 0.0


@dataclass
class _RunState:
    """Coordinator-owned bookkeeping for one execute() call."""
    queue: deque
    prerequisites: dict[str, list[str]]
    jobs_by_id: dict[str, Job]
    total: int
    in_flight: dict = field(default_factory=dict)
    results: dict[str, JobResult] = field(default_factory=dict)
    ready_at: dict[str, float] = field(default_factory=dict)
    polls: dict[str, int] = field(default_factory=dict)
    elapsed_ms: dict[str, float] = field(default_factory=dict)
    last_worker: dict[str, str] = field(default_factory=dict)


class JobScheduler:
    """Dispatches jobs to completion workers.

    Guarantees:
        - at most ``concurrency_limit`` worker calls are outstanding
        - a job is dispatched only after every prerequisite job succeeded
        - one job's failure never aborts its siblings
        - workers are assigned round-robin, so runs are reproducible
    """

    def __init__(
        self,
        workers: list[CompletionWorker],
        rate_limiter: Optional[RateLimiter] = None,
        backoff_base: float = 1.0,
        backoff_cap: float = 30.0,
        poll_interval: float = 0.1,
        poll_limit: int = 3000,
        drain_on_cancel: bool = True,
        context_builder: Callable[[Job], JobContext] = build_job_context,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not workers:
            raise ValueError("JobScheduler needs at least one worker")
        self.workers = list(workers)
        self.rate_limiter = rate_limiter or RateLimiter(clock=clock)
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.poll_interval = poll_interval
        self.poll_limit = poll_limit
        self.drain_on_cancel = drain_on_cancel
        self.context_builder = context_builder
        self._clock = clock
        self._next_worker = 0

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff in seconds after ``attempt`` failed."""
        return min(self.backoff_base * (2 ** attempt), self.backoff_cap)

    def _assign_worker(self) -> CompletionWorker:
        worker = self.workers[self._next_worker % len(self.workers)]
        self._next_worker += 1
        return worker

    async def execute(
        self,
        ordered_jobs: list[Job],
        concurrency_limit: int = 3,
        per_job_timeout: float = 60.0,
        max_attempts: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[JobResult]:
        """Run all jobs to a terminal state.

        Args:
            ordered_jobs: Jobs in dependency order (see DependencyResolver)
            concurrency_limit: Maximum concurrent worker calls
            per_job_timeout: Seconds allowed per worker call
            max_attempts: Overrides each job's max_attempts when given
            on_progress: Called after every completion
            cancel_token: Stops new dispatches once cancelled

        Returns:
            One JobResult per job, in completion order
        """
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        if max_attempts is not None:
            for job in ordered_jobs:
                job.max_attempts = max_attempts

        # Jobs already past pending were handed off elsewhere; they only gate dependents
        runnable = [job for job in ordered_jobs if job.status in ("pending", "retrying")]
        state = _RunState(
            queue=deque(runnable),
            prerequisites=prerequisite_jobs(ordered_jobs),
            jobs_by_id={job.id: job for job in ordered_jobs},
            total=len(runnable),
        )

        logger.info(f"Executing {state.total} jobs (concurrency={concurrency_limit})")

        cancel_waiter = asyncio.ensure_future(cancel_token.wait()) if cancel_token is not None else None
        try:
            while state.queue or state.in_flight:
                if cancel_token is not None and cancel_token.cancelled:
                    await self._handle_cancel(state, on_progress)
                    break

                wait_hint = self._dispatch_ready(state, concurrency_limit, per_job_timeout, on_progress)
                if not (state.queue or state.in_flight):
                    break

                waitables = set(state.in_flight)
                if cancel_waiter is not None:
                    waitables.add(cancel_waiter)
                if not waitables:
                    await asyncio.sleep(wait_hint)
                    continue

                timeout = wait_hint if state.queue else None
                done, _ = await asyncio.wait(waitables, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is cancel_waiter:
                        continue
                    state.in_flight.pop(task)
                    self._handle_outcome(state, task.result(), on_progress, retry_allowed=True)
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        return list(state.results.values())

    def _dispatch_ready(
        self,
        state: _RunState,
        concurrency_limit: int,
        per_job_timeout: float,
        on_progress: Optional[ProgressCallback],
    ) -> float:
        """One polling cycle: fail blocked jobs, dispatch ready ones.

        Returns how long the coordinator may wait before the next cycle.
        """
        now = self._clock()
        wait_hint = self.poll_interval
        dispatchable = []
        active = {job.id for job in state.queue} | {job.id for job in state.in_flight.values()}

        for job in list(state.queue):
            not_before = state.ready_at.get(job.id, 0.0)
            if not_before > now:
                wait_hint = min(wait_hint, not_before - now)
                continue

            prerequisites = [state.jobs_by_id[i] for i in state.prerequisites.get(job.id, [])]
            failed = [p for p in prerequisites if p.status == "failed"]
            pending = [p for p in prerequisites if p.status != "success"]

            if failed:
                error = DependencyUnmet(
                    f"Prerequisite groups failed: {sorted({p.group_key for p in failed})}",
                    missing=[p.group_key for p in failed],
                )
                state.queue.remove(job)
                self._fail_job(state, job, error, on_progress)
            elif pending:
                if any(p.id in active for p in pending):
                    # A prerequisite is still queued or running here, so it will settle
                    state.polls.pop(job.id, None)
                    continue
                state.polls[job.id] = state.polls.get(job.id, 0) + 1
                if state.polls[job.id] > self.poll_limit:
                    error = DependencyUnmet(
                        f"Prerequisites still unmet after {self.poll_limit} polls",
                        missing=[p.group_key for p in pending],
                    )
                    state.queue.remove(job)
                    self._fail_job(state, job, error, on_progress)
            else:
                dispatchable.append(job)

        for job in dispatchable:
            if len(state.in_flight) >= concurrency_limit:
                break
            if not self.rate_limiter.try_acquire():
                delay = self.rate_limiter.time_until_available()
                logger.warning(f"Rate limit reached; waiting {delay:.2f}s before dispatching {job.id}")
                wait_hint = min(wait_hint, delay) if delay > 0 else wait_hint
                break

            state.queue.remove(job)
            job.transition("processing")
            worker = self._assign_worker()
            state.last_worker[job.id] = worker.worker_id
            task = asyncio.create_task(self._run_job(job, worker, per_job_timeout))
            state.in_flight[task] = job
            logger.debug(f"Dispatched {job.id} ({job.group_key}) to {worker.worker_id}, attempt {job.attempts}")

        return max(wait_hint, 0.0)

    async def _run_job(self, job: Job, worker: CompletionWorker, timeout: float) -> _Outcome:
        """Call the worker under a timeout. Never raises."""
        start = time.perf_counter()
        outcome = _Outcome(job=job, worker_id=worker.worker_id)
        try:
            context = self.context_builder(job)
            outcome.candidates = await asyncio.wait_for(worker.complete(context), timeout)
        except asyncio.TimeoutError:
            outcome.error = WorkerError(f"Job timed out after {timeout}s", transient=True)
        except WorkerError as e:
            outcome.error = e
        except Exception as e:
            # Contract violation by the worker; treat like a transport failure
            outcome.error = WorkerError(f"Worker {worker.worker_id} failed: {e}", transient=True)
        outcome.processing_ms = (time.perf_counter() - start) * 1000
        return outcome

    def _handle_outcome(
        self,
        state: _RunState,
        outcome: _Outcome,
        on_progress: Optional[ProgressCallback],
        retry_allowed: bool,
    ) -> None:
        job = outcome.job
        state.elapsed_ms[job.id] = state.elapsed_ms.get(job.id, 0.0) + outcome.processing_ms

        error = outcome.error
        if error is None:
            candidates = outcome.candidates
            if not isinstance(candidates, list) or not all(isinstance(c, PatchCandidate) for c in candidates):
                error = WorkerError("Worker returned a malformed candidate list", transient=False)

        if error is None:
            job.transition("success")
            state.results[job.id] = JobResult(
                job_id=job.id,
                group_key=job.group_key,
                status="success",
                patches=[Patch.from_candidate(c, job) for c in outcome.candidates],
                attempts=job.attempts,
                processing_ms=state.elapsed_ms[job.id],
                worker_id=outcome.worker_id,
            )
            logger.debug(f"Job {job.id} succeeded with {len(outcome.candidates)} patches")
            self._emit(state, on_progress)
            return

        transient = getattr(error, "transient", True)
        if retry_allowed and transient and job.can_retry:
            job.transition("retrying")
            state.ready_at[job.id] = self._clock() + self.backoff_delay(job.attempts)
            state.queue.appendleft(job)
            logger.warning(f"Retrying job {job.id} (attempt {job.attempts}/{job.max_attempts}): {error}")
            self._emit(state, on_progress)
            return

        self._fail_job(state, job, error, on_progress)

    def _fail_job(
        self,
        state: _RunState,
        job: Job,
        error: Exception,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        job.transition("failed")
        message = str(error)
        logger.error(f"Job {job.id} ({job.group_key}) failed after {job.attempts} attempts: {message}")
        state.results[job.id] = JobResult(
            job_id=job.id,
            group_key=job.group_key,
            status="failed",
            patches=[Patch.failed_placeholder(job, issue, message) for issue in job.issues],
            attempts=job.attempts,
            error=message,
            processing_ms=state.elapsed_ms.get(job.id, 0.0),
            worker_id=state.last_worker.get(job.id),
        )
        self._emit(state, on_progress)

    async def _handle_cancel(self, state: _RunState, on_progress: Optional[ProgressCallback]) -> None:
        logger.warning(f"Cancellation requested; {len(state.queue)} queued jobs will not run")

        while state.queue:
            self._fail_job(state, state.queue.popleft(), RuntimeError("cancelled"), on_progress)

        if not state.in_flight:
            return

        if self.drain_on_cancel:
            while state.in_flight:
                done, _ = await asyncio.wait(state.in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    state.in_flight.pop(task)
                    self._handle_outcome(state, task.result(), on_progress, retry_allowed=False)
            return

        tasks = list(state.in_flight.items())
        state.in_flight.clear()
        for task, _ in tasks:
            task.cancel()
        await asyncio.gather(*(task for task, _ in tasks), return_exceptions=True)
        for _, job in tasks:
            self._fail_job(state, job, RuntimeError("cancelled"), on_progress)

    def _emit(self, state: _RunState, on_progress: Optional[ProgressCallback]) -> None:
        if on_progress is None:
            return
        completed = len(state.results)
        progress = Progress(
            completed_count=completed,
            total_jobs=state.total,
            percentage=round(completed / state.total * 100) if state.total else 100,
            in_flight_count=len(state.in_flight),
            queued_count=len(state.queue),
        )
        on_progress(progress)
