"""Fake completion workers and record builders shared by the tests."""

import asyncio

from a11y_mcp.remediation.errors import WorkerError
from a11y_mcp.remediation.models import Issue, PatchCandidate


def make_issue(issue_id, criterion="1.1.1", severity="error", location=None, **kwargs):
    return Issue(
        id=issue_id,
        criterion_key=criterion,
        severity_class=severity,
        location=location,
        **kwargs,
    )


class StaticWorker:
    """Returns canned candidates per group key (empty list when unknown)."""

    def __init__(self, worker_id="static", responses=None, delay=0.0):
        self.worker_id = worker_id
        self.responses = responses or {}
        self.delay = delay
        self.calls = []

    async def complete(self, context):
        self.calls.append(context.group_key)
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.responses.get(context.group_key, []))


class CountingWorker:
    """Tracks how many calls are outstanding at once, shared across instances."""

    def __init__(self, worker_id, tracker, delay=0.02):
        self.worker_id = worker_id
        self.tracker = tracker
        self.delay = delay

    async def complete(self, context):
        self.tracker["current"] += 1
        self.tracker["max"] = max(self.tracker["max"], self.tracker["current"])
        self.tracker["order"].append(context.group_key)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.tracker["current"] -= 1
        return []


class SlowThenFastWorker:
    """Hangs on the first ``slow_calls`` calls, then answers immediately."""

    def __init__(self, worker_id="flaky", slow_calls=1, hang=5.0, candidates=None):
        self.worker_id = worker_id
        self.slow_calls = slow_calls
        self.hang = hang
        self.candidates = candidates or []
        self.calls = 0

    async def complete(self, context):
        self.calls += 1
        if self.calls <= self.slow_calls:
            await asyncio.sleep(self.hang)
        return list(self.candidates)


class FailingWorker:
    """Always raises a WorkerError."""

    def __init__(self, worker_id="failing", transient=True, fail_groups=None):
        self.worker_id = worker_id
        self.transient = transient
        self.fail_groups = fail_groups
        self.calls = []

    async def complete(self, context):
        self.calls.append(context.group_key)
        if self.fail_groups is None or context.group_key in self.fail_groups:
            raise WorkerError("upstream unavailable", transient=self.transient)
        return []


def candidate(line, before, after, confidence=0.9, criterion=None, explanation="fix"):
    return PatchCandidate(
        line_number=line,
        before_text=before,
        after_text=after,
        confidence=confidence,
        explanation=explanation,
        criterion_key=criterion,
    )
