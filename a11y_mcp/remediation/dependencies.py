"""Dependency resolver: topological ordering of jobs by group key."""

import logging

from .models import Job

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Orders jobs so prerequisite groups come before their dependents.

    Cycles are not fatal. When a visit reaches a job that is still on the
    active stack, the back-edge is logged and dropped so the batch always
    makes progress. Dropped edges are kept in ``dropped_edges`` as
    ``(job_id, dependency_group_key)`` pairs.
    """

    def __init__(self):
        self.dropped_edges: list[tuple[str, str]] = []

    def order(self, jobs: list[Job]) -> list[Job]:
        """Return jobs topologically sorted, dependencies first.

        Dependencies naming a group key that has no job in the batch are
        treated as already satisfied.
        """
        self.dropped_edges = []
        by_key: dict[str, list[Job]] = {}
        for job in jobs:
            by_key.setdefault(job.group_key, []).append(job)

        ordered: list[Job] = []
        visited: set[str] = set()
        visiting: set[str] = set()

        def visit(job: Job, via: Job | None = None) -> None:
            if job.id in visiting:
                logger.warning(
                    f"Circular dependency detected: {via.id if via else '?'} -> {job.group_key}; "
                    f"dropping edge"
                )
                if via is not None:
                    self.dropped_edges.append((via.id, job.group_key))
                return
            if job.id in visited:
                return

            visiting.add(job.id)
            for dep_key in job.dependencies:
                for dep_job in by_key.get(dep_key, []):
                    if dep_job is not job:
                        visit(dep_job, via=job)
            visiting.discard(job.id)

            visited.add(job.id)
            ordered.append(job)

        for job in jobs:
            if job.id not in visited:
                visit(job)

        return ordered


def prerequisite_jobs(ordered_jobs: list[Job]) -> dict[str, list[str]]:
    """Map job id to the ids of the jobs it must wait for.

    Only jobs placed earlier in ``ordered_jobs`` count, so missing groups
    and back-edges dropped while ordering never block a job.
    """
    earlier: dict[str, list[str]] = {}
    result: dict[str, list[str]] = {}
    for job in ordered_jobs:
        prerequisites = []
        for dep in job.dependencies:
            if dep == job.group_key:
                continue
            for dep_id in earlier.get(dep, []):
                if dep_id not in prerequisites:
                    prerequisites.append(dep_id)
        result[job.id] = prerequisites
        earlier.setdefault(job.group_key, []).append(job.id)
    return result
