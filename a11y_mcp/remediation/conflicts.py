"""Conflict resolver: one surviving patch per source line."""

import logging

from .errors import InvalidInput
from .models import Conflict, JobResult, Patch
from .strategies import STRATEGIES, ConflictStrategy

logger = logging.getLogger(__name__)


class ConflictResolver:
    """Groups successful patches by line and resolves collisions."""

    def __init__(self, strategy: str | ConflictStrategy = "merge"):
        if isinstance(strategy, ConflictStrategy):
            self.strategy = strategy
        elif strategy in STRATEGIES:
            self.strategy = STRATEGIES[strategy]()
        else:
            raise InvalidInput(
                f"Unknown conflict strategy: {strategy}. Expected one of {sorted(STRATEGIES)}"
            )

    def resolve(self, job_results: list[JobResult], original_source: str) -> tuple[list[Patch], list[Conflict]]:
        """Resolve same-line collisions across all job results.

        Args:
            job_results: Results from the scheduler
            original_source: Source text the patches were generated against

        Returns:
            (resolved patches, conflicts). Failed placeholders are passed
            through; every line number appears at most once among the rest.
        """
        lines = original_source.split("\n")
        by_line: dict[int, list[Patch]] = {}
        passthrough: list[Patch] = []

        for result in job_results:
            for patch in result.patches:
                if result.status == "success" and patch.status == "success":
                    by_line.setdefault(patch.line_number, []).append(patch)
                else:
                    passthrough.append(patch)

        resolved: list[Patch] = []
        conflicts: list[Conflict] = []

        for line_number, patches in by_line.items():
            if len(patches) == 1:
                resolved.append(patches[0])
                continue

            original_line = lines[line_number - 1].rstrip("\r") if 1 <= line_number <= len(lines) else None
            conflicts.append(Conflict(
                line_number=line_number,
                candidate_patches=list(patches),
                original_line=original_line,
            ))
            winner = self.strategy.resolve(list(patches), original_line)
            logger.info(
                f"Line {line_number}: {len(patches)} conflicting patches resolved by "
                f"{self.strategy.name} -> {winner.status}"
            )
            resolved.append(winner)

        return resolved + passthrough, conflicts
