"""Defer conflicts to a human reviewer."""

from typing import Optional

from ..models import Patch
from .base import ConflictStrategy


class ManualStrategy(ConflictStrategy):
    """Emit a needs_review placeholder carrying every candidate.

    Nothing is applied for the line until someone picks a candidate.
    """

    name = "manual"

    def resolve(self, candidates: list[Patch], original_line: Optional[str]) -> Patch:
        first = candidates[0]
        return Patch(
            job_id=first.job_id,
            group_key=first.group_key,
            line_number=first.line_number,
            before_text=original_line if original_line is not None else first.before_text,
            after_text="",
            confidence=0.0,
            explanation=f"{len(candidates)} conflicting changes need manual review",
            criterion_key=first.criterion_key,
            status="needs_review",
            candidates=list(candidates),
        )
