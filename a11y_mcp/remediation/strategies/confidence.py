"""Resolve conflicts by worker confidence."""

from typing import Optional

from ..models import Patch
from .base import ConflictStrategy


class ConfidenceStrategy(ConflictStrategy):
    """Keep the most confident patch; ties go to the first encountered."""

    name = "confidence"

    def resolve(self, candidates: list[Patch], original_line: Optional[str]) -> Patch:
        best = candidates[0]
        for patch in candidates[1:]:
            if patch.confidence > best.confidence:
                best = patch
        return best
