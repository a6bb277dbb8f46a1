"""Resolve conflicts by a fixed criterion precedence."""

from typing import Optional

from ..models import Patch
from .base import ConflictStrategy


# Fixes that change document-wide context go first
CRITERION_PRECEDENCE = [
    "3.1.1",  # language
    "2.4.2",  # page title
    "1.3.1",  # structure
    "1.1.1",  # alt text
    "3.3.2",  # labels
    "2.1.1",  # keyboard
    "2.4.4",  # link text
    "1.4.3",  # contrast
    "4.1.2",  # name, role, value
]


def precedence_rank(criterion_key: Optional[str]) -> int:
    """Position in the precedence list; unknown criteria sort last."""
    try:
        return CRITERION_PRECEDENCE.index(criterion_key)
    except ValueError:
        return len(CRITERION_PRECEDENCE)


class PriorityStrategy(ConflictStrategy):
    """Keep the patch whose criterion comes earliest in the precedence list."""

    name = "priority"

    def resolve(self, candidates: list[Patch], original_line: Optional[str]) -> Patch:
        # min() keeps the first of equal ranks
        return min(candidates, key=lambda p: precedence_rank(p.criterion_key))
