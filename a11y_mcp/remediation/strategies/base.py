"""Base class for conflict resolution strategies."""

from abc import ABC, abstractmethod
from typing import Optional

from ..models import Patch


class ConflictStrategy(ABC):
    """Picks or builds the single patch that survives a line conflict.

    Subclasses must set ``name`` and implement resolve().
    """

    name: str = ""

    @abstractmethod
    def resolve(self, candidates: list[Patch], original_line: Optional[str]) -> Patch:
        """Resolve competing patches for one line.

        Args:
            candidates: Two or more patches targeting the same line, in
                encounter order
            original_line: Source line they target (None if out of range)

        Returns:
            The patch to keep for that line
        """
        pass
