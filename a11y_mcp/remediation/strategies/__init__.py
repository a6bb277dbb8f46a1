"""Conflict resolution strategies."""

from .base import ConflictStrategy
from .confidence import ConfidenceStrategy
from .manual import ManualStrategy
from .merge import MergeStrategy
from .priority import PriorityStrategy

STRATEGIES = {
    "merge": MergeStrategy,
    "priority": PriorityStrategy,
    "confidence": ConfidenceStrategy,
    "manual": ManualStrategy,
}

__all__ = [
    "ConflictStrategy",
    "ConfidenceStrategy",
    "ManualStrategy",
    "MergeStrategy",
    "PriorityStrategy",
    "STRATEGIES",
]
