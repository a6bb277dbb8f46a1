"""Merge non-colliding attribute additions into one patch."""

import logging
import re
from typing import Optional

from ..models import Patch
from .base import ConflictStrategy
from .confidence import ConfidenceStrategy

logger = logging.getLogger(__name__)


_ATTR_VALUE = r"(?:\"[^\"]*\"|'[^']*'|[^\s\"'=<>`]+)"
_ATTR_NAME = r"[^\s\"'>/=]+"

START_TAG = re.compile(
    rf"<([a-zA-Z][\w:-]*)((?:\s+{_ATTR_NAME}(?:\s*=\s*{_ATTR_VALUE})?)*)\s*(/?)>"
)
ATTRIBUTE = re.compile(rf"({_ATTR_NAME})(?:\s*=\s*({_ATTR_VALUE}))?")


def parse_attributes(attr_text: str) -> list[tuple[str, Optional[str], str]]:
    """Split a start tag's attribute text into (name, value, raw) tuples.

    Names are lower-cased and quotes are stripped from values.
    """
    attributes = []
    for match in ATTRIBUTE.finditer(attr_text):
        value = match.group(2)
        if value is not None and value[:1] in ("'", '"'):
            value = value[1:-1]
        attributes.append((match.group(1).lower(), value, match.group(0)))
    return attributes


def attribute_additions(original_line: str, after_text: str) -> Optional[list[tuple[str, str]]]:
    """Attributes ``after_text`` adds to the first start tag of ``original_line``.

    Returns a list of (name, raw attribute text), or None when the change is
    anything other than a pure attribute addition: a different tag, changed
    text around the tag, or an existing attribute removed or altered.
    """
    before = START_TAG.search(original_line)
    after = START_TAG.search(after_text)
    if before is None or after is None:
        return None

    if before.group(1).lower() != after.group(1).lower():
        return None
    if original_line[:before.start()] != after_text[:after.start()]:
        return None
    if original_line[before.end():] != after_text[after.end():]:
        return None

    existing = {name: value for name, value, _ in parse_attributes(before.group(2))}
    added = []
    seen = set()
    for name, value, raw in parse_attributes(after.group(2)):
        seen.add(name)
        if name in existing:
            if existing[name] != value:
                return None
            continue
        added.append((name, raw))

    if not set(existing) <= seen or not added:
        return None
    return added


def insert_attributes(line: str, additions: list[tuple[str, str]]) -> str:
    """Append raw attributes to the first start tag of ``line``."""
    match = START_TAG.search(line)
    position = match.end(2)
    extra = "".join(f" {raw}" for _, raw in additions)
    return line[:position] + extra + line[position:]


class MergeStrategy(ConflictStrategy):
    """Fold attribute additions into a single merged patch.

    Candidates are tried by descending confidence; any candidate that is not
    a pure attribute addition, or that adds an attribute already folded in,
    is dropped. With nothing folded the confidence strategy decides.
    """

    name = "merge"

    def __init__(self):
        self.fallback = ConfidenceStrategy()

    def resolve(self, candidates: list[Patch], original_line: Optional[str]) -> Patch:
        if original_line is None:
            return self.fallback.resolve(candidates, original_line)

        merged_line = original_line
        folded: list[Patch] = []
        folded_names: set[str] = set()

        for candidate in sorted(candidates, key=lambda p: -p.confidence):
            additions = attribute_additions(original_line, candidate.after_text)
            if additions is None:
                logger.debug(f"Line {candidate.line_number}: cannot merge change from {candidate.job_id}")
                continue

            names = {name for name, _ in additions}
            if names & folded_names:
                logger.debug(
                    f"Line {candidate.line_number}: attribute collision {sorted(names & folded_names)}"
                )
                continue

            merged_line = insert_attributes(merged_line, additions)
            folded_names |= names
            folded.append(candidate)

        if not folded:
            return self.fallback.resolve(candidates, original_line)

        base = folded[0]
        return Patch(
            job_id=base.job_id,
            group_key=base.group_key,
            line_number=base.line_number,
            before_text=original_line,
            after_text=merged_line,
            confidence=sum(p.confidence for p in folded) / len(folded),
            explanation=f"Merged {len(folded)} changes: " + "; ".join(p.explanation for p in folded),
            criterion_key=base.criterion_key,
            status="merged",
            merged_from=[p.criterion_key for p in folded],
        )
