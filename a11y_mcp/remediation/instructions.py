"""Remediation instructions lookup backed by instructions.yaml."""

import logging
from functools import lru_cache
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

INSTRUCTIONS_FILE = Path(__file__).resolve().parent / "instructions.yaml"

# Substring of an issue key -> instructions entry to fall back on
KEYWORD_FALLBACKS = {
    "alt": "missing-alt",
    "label": "missing-label",
    "heading": "missing-heading",
    "contrast": "color-contrast",
    "keyboard": "keyboard-access",
}

GENERIC_INSTRUCTIONS = {
    "prompt": (
        "Fix the accessibility issue described in the problem statement, "
        "following WCAG 2.1 AA guidelines."
    ),
    "guidelines": [
        "Use semantic HTML elements appropriately",
        "Keep changes limited to the affected elements",
    ],
}


def is_valid_entry(entry) -> bool:
    """Check an entry has a non-empty prompt and at least one guideline."""
    return (
        isinstance(entry, dict)
        and isinstance(entry.get("prompt"), str)
        and bool(entry["prompt"].strip())
        and isinstance(entry.get("guidelines"), list)
        and len(entry["guidelines"]) > 0
    )


@lru_cache(maxsize=None)
def load_instructions(path: Path = INSTRUCTIONS_FILE) -> dict:
    """Load and validate the instructions database.

    Invalid entries are skipped with a warning.
    """
    content = yaml.safe_load(Path(path).read_text()) or {}
    instructions = {}
    for key, entry in content.items():
        if is_valid_entry(entry):
            instructions[str(key)] = entry
        else:
            logger.warning(f"Skipping invalid remediation instructions for {key!r}")
    return instructions


def get_instructions(issue_key: str) -> dict:
    """Return instructions for a criterion or issue type.

    Tries an exact match, then keyword fallbacks, then generic instructions.
    """
    instructions = load_instructions()

    if issue_key in instructions:
        return instructions[issue_key]

    lowered = (issue_key or "").lower()
    for keyword, fallback_key in KEYWORD_FALLBACKS.items():
        if keyword in lowered and fallback_key in instructions:
            return instructions[fallback_key]

    return GENERIC_INSTRUCTIONS


def known_criteria() -> list[str]:
    """Criteria (N.N.N keys) that have dedicated instructions."""
    return sorted(
        key for key in load_instructions()
        if all(part.isdigit() for part in key.split(".")) and key.count(".") == 2
    )
