"""Issue preparer: scoring, dependency inference and grouping into jobs."""

import logging
import re

from .errors import InvalidInput
from .models import Issue, Job

logger = logging.getLogger(__name__)


SEVERITY_PRIORITY = {
    "error": 3,
    "warning": 2,
    "info": 1,
    "success": 0,
}

# Criteria whose failures block most users
CRITICAL_CRITERIA = {"1.1.1", "1.3.1", "2.1.1", "2.4.2", "3.3.2", "4.1.2"}

CRITERION_COMPLEXITY = {
    "1.1.1": 2,  # alt text
    "1.3.1": 4,  # structure
    "1.4.3": 3,  # contrast
    "2.1.1": 4,  # keyboard
    "2.4.4": 2,  # link text
    "3.3.2": 3,  # labels
    "4.1.2": 5,  # name, role, value
}

DEFAULT_COMPLEXITY = 2
MAX_SCORE = 5
LONG_DESCRIPTION = 200

ANNOTATION_VOCABULARY = re.compile(r"\bARIA\b|\baria-[a-z]+|\brole\s*=", re.IGNORECASE)

STRUCTURE_FAMILY = "1.3"
PRESENTATION_FAMILY = "1.4"
LANGUAGE_CRITERION = "3.1.1"
FORM_INSTRUCTIONS_FAMILY = "3.3"
FORM_LABELS_CRITERION = "3.3.2"


def calculate_priority(issue: Issue) -> int:
    """Score how urgently an issue should be fixed (0-5)."""
    priority = SEVERITY_PRIORITY.get(issue.severity_class, 1)

    if issue.criterion_key in CRITICAL_CRITERIA:
        priority += 1

    if issue.affected_element_count > 5:
        priority += 1

    return min(priority, MAX_SCORE)


def estimate_complexity(issue: Issue) -> int:
    """Score how hard an issue is to fix (1-5)."""
    complexity = CRITERION_COMPLEXITY.get(issue.criterion_key, DEFAULT_COMPLEXITY)

    if len(issue.description) > LONG_DESCRIPTION:
        complexity += 1

    if issue.suggested_fix_text and ANNOTATION_VOCABULARY.search(issue.suggested_fix_text):
        complexity += 2

    return min(complexity, MAX_SCORE)


def _depends_on(issue: Issue, other: Issue) -> bool:
    """Return True if ``other`` should be fixed before ``issue``."""
    criterion = issue.criterion_key or ""
    other_criterion = other.criterion_key or ""

    # Structure before styling
    if criterion.startswith(PRESENTATION_FAMILY) and other_criterion.startswith(STRUCTURE_FAMILY):
        return True

    # Page language before everything else
    if criterion != LANGUAGE_CRITERION and other_criterion == LANGUAGE_CRITERION:
        return True

    # Form labels before form instructions
    if criterion.startswith(FORM_INSTRUCTIONS_FAMILY) and other_criterion == FORM_LABELS_CRITERION:
        return True

    return False


def group_key_for(issue: Issue) -> str:
    """Key used to group issues: criterion, then issue type, then slugified title."""
    if issue.criterion_key:
        return issue.criterion_key
    if issue.issue_type:
        return issue.issue_type
    title = issue.title or "unknown"
    return re.sub(r"[^a-z0-9]", "-", title.lower())


def find_dependencies(issue: Issue, all_issues: list[Issue]) -> list[str]:
    """Group keys of other issues that must be fixed first."""
    own_key = group_key_for(issue)
    dependencies = []

    for other in all_issues:
        if other is issue:
            continue
        key = group_key_for(other)
        if key == own_key or key in dependencies:
            continue
        if _depends_on(issue, other):
            dependencies.append(key)

    return dependencies


class IssuePreparer:
    """Turns a flat issue list into scored, optionally grouped jobs."""

    def prepare(
        self,
        issues: list[Issue],
        prioritize: bool = True,
        group_by_type: bool = True,
        source_text: str = "",
        max_attempts: int = 3,
    ) -> list[Job]:
        """Build jobs from issues.

        Args:
            issues: Issues from the detector
            prioritize: Sort by descending priority, then ascending complexity
            group_by_type: One job per group key instead of one per issue
            source_text: Source snapshot attached to every job
            max_attempts: Dispatch attempts allowed per job

        Returns:
            List of pending jobs

        Raises:
            InvalidInput: If ``issues`` is empty
        """
        if not issues:
            raise InvalidInput("No issues to remediate")

        scored = [
            (issue, calculate_priority(issue), estimate_complexity(issue), find_dependencies(issue, issues))
            for issue in issues
        ]

        if group_by_type:
            entries = self._group(scored)
        else:
            entries = [
                (group_key_for(issue), [issue], priority, complexity, deps)
                for issue, priority, complexity, deps in scored
            ]

        if prioritize:
            entries.sort(key=lambda e: (-e[2], e[3]))

        jobs = [
            Job(
                id=f"job-{index}",
                group_key=key,
                issues=group_issues,
                priority=priority,
                complexity=complexity,
                dependencies=deps,
                max_attempts=max_attempts,
                source_snapshot=source_text,
            )
            for index, (key, group_issues, priority, complexity, deps) in enumerate(entries)
        ]

        logger.info(f"Prepared {len(jobs)} jobs from {len(issues)} issues")
        return jobs

    def _group(self, scored: list[tuple]) -> list[tuple]:
        groups: dict[str, list[tuple]] = {}
        for entry in scored:
            groups.setdefault(group_key_for(entry[0]), []).append(entry)

        entries = []
        for key, members in groups.items():
            deps = []
            for _, _, _, member_deps in members:
                for dep in member_deps:
                    if dep != key and dep not in deps:
                        deps.append(dep)

            entries.append((
                key,
                [m[0] for m in members],
                max(m[1] for m in members),
                sum(m[2] for m in members),
                deps,
            ))
        return entries
