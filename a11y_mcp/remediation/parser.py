"""Issue parser for normalizing detector output into Issue records."""

import json
import logging
from pathlib import Path

from .errors import InvalidInput
from .models import Issue, SEVERITY_CLASSES

logger = logging.getLogger(__name__)


class IssueParser:
    """Normalizes raw detector issues into validated Issue objects.

    Accepts the loose shapes produced by compliance checkers: camelCase or
    snake_case keys, the severity in ``type`` or ``severity``, and the
    selector either flat or nested under ``element``.
    """

    def parse(self, raw_issues: list) -> list[Issue]:
        """Parse a list of raw issue dicts.

        Args:
            raw_issues: Detector output

        Returns:
            List of Issue objects

        Raises:
            InvalidInput: If the payload is not a list or an entry is malformed
        """
        if not isinstance(raw_issues, list):
            raise InvalidInput("Issues payload must be a list")

        issues = []
        seen_ids = set()

        for index, raw in enumerate(raw_issues):
            if not isinstance(raw, dict):
                raise InvalidInput(f"Issue at index {index} is not an object")

            issue = self._normalize(raw, index)
            if issue.id in seen_ids:
                logger.debug(f"Skipping duplicate issue id {issue.id}")
                continue
            seen_ids.add(issue.id)
            issues.append(issue)

        return issues

    def parse_file(self, issues_file: Path) -> list[Issue]:
        """Parse a JSON file holding detector output.

        The file may contain a bare list or an object with an ``issues`` key.
        """
        try:
            data = json.loads(Path(issues_file).read_text())
        except json.JSONDecodeError as e:
            raise InvalidInput(f"Issues file {issues_file} is not valid JSON: {e}")

        if isinstance(data, dict):
            data = data.get("issues", [])
        return self.parse(data)

    def _normalize(self, raw: dict, index: int) -> Issue:
        severity, issue_type = self._extract_severity(raw)

        return Issue(
            id=str(raw.get("id") or f"issue-{index}"),
            criterion_key=raw.get("criterion") or raw.get("criterionKey") or raw.get("criterion_key"),
            severity_class=severity,
            location=self._extract_selector(raw),
            description=raw.get("description") or "",
            suggested_fix_text=(
                raw.get("suggestion") or raw.get("suggestedFix") or raw.get("suggested_fix_text") or ""
            ),
            affected_element_count=self._extract_count(raw, index),
            title=raw.get("title"),
            issue_type=issue_type,
        )

    def _extract_severity(self, raw: dict) -> tuple[str, str | None]:
        """Return (severity_class, issue_type).

        Checkers often overload ``type`` with the severity; anything else in
        that field is treated as an issue type.
        """
        raw_type = raw.get("type")
        severity = raw.get("severity") or raw.get("severityClass") or raw.get("severity_class")

        issue_type = None
        if isinstance(raw_type, str) and raw_type.lower() in SEVERITY_CLASSES:
            severity = severity or raw_type
        elif raw_type:
            issue_type = str(raw_type)

        severity = (severity or "info").lower()
        return severity, issue_type

    def _extract_selector(self, raw: dict) -> str | None:
        element = raw.get("element")
        if isinstance(element, dict) and element.get("selector"):
            return element["selector"]
        return raw.get("selector") or raw.get("location")

    def _extract_count(self, raw: dict, index: int) -> int:
        value = raw.get("affectedElements", raw.get("affected_element_count", 0))
        if isinstance(value, list):
            return len(value)
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            raise InvalidInput(f"Issue at index {index}: affectedElements must be a number")
