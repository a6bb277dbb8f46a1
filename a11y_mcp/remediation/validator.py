"""Validation of resolved patches against the original source."""

import dataclasses
import logging
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Optional

from .errors import ValidationError
from .models import Patch

logger = logging.getLogger(__name__)


VOID_ELEMENTS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
    "meta", "param", "source", "track", "wbr",
}

# Elements whose end tag may be omitted
OPTIONAL_END = {
    "li", "p", "td", "th", "tr", "thead", "tbody", "tfoot", "option",
    "optgroup", "dt", "dd", "colgroup", "caption", "rb", "rt", "rp",
    "html", "head", "body",
}


class _BalanceChecker(HTMLParser):
    """Tracks open elements and records unbalanced tags."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.stack: list[tuple[str, int]] = []
        self.problems: list[tuple[str, int]] = []

    def handle_starttag(self, tag, attrs):
        if tag not in VOID_ELEMENTS:
            self.stack.append((tag, self.getpos()[0]))

    def handle_startendtag(self, tag, attrs):
        pass

    def handle_endtag(self, tag):
        line = self.getpos()[0]
        if tag in VOID_ELEMENTS:
            return
        if not any(open_tag == tag for open_tag, _ in self.stack):
            self.problems.append((f"Unexpected closing tag </{tag}>", line))
            return
        while self.stack:
            open_tag, open_line = self.stack.pop()
            if open_tag == tag:
                break
            if open_tag not in OPTIONAL_END:
                self.problems.append((f"Element <{open_tag}> opened on line {open_line} is not closed", open_line))

    def finish(self) -> list[tuple[str, int]]:
        self.close()
        for open_tag, open_line in self.stack:
            if open_tag not in OPTIONAL_END:
                self.problems.append((f"Element <{open_tag}> opened on line {open_line} is not closed", open_line))
        self.stack = []
        return self.problems


def check_structure(source: str) -> list[ValidationError]:
    """Shallow well-formedness check of an HTML document."""
    checker = _BalanceChecker()
    checker.feed(source)
    return [ValidationError(message, line_number=line) for message, line in checker.finish()]


def apply_patches(source: str, patches: list[Patch]) -> str:
    """Replace patched lines, highest line number first.

    Patches must already be range-checked and unique per line. Lines keep
    their carriage return, so CRLF documents stay CRLF.
    """
    lines = source.split("\n")
    for patch in sorted(patches, key=lambda p: p.line_number, reverse=True):
        index = patch.line_number - 1
        ending = "\r" if lines[index].endswith("\r") else ""
        lines[index] = patch.after_text.rstrip("\r") + ending
    return "\n".join(lines)


@dataclass
class ValidationReport:
    """Annotated patches plus patch- and document-level errors."""
    patches: list[Patch]
    errors: list[ValidationError] = field(default_factory=list)
    patched_source: Optional[str] = None

    @property
    def applied(self) -> list[Patch]:
        return [p for p in self.patches if p.is_applicable and p.validated]

    @property
    def error_messages(self) -> list[str]:
        return [str(e) for e in self.errors]


class PatchValidator:
    """Checks that resolved patches still apply cleanly to the source."""

    def validate(self, patches: list[Patch], original_source: str, check_document: bool = True) -> ValidationReport:
        """Annotate patches and optionally rebuild and check the document.

        Args:
            patches: Resolved patches
            original_source: Source the patches target
            check_document: Rebuild the patched source and check its structure

        Returns:
            ValidationReport with annotated copies of the patches
        """
        lines = original_source.split("\n")
        annotated: list[Patch] = []
        errors: list[ValidationError] = []

        for patch in patches:
            if not patch.is_applicable:
                annotated.append(patch)
                continue

            if patch.line_number is None or not 1 <= patch.line_number <= len(lines):
                error = ValidationError(f"Line {patch.line_number} is out of range", line_number=patch.line_number)
                errors.append(error)
                annotated.append(dataclasses.replace(patch, status="failed", validated=False, error=str(error)))
                continue

            actual = lines[patch.line_number - 1]
            if actual.strip() != patch.before_text.strip():
                logger.warning(f"Line {patch.line_number}: patch context is stale")
                annotated.append(dataclasses.replace(patch, validated=False, observed_line=actual))
                continue

            annotated.append(dataclasses.replace(patch, validated=True))

        report = ValidationReport(patches=annotated, errors=errors)

        if check_document:
            report.patched_source = apply_patches(original_source, report.applied)
            # Only report problems the patches introduced
            baseline = {str(e) for e in check_structure(original_source)}
            document_errors = [e for e in check_structure(report.patched_source) if str(e) not in baseline]
            if document_errors:
                logger.warning(f"Patched document has {len(document_errors)} structural problems")
            report.errors.extend(document_errors)

        return report
