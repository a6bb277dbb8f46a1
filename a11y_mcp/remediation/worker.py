"""Completion worker contract and the LLM-backed implementation."""

import asyncio
import json
import logging
import re
from typing import Protocol, runtime_checkable

from ..llm import LLMCallError, call_llm, get_model, get_timeout
from .errors import WorkerError
from .instructions import get_instructions
from .models import Issue, Job, JobContext, PatchCandidate

logger = logging.getLogger(__name__)


CONTEXT_RADIUS = 5
FALLBACK_LINES = 100
MAX_EXCERPT_CHARS = 8000

SYSTEM_PROMPT = (
    "You are an expert web accessibility developer who fixes WCAG compliance issues. "
    "Always respond with valid JSON arrays only."
)


@runtime_checkable
class CompletionWorker(Protocol):
    """Anything that turns a job context into patch candidates.

    Implementations raise WorkerError on transport, timeout or parse
    failure and never return a partial result.
    """

    worker_id: str

    async def complete(self, context: JobContext) -> list[PatchCandidate]:
        ...


def selector_to_patterns(selector: str) -> list[re.Pattern]:
    """Translate a simple CSS selector into line-matching regexes.

    Handles id, class, leading tag and attribute selectors; anything more
    complex only contributes the parts it can.
    """
    patterns = []

    id_match = re.search(r"#([\w-]+)", selector)
    if id_match:
        patterns.append(re.compile(rf"id=[\"']{re.escape(id_match.group(1))}[\"']", re.IGNORECASE))

    class_match = re.search(r"\.([\w-]+)", selector)
    if class_match:
        patterns.append(re.compile(
            rf"class=[\"'][^\"']*\b{re.escape(class_match.group(1))}\b[^\"']*[\"']", re.IGNORECASE
        ))

    tag_match = re.match(r"^([a-zA-Z][a-zA-Z0-9]*)", selector.strip())
    if tag_match:
        patterns.append(re.compile(rf"<{tag_match.group(1)}\b", re.IGNORECASE))

    for attr, value in re.findall(r"\[([^=\]]+)(?:=[\"']?([^\"'\]]+)[\"']?)?\]", selector):
        if value:
            patterns.append(re.compile(rf"{re.escape(attr)}=[\"']{re.escape(value)}[\"']", re.IGNORECASE))
        else:
            patterns.append(re.compile(rf"\b{re.escape(attr)}\b", re.IGNORECASE))

    return patterns


def find_element_lines(selector: str, lines: list[str]) -> list[int]:
    """0-based indexes of lines matching any selector pattern."""
    patterns = selector_to_patterns(selector)
    if not patterns:
        return []
    return [i for i, line in enumerate(lines) if any(p.search(line) for p in patterns)]


def extract_relevant_source(issues: list[Issue], source_text: str) -> str:
    """Numbered excerpt of the source lines around the issues' elements.

    Falls back to the start of the document when no selector matches.
    """
    lines = source_text.split("\n")
    relevant: set[int] = set()

    for issue in issues:
        if not issue.location:
            continue
        for line_index in find_element_lines(issue.location, lines):
            start = max(0, line_index - CONTEXT_RADIUS)
            end = min(len(lines) - 1, line_index + CONTEXT_RADIUS)
            relevant.update(range(start, end + 1))

    if not relevant:
        relevant.update(range(min(FALLBACK_LINES, len(lines))))

    parts = []
    last = -1
    for index in sorted(relevant):
        if index > last + 1:
            parts.append("... (content omitted) ...")
        parts.append(f"{index + 1}: {lines[index]}")
        last = index

    excerpt = "\n".join(parts)
    if len(excerpt) > MAX_EXCERPT_CHARS:
        excerpt = excerpt[:MAX_EXCERPT_CHARS] + "\n... (truncated)"
    return excerpt


def build_job_context(job: Job) -> JobContext:
    """Assemble everything a worker needs to remediate ``job``."""
    return JobContext(
        group_key=job.group_key,
        issues=list(job.issues),
        relevant_source_excerpt=extract_relevant_source(job.issues, job.source_snapshot),
        instructions=get_instructions(job.group_key),
    )


def build_prompt(context: JobContext) -> str:
    """Render the remediation prompt for one job."""
    issue_context = [
        {
            "title": issue.title,
            "description": issue.description,
            "element": issue.location or "unknown",
            "suggestion": issue.suggested_fix_text,
        }
        for issue in context.issues
    ]
    guidelines = "\n".join(f"- {g}" for g in context.instructions.get("guidelines", []))

    return f"""Fix the following WCAG compliance issues in the HTML source.

## Issue Type: {context.group_key}
## Number of Issues: {len(context.issues)}

## Remediation Instructions:
{context.instructions.get("prompt", "").strip()}

## Specific Issues to Fix:
{json.dumps(issue_context, indent=2)}

## HTML Source (numbered lines):
```html
{context.relevant_source_excerpt}
```

## Requirements:
1. Return ONLY a JSON array of changes
2. Each change has: lineNumber, beforeCode, afterCode, confidence, explanation, wcagCriterion
3. lineNumber is 1-based and refers to the numbered lines above
4. beforeCode must match the existing line exactly, without the line number prefix
5. afterCode must be the complete corrected line
6. confidence is between 0.0 and 1.0

## Guidelines:
{guidelines}
- Keep the original indentation
- Only modify lines that need changes
"""


def parse_candidates(response: str) -> list[PatchCandidate]:
    """Parse a worker response into patch candidates.

    Raises:
        WorkerError: (permanent) if the response is not a valid change array
    """
    text = re.sub(r"```(?:json)?", "", response.strip())

    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end != -1:
        text = text[start:end + 1]

    try:
        changes = json.loads(text)
    except json.JSONDecodeError as e:
        raise WorkerError(f"Response is not valid JSON: {e}", transient=False)

    if not isinstance(changes, list):
        raise WorkerError("Response must be a JSON array", transient=False)

    candidates = []
    for index, change in enumerate(changes):
        try:
            candidates.append(PatchCandidate.from_dict(change))
        except WorkerError as e:
            raise WorkerError(f"Invalid change at index {index}: {e}", transient=False)
    return candidates


class LLMCompletionWorker:
    """Completion worker that asks an LLM (via the llm CLI) for patches."""

    def __init__(self, worker_id: str, model: str | None = None, timeout: int | None = None):
        self.worker_id = worker_id
        self.model = model or get_model()
        self.timeout = timeout or get_timeout()

    async def complete(self, context: JobContext) -> list[PatchCandidate]:
        """Ask the LLM for patch candidates.

        The CLI runs in a thread that cannot be interrupted. If this call is
        cancelled (scheduler timeout or cancellation) it waits for the thread
        to exit before re-raising, so the caller's concurrency slot stays
        taken while the llm process is alive. The wait is bounded by
        ``self.timeout``.
        """
        prompt = build_prompt(context)
        call = asyncio.ensure_future(asyncio.to_thread(
            call_llm,
            prompt,
            system_prompt=SYSTEM_PROMPT,
            model=self.model,
            timeout=self.timeout,
        ))
        try:
            response = await asyncio.shield(call)
        except asyncio.CancelledError:
            logger.debug(f"{self.worker_id}: cancelled, waiting for the llm call to exit")
            await asyncio.wait({call})
            if not call.cancelled():
                call.exception()  # result is discarded
            raise
        except LLMCallError as e:
            raise WorkerError(str(e), transient=True)

        if not response:
            raise WorkerError("LLM returned an empty response", transient=True)

        candidates = parse_candidates(response)
        logger.debug(f"{self.worker_id}: {len(candidates)} candidates for {context.group_key}")
        return candidates
