"""Tests for the LLM completion worker and its helpers."""

import asyncio
import json
import subprocess
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from a11y_mcp.llm import LLMCallError, build_command, call_llm, get_model, get_timeout
from a11y_mcp.remediation.errors import WorkerError
from a11y_mcp.remediation.models import Job
from a11y_mcp.remediation.worker import (
    CompletionWorker,
    LLMCompletionWorker,
    build_job_context,
    build_prompt,
    extract_relevant_source,
    find_element_lines,
    parse_candidates,
)

from fakes import StaticWorker, make_issue

PAGE = "\n".join(
    ["<html>", "<body>"]
    + [f"<p>filler {n}</p>" for n in range(20)]
    + ['<img id="hero" class="wide banner" src="h.png">']
    + [f"<p>more {n}</p>" for n in range(20)]
    + ["</body>", "</html>"]
)


class TestSourceExcerpt:
    """Test selector matching and excerpt extraction."""

    def test_find_by_id(self):
        lines = PAGE.split("\n")
        assert find_element_lines("#hero", lines) == [22]

    def test_find_by_class(self):
        lines = PAGE.split("\n")
        assert find_element_lines("img.banner", lines) == [22]

    def test_excerpt_around_element(self):
        issue = make_issue("i1", location="#hero")
        excerpt = extract_relevant_source([issue], PAGE)
        numbered = [line for line in excerpt.split("\n") if not line.startswith("...")]

        assert numbered[0].startswith("18: ")
        assert numbered[-1].startswith("28: ")
        assert '23: <img id="hero"' in excerpt
        assert excerpt.startswith("... (content omitted) ...")

    def test_excerpt_fallback_without_match(self):
        issue = make_issue("i1", location="#missing")
        excerpt = extract_relevant_source([issue], "<html>\n<body>\n</body>\n</html>")
        assert excerpt == "1: <html>\n2: <body>\n3: </body>\n4: </html>"

    def test_excerpt_truncated(self):
        big = "\n".join("x" * 200 for _ in range(100))
        excerpt = extract_relevant_source([make_issue("i1")], big)
        assert excerpt.endswith("... (truncated)")


class TestPrompt:
    """Test context and prompt assembly."""

    def test_context_and_prompt(self):
        job = Job(
            id="job-0",
            group_key="1.1.1",
            issues=[make_issue("i1", location="#hero", description="Image has no alt")],
            source_snapshot=PAGE,
        )
        context = build_job_context(job)
        prompt = build_prompt(context)

        assert context.instructions["guidelines"]
        assert "## Issue Type: 1.1.1" in prompt
        assert "Image has no alt" in prompt
        assert "lineNumber, beforeCode, afterCode" in prompt


class TestParseCandidates:
    """Test parsing of worker responses."""

    def test_fenced_json(self):
        response = "```json\n" + json.dumps([
            {"lineNumber": 3, "beforeCode": "<img>", "afterCode": "<img alt=\"\">", "confidence": 0.9}
        ]) + "\n```"
        candidates = parse_candidates(response)
        assert candidates[0].line_number == 3
        assert candidates[0].confidence == 0.9

    def test_prose_around_array(self):
        response = 'Here you go: [{"lineNumber": 1, "beforeCode": "a", "afterCode": "b"}] Done.'
        assert len(parse_candidates(response)) == 1

    def test_invalid_json_is_permanent(self):
        with pytest.raises(WorkerError) as exc_info:
            parse_candidates("I could not fix this")
        assert exc_info.value.transient is False

    def test_invalid_entry_is_permanent(self):
        with pytest.raises(WorkerError) as exc_info:
            parse_candidates('[{"lineNumber": -1, "beforeCode": "a", "afterCode": "b"}]')
        assert exc_info.value.transient is False
        assert "index 0" in str(exc_info.value)


class TestLLMCompletionWorker:
    """Test the LLM-backed worker with the CLI mocked out."""

    def make_context(self):
        job = Job(id="job-0", group_key="1.1.1", issues=[make_issue("i1")], source_snapshot="<img>")
        return build_job_context(job)

    def test_satisfies_protocol(self):
        assert isinstance(LLMCompletionWorker("w0", model="m", timeout=5), CompletionWorker)
        assert isinstance(StaticWorker(), CompletionWorker)

    @pytest.mark.asyncio
    async def test_complete_parses_response(self):
        worker = LLMCompletionWorker("w0", model="test-model", timeout=5)
        response = '[{"lineNumber": 1, "beforeCode": "<img>", "afterCode": "<img alt=\\"\\">"}]'
        with patch("a11y_mcp.remediation.worker.call_llm", return_value=response) as mock_call:
            candidates = await worker.complete(self.make_context())

        assert candidates[0].after_text == '<img alt="">'
        assert mock_call.call_args.kwargs["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_llm_failure_is_transient(self):
        worker = LLMCompletionWorker("w0", model="m", timeout=5)
        with patch("a11y_mcp.remediation.worker.call_llm", side_effect=LLMCallError("rate limited")):
            with pytest.raises(WorkerError) as exc_info:
                await worker.complete(self.make_context())
        assert exc_info.value.transient is True

    @pytest.mark.asyncio
    async def test_empty_response_is_transient(self):
        worker = LLMCompletionWorker("w0", model="m", timeout=5)
        with patch("a11y_mcp.remediation.worker.call_llm", return_value=""):
            with pytest.raises(WorkerError) as exc_info:
                await worker.complete(self.make_context())
        assert exc_info.value.transient is True


    @pytest.mark.asyncio
    async def test_cancel_waits_for_llm_thread(self):
        finished = threading.Event()

        def blocking_call(prompt, **kwargs):
            time.sleep(0.2)
            finished.set()
            return "[]"

        worker = LLMCompletionWorker("w0", model="m", timeout=5)
        with patch("a11y_mcp.remediation.worker.call_llm", side_effect=blocking_call):
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(worker.complete(self.make_context()), 0.05)

        assert finished.is_set()


class TestLLMWrapper:
    """Test the llm CLI wrapper."""

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("A11Y_MODEL", "claude-test")
        monkeypatch.setenv("LLM_TIMEOUT", "not-a-number")
        assert get_model() == "claude-test"
        assert get_timeout() == 60

    def test_build_command(self):
        assert build_command("fix it", "gpt-4o", "system") == ["llm", "-m", "gpt-4o", "-s", "system", "fix it"]

    def test_missing_cli(self):
        with patch("a11y_mcp.llm.shutil.which", return_value=None):
            with pytest.raises(LLMCallError):
                call_llm("prompt", model="m", timeout=1)

    def test_timeout(self):
        with patch("a11y_mcp.llm.shutil.which", return_value="/usr/bin/llm"), \
                patch("a11y_mcp.llm.subprocess.run", side_effect=subprocess.TimeoutExpired("llm", 1)):
            with pytest.raises(LLMCallError, match="timed out"):
                call_llm("prompt", model="m", timeout=1)

    def test_nonzero_exit(self):
        with patch("a11y_mcp.llm.shutil.which", return_value="/usr/bin/llm"), \
                patch("a11y_mcp.llm.subprocess.run", return_value=MagicMock(returncode=1)):
            with pytest.raises(LLMCallError, match="failed"):
                call_llm("prompt", model="m", timeout=1)
