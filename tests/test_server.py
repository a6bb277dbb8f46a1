"""Tests for MCP server tool handlers."""

import json
import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from a11y_mcp import server
from a11y_mcp.project import resolve_in_project, result_file_for
from a11y_mcp.remediation.engine import RemediationEngine

from fakes import StaticWorker, candidate

PAGE = """<html lang="en">
<body>
  <img src="logo.png">
  <a href="/docs">Click here</a>
</body>
</html>"""

ISSUES = {
    "issues": [
        {"id": "a1", "type": "error", "criterion": "1.1.1", "element": {"selector": "img"}},
        {"id": "a2", "type": "warning", "criterion": "2.4.4", "selector": "a"},
    ]
}

WORKER_RESPONSES = {
    "1.1.1": [candidate(3, '  <img src="logo.png">', '  <img src="logo.png" alt="Acme logo">', 0.9, "1.1.1")],
    "2.4.4": [candidate(4, '  <a href="/docs">Click here</a>', '  <a href="/docs">Read the docs</a>', 0.8, "2.4.4")],
}


@pytest.fixture(autouse=True)
def reset_context():
    server.ctx.clear()
    yield
    server.ctx.clear()


def fake_engine(config):
    return RemediationEngine(workers=[StaticWorker(responses=WORKER_RESPONSES)], config=config)


async def set_and_remediate(tmp_path):
    with patch("a11y_mcp.server.check_llm_available", return_value=(False, "llm CLI not found")):
        await server.handle_set_project(str(tmp_path))
    with patch("a11y_mcp.server.build_engine", side_effect=fake_engine):
        return await server.handle_remediate("index.html", "issues.json")


class TestProjectHelpers:
    """Test path helpers."""

    def test_resolve_inside_root(self, tmp_path):
        assert resolve_in_project(tmp_path, "pages/index.html") == (tmp_path / "pages" / "index.html").resolve()

    def test_resolve_rejects_traversal(self, tmp_path):
        with pytest.raises(ValueError):
            resolve_in_project(tmp_path, "../../etc/passwd")

    def test_result_file_name(self, tmp_path):
        assert result_file_for(tmp_path, tmp_path / "about us.html").name == "about-us-remediation.json"


class TestSetProject:
    """Test a11y_set_project."""

    @pytest.mark.asyncio
    async def test_missing_directory(self, tmp_path):
        response = await server.handle_set_project(str(tmp_path / "nope"))
        assert response["success"] is False
        assert "does not exist" in response["error"]

    @pytest.mark.asyncio
    async def test_sets_context(self, tmp_path):
        with patch("a11y_mcp.server.check_llm_available", return_value=(True, None)):
            response = await server.handle_set_project(str(tmp_path))

        assert response["success"] is True
        assert response["data"]["llm_available"] is True
        assert response["next_step"]["tool"] == "a11y_remediate"
        assert server.ctx.is_set

    @pytest.mark.asyncio
    async def test_other_tools_require_project(self):
        response = await server._handle_tool("a11y_remediate", {"source_file": "a", "issues_file": "b"})
        assert response["success"] is False
        assert response["next_step"]["tool"] == "a11y_set_project"


class TestRemediate:
    """Test a11y_remediate."""

    @pytest.mark.asyncio
    async def test_remediate_saves_result(self, tmp_path):
        (tmp_path / "index.html").write_text(PAGE)
        (tmp_path / "issues.json").write_text(json.dumps(ISSUES))

        response = await set_and_remediate(tmp_path)

        assert response["success"] is True
        data = response["data"]
        assert data["summary"]["successful"] == 2
        assert data["statistics"]["failed"] == 0
        result_file = tmp_path / ".a11y" / "results" / "index-remediation.json"
        saved = json.loads(result_file.read_text())
        assert saved["source_file"] == "index.html"
        assert len(saved["patches"]) == 2
        assert response["next_step"]["tool"] == "a11y_apply_patches"
        # Remediation never touches the source file
        assert (tmp_path / "index.html").read_text() == PAGE

    @pytest.mark.asyncio
    async def test_unknown_strategy_is_an_error(self, tmp_path):
        (tmp_path / "index.html").write_text(PAGE)
        (tmp_path / "issues.json").write_text(json.dumps(ISSUES))
        with patch("a11y_mcp.server.check_llm_available", return_value=(False, None)):
            await server.handle_set_project(str(tmp_path))

        with patch("a11y_mcp.server.build_engine", side_effect=fake_engine):
            response = await server.handle_remediate(
                "index.html", "issues.json", overrides={"conflict_strategy": "coin-flip"}
            )

        assert response["success"] is False
        assert "Unknown conflict strategy" in response["error"]

    @pytest.mark.asyncio
    async def test_missing_files(self, tmp_path):
        with patch("a11y_mcp.server.check_llm_available", return_value=(False, None)):
            await server.handle_set_project(str(tmp_path))

        response = await server.handle_remediate("index.html", "issues.json")

        assert response["success"] is False
        assert "File not found" in response["error"]

    @pytest.mark.asyncio
    async def test_path_outside_project(self, tmp_path):
        with patch("a11y_mcp.server.check_llm_available", return_value=(False, None)):
            await server.handle_set_project(str(tmp_path))

        response = await server.handle_remediate("../index.html", "issues.json")

        assert response["success"] is False
        assert "outside the project root" in response["error"]


class TestApplyAndRollback:
    """Test a11y_apply_patches and a11y_rollback."""

    def setup_project(self, tmp_path, require_clean_git=False):
        (tmp_path / "index.html").write_text(PAGE)
        (tmp_path / "issues.json").write_text(json.dumps(ISSUES))
        config_dir = tmp_path / ".a11y"
        config_dir.mkdir()
        flag = "true" if require_clean_git else "false"
        (config_dir / "config.yaml").write_text(f"remediation:\n  safety:\n    require_clean_git: {flag}\n")

    @pytest.mark.asyncio
    async def test_dry_run_leaves_file(self, tmp_path):
        self.setup_project(tmp_path)
        await set_and_remediate(tmp_path)

        response = await server.handle_apply_patches("index.html", dry_run=True)

        assert response["success"] is True
        assert response["data"]["applied_count"] == 2
        assert (tmp_path / "index.html").read_text() == PAGE

    @pytest.mark.asyncio
    async def test_apply_then_rollback(self, tmp_path):
        self.setup_project(tmp_path)
        await set_and_remediate(tmp_path)

        response = await server.handle_apply_patches("index.html")

        assert response["success"] is True
        content = (tmp_path / "index.html").read_text()
        assert 'alt="Acme logo"' in content
        assert "Read the docs" in content
        assert response["data"]["backup_file"]

        rollback = await server.handle_rollback("index.html")
        assert rollback["success"] is True
        assert (tmp_path / "index.html").read_text() == PAGE

    @pytest.mark.asyncio
    async def test_apply_prunes_expired_backups(self, tmp_path):
        self.setup_project(tmp_path)
        await set_and_remediate(tmp_path)
        backups_dir = tmp_path / ".a11y" / "backups"
        backups_dir.mkdir(parents=True, exist_ok=True)
        expired = backups_dir / "about.html_1_deadbeef.bak"
        expired.write_text("old")
        month_ago = time.time() - 30 * 86400
        os.utime(expired, (month_ago, month_ago))

        response = await server.handle_apply_patches("index.html")

        assert response["data"]["pruned_backups"] == 1
        assert not expired.exists()
        assert Path(response["data"]["backup_file"]).exists()

    @pytest.mark.asyncio
    async def test_edited_lines_are_skipped(self, tmp_path):
        self.setup_project(tmp_path)
        await set_and_remediate(tmp_path)
        edited = PAGE.replace("Click here", "Documentation")
        (tmp_path / "index.html").write_text(edited)

        response = await server.handle_apply_patches("index.html")

        assert response["data"]["applied_count"] == 1
        assert response["data"]["skipped_count"] == 1
        content = (tmp_path / "index.html").read_text()
        assert 'alt="Acme logo"' in content
        assert "Documentation" in content

    @pytest.mark.asyncio
    async def test_safety_guard_blocks_write(self, tmp_path):
        self.setup_project(tmp_path, require_clean_git=True)
        await set_and_remediate(tmp_path)

        with patch("a11y_mcp.remediation.safety.SafetyGuard.check_git_status", return_value=False):
            response = await server.handle_apply_patches("index.html")

        assert response["success"] is False
        assert "not clean" in response["error"]
        assert (tmp_path / "index.html").read_text() == PAGE

    @pytest.mark.asyncio
    async def test_apply_without_result(self, tmp_path):
        self.setup_project(tmp_path)
        with patch("a11y_mcp.server.check_llm_available", return_value=(False, None)):
            await server.handle_set_project(str(tmp_path))

        response = await server.handle_apply_patches("index.html")

        assert response["success"] is False
        assert response["next_step"]["tool"] == "a11y_remediate"

    @pytest.mark.asyncio
    async def test_rollback_without_backup(self, tmp_path):
        self.setup_project(tmp_path)
        with patch("a11y_mcp.server.check_llm_available", return_value=(False, None)):
            await server.handle_set_project(str(tmp_path))

        response = await server.handle_rollback("index.html")

        assert response["success"] is False
        assert "No backup found" in response["error"]


class TestToolRouting:
    """Test tool listing and dispatch."""

    @pytest.mark.asyncio
    async def test_list_tools(self):
        tools = await server.list_tools()
        names = {tool.name for tool in tools}
        assert names == {
            "a11y_set_project",
            "a11y_remediate",
            "a11y_apply_patches",
            "a11y_rollback",
            "a11y_instructions",
        }

    @pytest.mark.asyncio
    async def test_instructions_without_project(self):
        response = await server._handle_tool("a11y_instructions", {"criterion": "1.1.1"})
        assert response["success"] is True
        assert response["data"]["instructions"]["guidelines"]

    @pytest.mark.asyncio
    async def test_instructions_lists_criteria(self):
        response = await server.handle_instructions()
        assert "1.1.1" in response["data"]["criteria"]

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tmp_path):
        with patch("a11y_mcp.server.check_llm_available", return_value=(False, None)):
            await server.handle_set_project(str(tmp_path))
        response = await server._handle_tool("a11y_nope", {})
        assert response["success"] is False
        assert "Unknown tool" in response["error"]

    @pytest.mark.asyncio
    async def test_call_tool_wraps_errors(self):
        with patch("a11y_mcp.server._handle_tool", side_effect=RuntimeError("kaboom")):
            content = await server.call_tool("a11y_status", {})
        payload = json.loads(content[0].text)
        assert payload == {"success": False, "data": None, "error": "kaboom"}
