"""a11y MCP Server - Orchestrates LLM remediation of accessibility issues."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from .llm import check_llm_available
from .project import ProjectContext, resolve_in_project, result_file_for
from .remediation import (
    InvalidInput,
    IssueParser,
    Patch,
    PatchValidator,
    Progress,
    RemediationConfig,
    RemediationEngine,
    RemediationRequest,
    load_config,
)
from .remediation.instructions import get_instructions, known_criteria
from .remediation.modifier import BackupManager, BackupNotFoundError, CodeModifier
from .remediation.safety import SafetyGuard
from .remediation.strategies import STRATEGIES

logger = logging.getLogger(__name__)

# Global project context
ctx = ProjectContext()

# Create MCP server
server = Server("a11y-mcp")


def make_response(
    success: bool,
    data: Any = None,
    error: str | None = None,
    next_step: dict | None = None,
) -> dict:
    """Create standardized response with next_step guidance."""
    response = {
        "success": success,
        "data": data,
        "error": error,
    }
    if next_step:
        response["next_step"] = next_step
    return response


def build_engine(config: RemediationConfig) -> RemediationEngine:
    """Create the engine used by a11y_remediate."""
    return RemediationEngine(config=config)


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available a11y tools."""
    return [
        Tool(
            name="a11y_set_project",
            description="Set the active project directory. Must be called before other tools.",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_path": {
                        "type": "string",
                        "description": "Path to the project root directory",
                    },
                },
                "required": ["project_path"],
            },
        ),
        Tool(
            name="a11y_remediate",
            description="Generate validated fix patches for accessibility issues in a source file. Does not modify the file.",
            inputSchema={
                "type": "object",
                "properties": {
                    "source_file": {
                        "type": "string",
                        "description": "HTML source file, relative to the project root",
                    },
                    "issues_file": {
                        "type": "string",
                        "description": "JSON file with detected issues (a list or {\"issues\": [...]})",
                    },
                    "concurrency_limit": {"type": "integer", "minimum": 1},
                    "per_job_timeout": {"type": "number", "description": "Seconds per worker call"},
                    "max_attempts": {"type": "integer", "minimum": 1},
                    "conflict_strategy": {
                        "type": "string",
                        "enum": sorted(STRATEGIES),
                    },
                    "group_by_type": {"type": "boolean"},
                    "prioritize": {"type": "boolean"},
                    "include_validation": {"type": "boolean"},
                },
                "required": ["source_file", "issues_file"],
            },
        ),
        Tool(
            name="a11y_apply_patches",
            description="Apply the validated patches from the last a11y_remediate run to the source file (with backup).",
            inputSchema={
                "type": "object",
                "properties": {
                    "source_file": {
                        "type": "string",
                        "description": "Source file that was remediated",
                    },
                    "dry_run": {
                        "type": "boolean",
                        "description": "Show what would change without writing",
                        "default": False,
                    },
                    "force": {
                        "type": "boolean",
                        "description": "Write even if the patched document has structural problems",
                        "default": False,
                    },
                },
                "required": ["source_file"],
            },
        ),
        Tool(
            name="a11y_rollback",
            description="Restore a source file from the backup taken before patches were applied.",
            inputSchema={
                "type": "object",
                "properties": {
                    "source_file": {
                        "type": "string",
                        "description": "Source file to restore",
                    },
                },
                "required": ["source_file"],
            },
        ),
        Tool(
            name="a11y_instructions",
            description="Show remediation guidance for a WCAG criterion or issue type, or list known criteria.",
            inputSchema={
                "type": "object",
                "properties": {
                    "criterion": {
                        "type": "string",
                        "description": "Criterion key (e.g. 1.1.1) or issue type (e.g. missing-alt)",
                    },
                },
            },
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    try:
        result = await _handle_tool(name, arguments)
        return [TextContent(type="text", text=json.dumps(result, indent=2))]
    except Exception as e:
        logger.exception(f"Tool {name} failed")
        error_response = make_response(False, error=str(e))
        return [TextContent(type="text", text=json.dumps(error_response, indent=2))]


async def _handle_tool(name: str, arguments: dict) -> dict:
    """Route tool calls to handlers."""

    if name == "a11y_set_project":
        return await handle_set_project(arguments["project_path"])
    elif name == "a11y_instructions":
        return await handle_instructions(arguments.get("criterion"))

    # All other tools require project to be set
    if not ctx.is_set:
        return make_response(
            False,
            error="No project set. Use a11y_set_project first.",
            next_step={
                "action": "Set the project first",
                "tool": "a11y_set_project",
                "example": {"project_path": "~/Workspace/mysite"},
            },
        )

    if name == "a11y_remediate":
        return await handle_remediate(
            arguments["source_file"],
            arguments["issues_file"],
            overrides={
                key: arguments.get(key)
                for key in (
                    "concurrency_limit",
                    "per_job_timeout",
                    "max_attempts",
                    "conflict_strategy",
                    "group_by_type",
                    "prioritize",
                    "include_validation",
                )
            },
        )
    elif name == "a11y_apply_patches":
        return await handle_apply_patches(
            arguments["source_file"],
            dry_run=arguments.get("dry_run", False),
            force=arguments.get("force", False),
        )
    elif name == "a11y_rollback":
        return await handle_rollback(arguments["source_file"])
    else:
        return make_response(False, error=f"Unknown tool: {name}")


async def handle_set_project(project_path: str) -> dict:
    """Handle a11y_set_project."""
    try:
        paths = ctx.set_project(project_path)
    except ValueError as e:
        return make_response(False, error=str(e))

    config = load_config(paths.root)
    llm_available, llm_error = check_llm_available()

    return make_response(
        True,
        data={
            "project_root": str(paths.root),
            "config_file": str(paths.config_file) if paths.config_file.exists() else None,
            "results_dir": str(paths.results_dir),
            "conflict_strategy": config.conflict_strategy,
            "concurrency_limit": config.concurrency_limit,
            "llm_available": llm_available,
            "llm_error": llm_error,
        },
        next_step={
            "action": "Remediate a source file",
            "tool": "a11y_remediate",
            "example": {"source_file": "index.html", "issues_file": "issues.json"},
        },
    )


def _log_progress(progress: Progress) -> None:
    logger.info(
        f"Remediation progress: {progress.completed_count}/{progress.total_jobs} "
        f"({progress.percentage}%), {progress.in_flight_count} in flight"
    )


async def handle_remediate(source_file: str, issues_file: str, overrides: dict | None = None) -> dict:
    """Handle a11y_remediate.

    Runs the full remediation pipeline and saves the result next to the
    project config so a11y_apply_patches can pick it up.
    """
    project = ctx.require_project()

    try:
        source_path = resolve_in_project(project.root, source_file)
        issues_path = resolve_in_project(project.root, issues_file)
    except ValueError as e:
        return make_response(False, error=str(e))

    for path in (source_path, issues_path):
        if not path.is_file():
            return make_response(False, error=f"File not found: {path}")

    config = load_config(project.root)

    try:
        issues = IssueParser().parse_file(issues_path)
        options = config.to_options(**(overrides or {}))
    except InvalidInput as e:
        return make_response(False, error=str(e))

    if not issues:
        return make_response(
            True,
            data={"source_file": str(source_path), "message": "No issues to remediate", "patches": []},
        )

    source_text = source_path.read_text(encoding="utf-8")
    request = RemediationRequest(issues=issues, source_text=source_text, options=options)

    engine = build_engine(config)
    try:
        result = await engine.remediate(request, on_progress=_log_progress)
    except InvalidInput as e:
        return make_response(False, error=str(e))

    project.results_dir.mkdir(parents=True, exist_ok=True)
    result_file = result_file_for(project.results_dir, source_path)
    payload = {
        "source_file": source_path.relative_to(project.root).as_posix(),
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "options": {
            "concurrency_limit": options.concurrency_limit,
            "per_job_timeout": options.per_job_timeout,
            "max_attempts": options.max_attempts,
            "conflict_strategy": options.conflict_strategy,
            "group_by_type": options.group_by_type,
            "prioritize": options.prioritize,
            "include_validation": options.include_validation,
        },
        **result.to_dict(),
    }
    result_file.write_text(json.dumps(payload, indent=2))

    summary = result.summary
    if summary["needs_review"] or result.validation_errors:
        next_step = {
            "action": "Review flagged patches before applying",
            "result_file": str(result_file),
            "needs_review": summary["needs_review"],
            "validation_errors": result.validation_errors,
        }
    elif summary["successful"]:
        next_step = {
            "action": "Apply the validated patches",
            "tool": "a11y_apply_patches",
            "args": {"source_file": source_file},
        }
    else:
        next_step = {
            "action": "No patches were produced. Check failed jobs in the result file.",
            "result_file": str(result_file),
        }

    return make_response(
        True,
        data={
            "source_file": str(source_path),
            "result_file": str(result_file),
            "summary": summary,
            "statistics": result.statistics.to_dict(),
            "conflict_count": len(result.conflicts),
            "validation_errors": result.validation_errors,
            "patches": [
                {
                    "line_number": p.line_number,
                    "status": p.status,
                    "criterion": p.criterion_key,
                    "confidence": p.confidence,
                    "validated": p.validated,
                    "after": p.after_text,
                    "error": p.error,
                }
                for p in result.patches
            ],
        },
        next_step=next_step,
    )


async def handle_apply_patches(source_file: str, dry_run: bool = False, force: bool = False) -> dict:
    """Handle a11y_apply_patches.

    Patches are re-validated against the file as it is now, so lines edited
    since a11y_remediate ran are skipped rather than overwritten.
    """
    project = ctx.require_project()

    try:
        source_path = resolve_in_project(project.root, source_file)
    except ValueError as e:
        return make_response(False, error=str(e))

    result_file = result_file_for(project.results_dir, source_path)
    if not result_file.exists():
        return make_response(
            False,
            error=f"No remediation result found: {result_file}. Run a11y_remediate first.",
            next_step={
                "action": "Run remediation first",
                "tool": "a11y_remediate",
                "args": {"source_file": source_file},
            },
        )
    if not source_path.is_file():
        return make_response(False, error=f"File not found: {source_path}")

    saved = json.loads(result_file.read_text())
    patches = [Patch.from_dict(p) for p in saved.get("patches", [])]
    applicable = [p for p in patches if p.is_applicable]
    if not applicable:
        return make_response(
            True,
            data={"source_file": str(source_path), "applied_count": 0, "message": "No applicable patches"},
        )

    current_source = source_path.read_text(encoding="utf-8")
    report = PatchValidator().validate(applicable, current_source)
    applied = report.applied
    skipped = [p for p in report.patches if not (p.is_applicable and p.validated)]

    data = {
        "source_file": str(source_path),
        "dry_run": dry_run,
        "applied_count": len(applied),
        "skipped_count": len(skipped),
        "validation_errors": report.error_messages,
        "applied": [
            {"line_number": p.line_number, "before": p.before_text, "after": p.after_text}
            for p in applied
        ],
        "skipped": [
            {"line_number": p.line_number, "observed": p.observed_line, "error": p.error}
            for p in skipped
        ],
    }

    if dry_run or not applied:
        return make_response(
            True,
            data=data,
            next_step={
                "action": "Apply for real",
                "tool": "a11y_apply_patches",
                "args": {"source_file": source_file, "dry_run": False},
            } if dry_run and applied else None,
        )

    if report.errors and not force:
        return make_response(
            False,
            data=data,
            error="Patched document has structural problems. Fix them or pass force=true.",
        )

    config = load_config(project.root)
    problems = SafetyGuard(project.root, config.safety).check(source_path)
    if problems:
        return make_response(
            False,
            data=data,
            error="; ".join(problems),
            next_step={
                "action": "Commit or stash changes before applying patches",
                "tool": "run_shell_command",
                "args": {"command": "git status"},
            },
        )

    backups = BackupManager(project.root)
    modifier = CodeModifier(project.root, backups)
    backup_path = modifier.write_file(source_path, report.patched_source)
    data["backup_file"] = str(backup_path) if backup_path else None
    data["pruned_backups"] = backups.cleanup_old_backups(config.safety.backup_retention_days * 86400)

    return make_response(
        True,
        data=data,
        next_step={
            "action": "Re-run the accessibility checker; roll back if the page regressed",
            "tool": "a11y_rollback",
            "args": {"source_file": source_file},
        },
    )


async def handle_rollback(source_file: str) -> dict:
    """Handle a11y_rollback."""
    project = ctx.require_project()

    try:
        source_path = resolve_in_project(project.root, source_file)
    except ValueError as e:
        return make_response(False, error=str(e))

    modifier = CodeModifier(project.root, BackupManager(project.root))
    try:
        backup_path = modifier.rollback(source_path)
    except BackupNotFoundError as e:
        return make_response(False, error=str(e))

    return make_response(
        True,
        data={"source_file": str(source_path), "restored_from": str(backup_path)},
    )


async def handle_instructions(criterion: str | None = None) -> dict:
    """Handle a11y_instructions."""
    if not criterion:
        return make_response(True, data={"criteria": known_criteria()})

    return make_response(
        True,
        data={"criterion": criterion, "instructions": get_instructions(criterion)},
    )


def main():
    """Run the MCP server."""
    import asyncio

    logging.basicConfig(level=logging.INFO)

    async def run():
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())

    asyncio.run(run())


if __name__ == "__main__":
    main()
