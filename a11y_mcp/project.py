"""Project context management for the a11y MCP server."""

import re
from dataclasses import dataclass
from pathlib import Path


@dataclass
class ProjectPaths:
    """Resolved paths for a remediation project."""
    root: Path
    a11y_dir: Path
    config_file: Path
    results_dir: Path
    backups_dir: Path


class ProjectContext:
    """Manages the active project context."""

    def __init__(self):
        self._project: ProjectPaths | None = None

    @property
    def project(self) -> ProjectPaths | None:
        return self._project

    @property
    def is_set(self) -> bool:
        return self._project is not None

    def set_project(self, project_path: str) -> ProjectPaths:
        """Validate and set the active project.

        Args:
            project_path: Path to project root directory

        Returns:
            ProjectPaths with resolved paths

        Raises:
            ValueError: If the directory does not exist
        """
        root = Path(project_path).expanduser().resolve()

        if not root.is_dir():
            raise ValueError(f"Project root does not exist: {root}")

        a11y_dir = root / ".a11y"
        self._project = ProjectPaths(
            root=root,
            a11y_dir=a11y_dir,
            config_file=a11y_dir / "config.yaml",
            results_dir=a11y_dir / "results",
            backups_dir=a11y_dir / "backups",
        )

        return self._project

    def require_project(self) -> ProjectPaths:
        """Get current project, raising if not set."""
        if not self._project:
            raise ValueError("No project set. Use a11y_set_project first.")
        return self._project

    def clear(self):
        """Clear the current project context."""
        self._project = None


def resolve_in_project(root: Path, relative_path: str) -> Path:
    """Resolve a user-supplied path, refusing anything outside root.

    Raises:
        ValueError: If the path escapes the project root
    """
    candidate = Path(relative_path).expanduser()
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    try:
        resolved.relative_to(root)
    except ValueError:
        raise ValueError(f"Path is outside the project root: {relative_path}")
    return resolved


def result_file_for(results_dir: Path, source_file: Path) -> Path:
    """Result JSON location for a source file (e.g. index.html -> index-remediation.json)."""
    stem = re.sub(r"[^A-Za-z0-9_.-]", "-", source_file.stem) or "source"
    return results_dir / f"{stem}-remediation.json"
