"""Safety checks run before patched source is written to disk."""

import logging
import subprocess
from pathlib import Path

from .config import SafetyConfig

logger = logging.getLogger(__name__)


class SafetyGuard:
    """Refuses writes to dirty working trees or oversized files."""

    def __init__(self, project_root: Path, config: SafetyConfig | None = None):
        self.project_root = project_root
        self.config = config or SafetyConfig()

    def check_git_status(self) -> bool:
        """Check if the git working directory is clean.

        Returns:
            True if clean, False otherwise (including outside a git repo)
        """
        try:
            result = subprocess.run(
                ["git", "status", "--porcelain", "-u"],
                cwd=self.project_root,
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (subprocess.SubprocessError, FileNotFoundError):
            return False
        if result.returncode != 0:
            return False
        return len(result.stdout.strip()) == 0

    def validate_file_size(self, file_path: Path, max_kb: int | None = None) -> bool:
        """Check if a file is small enough to modify safely."""
        if not file_path.exists():
            return True
        limit = self.config.max_file_size_kb if max_kb is None else max_kb
        return file_path.stat().st_size / 1024 <= limit

    def check(self, file_path: Path) -> list[str]:
        """Run all configured checks for a write to file_path.

        Returns:
            Human-readable reasons the write is unsafe; empty if safe
        """
        problems = []
        if self.config.require_clean_git and not self.check_git_status():
            problems.append("Git working directory is not clean (or not a git repository)")
        if not self.validate_file_size(file_path):
            problems.append(f"{file_path.name} exceeds {self.config.max_file_size_kb}KB")
        for problem in problems:
            logger.warning(f"Safety check failed: {problem}")
        return problems
