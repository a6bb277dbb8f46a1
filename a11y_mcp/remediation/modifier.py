"""Writes patched source to disk with backups and rollback."""

import logging
import os
import shutil
import tempfile
import time
import uuid
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class BackupNotFoundError(Exception):
    """Raised when a file has no backup to restore from."""
    pass


class BackupManager:
    """Keeps timestamped copies of files before they are overwritten."""

    def __init__(self, project_root: Path, backup_dir: str = ".a11y/backups"):
        self.project_root = project_root.resolve()
        self.backup_dir = self.project_root / backup_dir
        self.active_backups: dict[str, Path] = {}

    def _backup_prefix(self, file_path: Path) -> str:
        return file_path.resolve().relative_to(self.project_root).as_posix().replace("/", "_")

    def create_backup(self, file_path: Path) -> Path:
        """Copy a file into the backup directory under a unique name."""
        if not file_path.exists():
            raise FileNotFoundError(f"Cannot backup non-existent file: {file_path}")

        self.backup_dir.mkdir(parents=True, exist_ok=True)

        timestamp = int(time.time() * 1000)
        backup_name = f"{self._backup_prefix(file_path)}_{timestamp}_{uuid.uuid4().hex[:8]}.bak"
        backup_path = self.backup_dir / backup_name

        shutil.copy2(file_path, backup_path)
        self.active_backups[str(file_path.resolve())] = backup_path
        logger.debug(f"Backed up {file_path} to {backup_path}")

        return backup_path

    def latest_backup(self, file_path: Path) -> Optional[Path]:
        """Find the most recent backup for a file.

        Checks the in-memory record first, then the backup directory, so a
        rollback works from a fresh process.
        """
        active = self.active_backups.get(str(file_path.resolve()))
        if active and active.exists():
            return active

        if not self.backup_dir.exists():
            return None

        candidates = list(self.backup_dir.glob(f"{self._backup_prefix(file_path)}_*.bak"))
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.stat().st_mtime)

    def restore_backup(self, file_path: Path) -> Path:
        """Restore a file from its latest backup.

        Returns:
            The backup that was restored

        Raises:
            BackupNotFoundError: If no backup exists for the file
        """
        backup_path = self.latest_backup(file_path)
        if backup_path is None:
            raise BackupNotFoundError(f"No backup found for: {file_path}")

        shutil.copy2(backup_path, file_path)
        logger.info(f"Restored {file_path} from {backup_path.name}")
        return backup_path

    def cleanup_old_backups(self, max_age_seconds: int = 86400) -> int:
        """Delete backups older than max_age, keeping active ones.

        Returns:
            Number of backups removed
        """
        if not self.backup_dir.exists():
            return 0

        active_paths = {str(p.resolve()) for p in self.active_backups.values()}
        now = time.time()
        removed = 0
        for backup in self.backup_dir.glob("*.bak"):
            if str(backup.resolve()) in active_paths:
                continue
            if now - backup.stat().st_mtime > max_age_seconds:
                try:
                    backup.unlink()
                    removed += 1
                except OSError as e:
                    logger.warning(f"Could not remove old backup {backup}: {e}")
        return removed


class CodeModifier:
    """Writes files inside the project root atomically, backing up first."""

    def __init__(self, project_root: Path, backup_manager: Optional[BackupManager] = None):
        self.project_root = project_root.resolve()
        self.backup_manager = backup_manager or BackupManager(self.project_root)

    def validate_path(self, file_path: Path) -> Path:
        """Resolve a path, refusing anything outside the project root."""
        resolved = file_path.resolve()
        try:
            resolved.relative_to(self.project_root)
            return resolved
        except ValueError:
            raise PermissionError(f"Access denied: {file_path} is outside project root")

    def write_file(self, file_path: Path, content: str) -> Optional[Path]:
        """Write content atomically, returning the backup path if one was made."""
        target_path = self.validate_path(file_path)

        backup_path = None
        if target_path.exists():
            backup_path = self.backup_manager.create_backup(target_path)

        fd, temp_path = tempfile.mkstemp(
            dir=target_path.parent,
            prefix=f".{target_path.name}",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, target_path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

        logger.info(f"Wrote {len(content)} chars to {target_path}")
        return backup_path

    def rollback(self, file_path: Path) -> Path:
        """Restore a file to its state before the last write."""
        return self.backup_manager.restore_backup(self.validate_path(file_path))
