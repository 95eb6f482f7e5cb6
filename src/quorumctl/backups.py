"""Timestamped snapshots of the corosync configuration."""
from __future__ import annotations

import re
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .errors import BackupNotFoundError, RecoveryError

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
BACKUP_SUFFIX = ".bak"


class BackupWriteError(RecoveryError):
    """Raised when a snapshot cannot be written."""


@dataclass(slots=True, frozen=True)
class BackupEntry:
    """A snapshot found on disk."""

    path: Path
    timestamp: str
    size: int

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"path": str(self.path), "timestamp": self.timestamp, "size": self.size}


@dataclass(slots=True)
class BackupManager:
    """Copy the live configuration aside and back again.

    Snapshots are never rotated or deleted; operators clean ``backup_dir``
    themselves.
    """

    backup_dir: Path
    clock: Callable[[], datetime] = field(default=datetime.now)

    def __post_init__(self) -> None:
        """Normalise the backup directory path."""
        self.backup_dir = Path(self.backup_dir).expanduser()

    def snapshot(self, path: Path) -> Path:
        """Copy *path* to ``<backup_dir>/<name>.<YYYYMMDD-HHMMSS>.bak``.

        ``shutil.copy2`` keeps timestamps and permission bits. A second
        snapshot within the same second gets a ``-N`` suffix instead of
        overwriting the first.
        """
        destination = self._allocate(path.name)
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, destination)
        except OSError as exc:
            raise BackupWriteError(f"Failed to back up {path} to {destination}: {exc}") from exc
        return destination

    def restore(self, backup: Path, path: Path) -> None:
        """Copy *backup* over *path*; the backup content is not validated."""
        self.require(backup)
        try:
            shutil.copyfile(backup, path)
        except OSError as exc:
            raise BackupWriteError(f"Failed to restore {backup} to {path}: {exc}") from exc

    def require(self, backup: Path) -> None:
        """Raise :class:`BackupNotFoundError` unless *backup* is a file."""
        if not backup.is_file():
            raise BackupNotFoundError(
                f"Backup file not found: {backup}",
                hints=(f"List snapshots with: quorumctl --list-backups ({self.backup_dir})",),
            )

    def list_snapshots(self, path: Path) -> list[BackupEntry]:
        """Return snapshots of *path*, oldest first."""
        if not self.backup_dir.is_dir():
            return []
        pattern = re.compile(
            rf"^{re.escape(path.name)}\.(\d{{8}}-\d{{6}})(?:-(\d+))?{re.escape(BACKUP_SUFFIX)}$"
        )
        found: list[tuple[str, int, BackupEntry]] = []
        for candidate in self.backup_dir.iterdir():
            match = pattern.match(candidate.name)
            if match is None or not candidate.is_file():
                continue
            timestamp = match.group(1)
            sequence = int(match.group(2) or 0)
            entry = BackupEntry(path=candidate, timestamp=timestamp, size=candidate.stat().st_size)
            found.append((timestamp, sequence, entry))
        found.sort(key=lambda item: (item[0], item[1]))
        return [entry for _, _, entry in found]

    def _allocate(self, name: str) -> Path:
        stamp = self.clock().strftime(TIMESTAMP_FORMAT)
        candidate = self.backup_dir / f"{name}.{stamp}{BACKUP_SUFFIX}"
        counter = 1
        while candidate.exists():
            candidate = self.backup_dir / f"{name}.{stamp}-{counter}{BACKUP_SUFFIX}"
            counter += 1
        return candidate


__all__ = ["BackupEntry", "BackupManager", "BackupWriteError", "TIMESTAMP_FORMAT"]
