"""Privilege, mount and write-access checks run before any mutation."""
from __future__ import annotations

import os
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .errors import (
    CLUSTER_STATUS_HINT,
    JOURNAL_HINT,
    ConfigNotFoundError,
    ConfigNotWritableError,
    NotMountedError,
    PermissionDeniedError,
    ReadOnlyMountError,
    WriteTimeoutError,
)
from .providers.pmxcfs import MountInfo, PmxcfsProvider
from .retry import RetryPolicy

PROBE_PREFIX = ".quorumctl-write-test."
RESTART_CLUSTER_HINT = "Try  : systemctl restart pve-cluster"


def _current_euid() -> int:
    return os.geteuid()


@dataclass(slots=True)
class PreflightGate:
    """Verify the node is in a state where the configuration can be changed.

    The gate never trusts mount flags alone: :meth:`probe_write` creates and
    removes a real file, because pmxcfs keeps ``/etc/pve`` mounted ``rw``
    while refusing writes without quorum.
    """

    pmxcfs: PmxcfsProvider
    expected_fstype: str = "fuse"
    verify_mount: bool = True
    geteuid: Callable[[], int] = field(default=_current_euid)
    sleep: Callable[[float], None] = field(default=time.sleep)

    def require_root(self) -> None:
        """Fail fast unless running with an effective UID of 0."""
        if self.geteuid() != 0:
            raise PermissionDeniedError(
                "This operation must be run as root.",
                hints=("Re-run with: sudo quorumctl ...",),
            )

    def check_config_file(self, path: Path) -> None:
        """Ensure the configuration file exists and can be written."""
        if not path.is_file():
            raise ConfigNotFoundError(
                f"{path} not found.",
                hints=("Is this node in a cluster?",),
            )
        if not os.access(path, os.W_OK):
            raise ConfigNotWritableError(
                f"{path} is not writable.",
                hints=(CLUSTER_STATUS_HINT, JOURNAL_HINT),
            )

    def check_mount(self, path: Path) -> MountInfo:
        """Ensure the filesystem holding *path* is the expected rw mount."""
        directory = _directory_of(path)
        info = self.pmxcfs.mount_info(directory)
        if info is None:
            raise NotMountedError(
                f"No mount found for {directory}.",
                hints=(RESTART_CLUSTER_HINT, CLUSTER_STATUS_HINT),
            )
        if not _fstype_matches(info.fstype, self.expected_fstype):
            raise NotMountedError(
                f"{info.target or directory} is mounted as {info.fstype!r}, "
                f"expected {self.expected_fstype!r}.",
                hints=(RESTART_CLUSTER_HINT, CLUSTER_STATUS_HINT),
            )
        if info.read_only:
            raise ReadOnlyMountError(
                f"{info.target or directory} is mounted read-only.",
                hints=(RESTART_CLUSTER_HINT, JOURNAL_HINT),
            )
        return info

    def probe_write(self, directory: Path) -> bool:
        """Create and delete a uniquely named file inside *directory*."""
        probe = directory / f"{PROBE_PREFIX}{secrets.token_hex(8)}"
        try:
            fd = os.open(probe, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except OSError:
            return False
        try:
            os.write(fd, b"quorumctl\n")
        except OSError:
            return False
        finally:
            os.close(fd)
            probe.unlink(missing_ok=True)
        return True

    def wait_writable(self, directory: Path, *, poll: RetryPolicy) -> int:
        """Poll :meth:`probe_write` until it succeeds; return the attempt."""
        attempt = poll.poll(lambda: self.probe_write(directory), sleep=self.sleep)
        if attempt is None:
            attempts = "attempt" if poll.attempts == 1 else "attempts"
            raise WriteTimeoutError(
                f"{directory} did not become writable after {poll.attempts} {attempts} "
                f"({poll.timeout:g}s).",
                hints=(CLUSTER_STATUS_HINT, JOURNAL_HINT),
            )
        return attempt

    def check_writable(self, path: Path, *, poll: RetryPolicy) -> int:
        """Run the mount check (when enabled) and the polling write test."""
        directory = _directory_of(path)
        if self.verify_mount:
            self.check_mount(directory)
        if poll.attempts == 1:
            if not self.probe_write(directory):
                raise ConfigNotWritableError(
                    f"{directory} rejected a test write.",
                    hints=(CLUSTER_STATUS_HINT, JOURNAL_HINT),
                )
            return 1
        return self.wait_writable(directory, poll=poll)


def _directory_of(path: Path) -> Path:
    return path if path.is_dir() else path.parent


def _fstype_matches(actual: str, expected: str) -> bool:
    return actual == expected or actual.startswith(f"{expected}.")


__all__ = ["PROBE_PREFIX", "PreflightGate"]
