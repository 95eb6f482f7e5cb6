"""Error kinds raised by the recovery workflow.

Every error carries a short operator-facing message plus ``hints``: the
commands or log sources worth checking next. The CLI prints both and exits
with :attr:`RecoveryError.exit_code`.
"""
from __future__ import annotations

from collections.abc import Sequence

from .exit_codes import ExitCode

JOURNAL_HINT = "Logs : journalctl -u pve-cluster -u corosync -b"
CLUSTER_STATUS_HINT = "Check: systemctl status pve-cluster"


class RecoveryError(RuntimeError):
    """Base class for failures that abort a quorumctl operation."""

    exit_code: ExitCode = ExitCode.ENVIRONMENT

    def __init__(self, message: str, *, hints: Sequence[str] = ()) -> None:
        """Store *message* and operator *hints*."""
        super().__init__(message)
        self.message = message
        self.hints: tuple[str, ...] = tuple(hints)


class PermissionDeniedError(RecoveryError):
    """Raised when the caller lacks root privileges."""


class ConfigNotFoundError(RecoveryError):
    """Raised when the corosync configuration file is missing."""


class ConfigNotWritableError(RecoveryError):
    """Raised when the corosync configuration cannot be written."""


class NotMountedError(RecoveryError):
    """Raised when the clustered filesystem is not mounted where expected."""


class ReadOnlyMountError(RecoveryError):
    """Raised when the clustered filesystem is mounted read-only."""


class WriteTimeoutError(RecoveryError):
    """Raised when write access does not appear within the polling window."""


class MalformedConfigError(RecoveryError):
    """Raised when existing configuration text cannot be parsed."""

    exit_code = ExitCode.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        line: int | None = None,
        hints: Sequence[str] = (),
    ) -> None:
        """Attach the offending 1-based *line* number when known."""
        if line is not None:
            message = f"{message} (line {line})"
        super().__init__(message, hints=hints)
        self.line = line


class InvalidGeneratedConfigError(RecoveryError):
    """Raised when a rendered configuration fails validation."""

    exit_code = ExitCode.VALIDATION


class BackupNotFoundError(RecoveryError):
    """Raised when a restore is requested from a missing backup."""

    exit_code = ExitCode.VALIDATION


class ServiceTransitionError(RecoveryError):
    """Raised when a service lifecycle step fails."""

    exit_code = ExitCode.PROVIDER


__all__ = [
    "CLUSTER_STATUS_HINT",
    "JOURNAL_HINT",
    "BackupNotFoundError",
    "ConfigNotFoundError",
    "ConfigNotWritableError",
    "InvalidGeneratedConfigError",
    "MalformedConfigError",
    "NotMountedError",
    "PermissionDeniedError",
    "ReadOnlyMountError",
    "RecoveryError",
    "ServiceTransitionError",
    "WriteTimeoutError",
]
