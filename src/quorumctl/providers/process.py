"""Typed execution of external commands."""
from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

MISSING_BINARY_RC = 127
NOT_EXECUTABLE_RC = 126


class FailurePolicy(str, Enum):
    """How a caller treats a non-zero exit status."""

    REQUIRED = "required"
    BEST_EFFORT = "best-effort"


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Outcome of an external command (``Ok`` or ``Failed(rc, stderr)``)."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Return ``True`` when the command exited with status zero."""
        return self.returncode == 0

    @property
    def command(self) -> str:
        """Return the command line as a single string."""
        return " ".join(self.args)

    def output(self) -> str:
        """Return the most useful text emitted by the command."""
        return self.stderr.strip() or self.stdout.strip() or "no output"

    def detail(self) -> str:
        """Summarise the result for operation log steps."""
        detail = f"command={self.command} rc={self.returncode}"
        stderr = self.stderr.strip()
        if stderr:
            detail += f" stderr={stderr}"
        return detail


class CommandError(RuntimeError):
    """Raised when a required command fails."""

    def __init__(self, message: str, result: CommandResult) -> None:
        """Keep the failing *result* for callers that want details."""
        super().__init__(message)
        self.result = result


@dataclass(slots=True)
class CommandRunner:
    """Run commands synchronously and capture their output."""

    env: dict[str, str] | None = None

    def run(
        self,
        args: Sequence[str],
        *,
        policy: FailurePolicy,
        error_prefix: str | None = None,
    ) -> CommandResult:
        """Run *args*; raise :class:`CommandError` on failure when REQUIRED.

        A missing executable is reported as exit status 127, mirroring the
        shell, so best-effort callers see it as an ordinary failure.
        """
        argv = [str(item) for item in args]
        try:
            completed = subprocess.run(  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                check=False,
                env=self.env,
            )
        except FileNotFoundError as exc:
            result = CommandResult(
                args=tuple(argv),
                returncode=MISSING_BINARY_RC,
                stderr=f"{argv[0]} not found: {exc}",
            )
        except PermissionError as exc:
            result = CommandResult(
                args=tuple(argv),
                returncode=NOT_EXECUTABLE_RC,
                stderr=f"{argv[0]} is not executable: {exc}",
            )
        else:
            result = CommandResult(
                args=tuple(argv),
                returncode=completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
            )
        if policy is FailurePolicy.REQUIRED and not result.ok:
            prefix = error_prefix or result.command
            raise CommandError(
                f"{prefix} failed (exit {result.returncode}): {result.output()}",
                result,
            )
        return result

    def exists(self, command: str) -> bool:
        """Return ``True`` when *command* resolves to an executable."""
        path = Path(command)
        if path.is_absolute() or (path.parent and str(path.parent) not in {"", "."}):
            return path.exists() and os.access(path, os.X_OK)
        search_path = None if self.env is None else self.env.get("PATH")
        resolved = shutil.which(command, path=search_path)
        return resolved is not None and os.access(resolved, os.X_OK)


__all__ = [
    "MISSING_BINARY_RC",
    "NOT_EXECUTABLE_RC",
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "FailurePolicy",
]
