"""Systemd provider for the corosync and pve-cluster units."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .process import CommandError, CommandResult, CommandRunner, FailurePolicy


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Drive systemd units through ``systemctl``."""

    runner: CommandRunner
    systemctl_bin: str = "systemctl"

    def start(
        self,
        *units: str,
        policy: FailurePolicy = FailurePolicy.REQUIRED,
    ) -> CommandResult:
        """Start *units*."""
        return self._systemctl("start", units, policy=policy)

    def stop(
        self,
        *units: str,
        policy: FailurePolicy = FailurePolicy.REQUIRED,
    ) -> CommandResult:
        """Stop *units*."""
        return self._systemctl("stop", units, policy=policy)

    def restart(
        self,
        *units: str,
        policy: FailurePolicy = FailurePolicy.REQUIRED,
    ) -> CommandResult:
        """Restart *units*."""
        return self._systemctl("restart", units, policy=policy)

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        units: Sequence[str],
        *,
        policy: FailurePolicy,
    ) -> CommandResult:
        args = [self.systemctl_bin, command, *units]
        try:
            return self.runner.run(
                args,
                policy=policy,
                error_prefix=f"{self.systemctl_bin} {command}",
            )
        except CommandError as exc:
            raise SystemdError(str(exc)) from exc


__all__ = ["SystemdProvider", "SystemdError"]
