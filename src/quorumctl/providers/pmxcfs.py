"""Provider for the Proxmox cluster filesystem daemon (pmxcfs)."""
from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path

from .process import CommandResult, CommandRunner, FailurePolicy


@dataclass(slots=True, frozen=True)
class MountInfo:
    """A single ``findmnt`` row."""

    target: str
    source: str
    fstype: str
    options: tuple[str, ...]

    @property
    def read_only(self) -> bool:
        """Return ``True`` when the mount carries the ``ro`` flag."""
        return "ro" in self.options


def parse_findmnt_pairs(output: str) -> MountInfo | None:
    """Parse the first row of ``findmnt -P`` output."""
    for line in output.splitlines():
        if not line.strip():
            continue
        fields: dict[str, str] = {}
        for token in shlex.split(line):
            key, sep, value = token.partition("=")
            if sep:
                fields[key.upper()] = value
        if "FSTYPE" not in fields:
            continue
        options = tuple(
            option for option in fields.get("OPTIONS", "").split(",") if option
        )
        return MountInfo(
            target=fields.get("TARGET", ""),
            source=fields.get("SOURCE", ""),
            fstype=fields["FSTYPE"],
            options=options,
        )
    return None


@dataclass(slots=True)
class PmxcfsProvider:
    """Launch, terminate and inspect pmxcfs outside of systemd."""

    runner: CommandRunner
    pmxcfs_bin: str = "pmxcfs"
    pkill_bin: str = "pkill"
    findmnt_bin: str = "findmnt"
    process_name: str = "pmxcfs"

    def start_local(self) -> CommandResult:
        """Start pmxcfs in local mode (``-l``); it daemonizes immediately.

        The exit status says little about whether the mount attached, so the
        launch is best-effort and callers confirm it with a write probe.
        """
        return self.runner.run([self.pmxcfs_bin, "-l"], policy=FailurePolicy.BEST_EFFORT)

    def terminate(self) -> CommandResult:
        """Kill any pmxcfs instance started out-of-band (best-effort)."""
        return self.runner.run(
            [self.pkill_bin, "-x", self.process_name],
            policy=FailurePolicy.BEST_EFFORT,
        )

    def mount_info(self, path: Path) -> MountInfo | None:
        """Return the mount backing *path*, or ``None`` when unknown."""
        result = self.mount_status(path)
        if not result.ok:
            return None
        return parse_findmnt_pairs(result.stdout)

    def mount_status(self, path: Path) -> CommandResult:
        """Run ``findmnt`` for the mount containing *path*."""
        return self.runner.run(
            [
                self.findmnt_bin,
                "-n",
                "-P",
                "-o",
                "TARGET,SOURCE,FSTYPE,OPTIONS",
                "--target",
                str(path),
            ],
            policy=FailurePolicy.BEST_EFFORT,
        )


__all__ = ["MountInfo", "PmxcfsProvider", "parse_findmnt_pairs"]
