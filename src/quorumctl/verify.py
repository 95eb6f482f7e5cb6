"""Read-only health report run after a mutation."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .providers.pmxcfs import PmxcfsProvider
from .providers.quorum import QuorumProvider


class CheckStatus(str, Enum):
    """Outcome of a single verification check."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @property
    def is_failure(self) -> bool:
        """Return ``True`` when the status represents a failure."""
        return self is CheckStatus.RED


@dataclass(slots=True, frozen=True)
class VerificationCheck:
    """One line of the verification report."""

    id: str
    status: CheckStatus
    message: str
    output: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "status": self.status.value,
            "message": self.message,
            "output": self.output,
        }


@dataclass(slots=True)
class VerificationReport:
    """Ordered checks collected by :class:`Verifier`."""

    checks: list[VerificationCheck] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        """Return ``True`` when no check is red."""
        return not any(check.status.is_failure for check in self.checks)

    def counts(self) -> dict[str, int]:
        """Return the number of checks per status."""
        totals = {status.value: 0 for status in CheckStatus}
        for check in self.checks:
            totals[check.status.value] += 1
        return totals

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "healthy": self.healthy,
            "counts": self.counts(),
            "checks": [check.to_dict() for check in self.checks],
        }


@dataclass(slots=True)
class Verifier:
    """Inspect mount and quorum state; never raises and never mutates."""

    pmxcfs: PmxcfsProvider
    quorum: QuorumProvider
    mount_path: Path = Path("/etc/pve")
    expected_fstype: str = "fuse"

    def run(self) -> VerificationReport:
        """Collect every check into a report."""
        return VerificationReport(
            checks=[self._mount_check(), self._cluster_status_check(), self._quorate_check()]
        )

    def _mount_check(self) -> VerificationCheck:
        info = self.pmxcfs.mount_info(self.mount_path)
        if info is None:
            return VerificationCheck(
                "mount", CheckStatus.RED, f"{self.mount_path} is not mounted."
            )
        detail = f"{info.target} {info.source} {info.fstype} {','.join(info.options)}".strip()
        if info.fstype != self.expected_fstype and not info.fstype.startswith(
            f"{self.expected_fstype}."
        ):
            return VerificationCheck(
                "mount",
                CheckStatus.RED,
                f"{self.mount_path} is mounted as {info.fstype!r}.",
                detail,
            )
        if info.read_only:
            return VerificationCheck(
                "mount", CheckStatus.RED, f"{self.mount_path} is mounted read-only.", detail
            )
        return VerificationCheck(
            "mount", CheckStatus.GREEN, f"{self.mount_path} is mounted read-write.", detail
        )

    def _cluster_status_check(self) -> VerificationCheck:
        result = self.quorum.cluster_status()
        if result.ok:
            return VerificationCheck(
                "pvecm-status", CheckStatus.GREEN, "pvecm status succeeded.", result.stdout.strip()
            )
        return VerificationCheck(
            "pvecm-status",
            CheckStatus.YELLOW,
            f"pvecm status exited {result.returncode}.",
            result.output(),
        )

    def _quorate_check(self) -> VerificationCheck:
        result = self.quorum.quorumtool_status()
        if result is None:
            return VerificationCheck(
                "quorum", CheckStatus.YELLOW, "corosync-quorumtool is not installed."
            )
        quorate = parse_quorate(result.stdout)
        if quorate is True:
            return VerificationCheck(
                "quorum", CheckStatus.GREEN, "Cluster is quorate.", result.stdout.strip()
            )
        if quorate is False:
            return VerificationCheck(
                "quorum", CheckStatus.RED, "Cluster is not quorate.", result.stdout.strip()
            )
        if result.ok:
            return VerificationCheck(
                "quorum",
                CheckStatus.YELLOW,
                "Quorum state not reported by corosync-quorumtool.",
                result.stdout.strip(),
            )
        return VerificationCheck(
            "quorum",
            CheckStatus.RED,
            f"corosync-quorumtool exited {result.returncode}.",
            result.output(),
        )


def parse_quorate(output: str) -> bool | None:
    """Return the ``Quorate:`` flag from ``corosync-quorumtool -s`` output."""
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip().lower() == "quorate":
            return value.strip().lower().startswith("yes")
    return None


__all__ = [
    "CheckStatus",
    "VerificationCheck",
    "VerificationReport",
    "Verifier",
    "parse_quorate",
]
