"""Provider for corosync quorum tooling (``pvecm``, ``corosync-quorumtool``)."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .process import CommandResult, CommandRunner, FailurePolicy


@dataclass(slots=True)
class QuorumProvider:
    """Query and override quorum state, and syntax-check corosync configs."""

    runner: CommandRunner
    pvecm_bin: str = "pvecm"
    quorumtool_bin: str = "corosync-quorumtool"
    corosync_bin: str = "corosync"

    def set_expected_votes(self, votes: int = 1) -> CommandResult | None:
        """Lower the runtime expected votes; ``None`` when pvecm is absent."""
        if not self.runner.exists(self.pvecm_bin):
            return None
        return self.runner.run(
            [self.pvecm_bin, "expected", str(votes)],
            policy=FailurePolicy.BEST_EFFORT,
        )

    def cluster_status(self) -> CommandResult:
        """Return ``pvecm status`` output."""
        return self.runner.run([self.pvecm_bin, "status"], policy=FailurePolicy.BEST_EFFORT)

    def quorumtool_status(self) -> CommandResult | None:
        """Return ``corosync-quorumtool -s`` output when the tool exists."""
        if not self.runner.exists(self.quorumtool_bin):
            return None
        return self.runner.run(
            [self.quorumtool_bin, "-s"],
            policy=FailurePolicy.BEST_EFFORT,
        )

    def validator_available(self) -> bool:
        """Return ``True`` when ``corosync`` can be used to check syntax."""
        return self.runner.exists(self.corosync_bin)

    def check_syntax(self, path: Path) -> CommandResult:
        """Run ``corosync -c <path> -t`` against a staged configuration."""
        return self.runner.run(
            [self.corosync_bin, "-c", str(path), "-t"],
            policy=FailurePolicy.BEST_EFFORT,
        )


__all__ = ["QuorumProvider"]
