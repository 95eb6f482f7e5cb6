"""Tests for the post-mutation verifier."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from quorumctl.providers.pmxcfs import PmxcfsProvider
from quorumctl.providers.quorum import QuorumProvider
from quorumctl.verify import CheckStatus, Verifier, parse_quorate

FINDMNT_RW = 'TARGET="/etc/pve" SOURCE="/dev/fuse" FSTYPE="fuse" OPTIONS="rw"\n'

QUORUMTOOL_OK = """\
Quorum information
------------------
Nodes:            1
Quorate:          Yes
"""


def _verifier(runner: Any) -> Verifier:
    return Verifier(PmxcfsProvider(runner), QuorumProvider(runner), mount_path=Path("/etc/pve"))


def test_parse_quorate() -> None:
    """The ``Quorate:`` line is read case-insensitively."""
    assert parse_quorate(QUORUMTOOL_OK) is True
    assert parse_quorate("Quorate: No\n") is False
    assert parse_quorate("Nodes: 1\n") is None


def test_healthy_report(fake_runner: Any) -> None:
    """Mounted rw, pvecm ok and quorate means healthy."""
    fake_runner.respond("corosync-quorumtool -s", stdout=QUORUMTOOL_OK)

    report = _verifier(fake_runner).run()

    assert [check.id for check in report.checks] == ["mount", "pvecm-status", "quorum"]
    assert all(check.status is CheckStatus.GREEN for check in report.checks)
    assert report.healthy
    assert report.counts() == {"green": 3, "yellow": 0, "red": 0}


def test_not_quorate_is_red(fake_runner: Any) -> None:
    """A non-quorate cluster makes the report unhealthy."""
    fake_runner.respond("corosync-quorumtool -s", returncode=2, stdout="Quorate: No\n")

    report = _verifier(fake_runner).run()

    assert report.checks[2].status is CheckStatus.RED
    assert not report.healthy


def test_missing_tools_are_yellow(runner_factory: Any) -> None:
    """Missing optional tooling is a warning, not a failure."""
    runner = runner_factory(missing=["corosync-quorumtool", "pvecm"])
    runner.respond("findmnt", stdout=FINDMNT_RW)

    report = _verifier(runner).run()

    statuses = {check.id: check.status for check in report.checks}
    assert statuses == {
        "mount": CheckStatus.GREEN,
        "pvecm-status": CheckStatus.YELLOW,
        "quorum": CheckStatus.YELLOW,
    }
    assert report.healthy


def test_unmounted_is_red_and_never_raises(fake_runner: Any) -> None:
    """Failures are reported, never raised."""
    fake_runner.respond("findmnt", returncode=1)
    fake_runner.respond("pvecm status", returncode=255, stderr="ipcc_send_rec failed")

    report = _verifier(fake_runner).run()

    assert report.checks[0].status is CheckStatus.RED
    assert report.checks[1].output == "ipcc_send_rec failed"
    assert report.to_dict()["healthy"] is False


def test_read_only_mount_is_red(fake_runner: Any) -> None:
    """A read-only /etc/pve after recovery is a failure."""
    fake_runner.respond(
        "findmnt", stdout='TARGET="/etc/pve" SOURCE="/dev/fuse" FSTYPE="fuse" OPTIONS="ro"\n'
    )

    report = _verifier(fake_runner).run()

    assert report.checks[0].status is CheckStatus.RED
    assert "read-only" in report.checks[0].message
