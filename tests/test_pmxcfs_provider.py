"""Tests for the pmxcfs and quorum providers."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from quorumctl.providers.pmxcfs import PmxcfsProvider, parse_findmnt_pairs
from quorumctl.providers.quorum import QuorumProvider


def test_parse_findmnt_pairs_reads_first_row() -> None:
    """``findmnt -P`` output is parsed into a MountInfo."""
    info = parse_findmnt_pairs(
        'TARGET="/etc/pve" SOURCE="/dev/fuse" FSTYPE="fuse" OPTIONS="ro,nosuid,nodev"\n'
    )

    assert info is not None
    assert info.target == "/etc/pve"
    assert info.source == "/dev/fuse"
    assert info.fstype == "fuse"
    assert info.options == ("ro", "nosuid", "nodev")
    assert info.read_only


def test_parse_findmnt_pairs_handles_empty_output() -> None:
    """No rows means no mount information."""
    assert parse_findmnt_pairs("") is None
    assert parse_findmnt_pairs("\n  \n") is None


def test_mount_info_uses_findmnt_target(fake_runner: Any) -> None:
    """The mount backing a path is looked up with ``--target``."""
    provider = PmxcfsProvider(fake_runner)

    info = provider.mount_info(Path("/etc/pve"))

    assert info is not None
    assert not info.read_only
    assert fake_runner.commands() == [
        "findmnt -n -P -o TARGET,SOURCE,FSTYPE,OPTIONS --target /etc/pve"
    ]


def test_mount_info_none_when_findmnt_fails(fake_runner: Any) -> None:
    """A failing findmnt means the mount is unknown."""
    fake_runner.respond("findmnt", returncode=1)
    provider = PmxcfsProvider(fake_runner)

    assert provider.mount_info(Path("/etc/pve")) is None


def test_local_mode_and_terminate_are_best_effort(fake_runner: Any) -> None:
    """``pmxcfs -l`` and ``pkill -x`` failures are returned, not raised."""
    fake_runner.respond("pmxcfs -l", returncode=255, stderr="already running")
    fake_runner.respond("pkill", returncode=1)
    provider = PmxcfsProvider(fake_runner, process_name="pmxcfs")

    assert provider.start_local().returncode == 255
    assert provider.terminate().returncode == 1
    assert fake_runner.commands() == ["pmxcfs -l", "pkill -x pmxcfs"]


def test_set_expected_votes_skipped_without_pvecm(runner_factory: Any) -> None:
    """The runtime override is skipped when pvecm is not installed."""
    runner = runner_factory(missing=["pvecm"])
    provider = QuorumProvider(runner)

    assert provider.set_expected_votes(1) is None
    assert runner.calls == []


def test_set_expected_votes_runs_pvecm(fake_runner: Any) -> None:
    """pvecm failures are tolerated and returned."""
    fake_runner.respond("pvecm expected", returncode=2, stderr="unable to set")
    provider = QuorumProvider(fake_runner)

    result = provider.set_expected_votes(1)

    assert result is not None
    assert result.returncode == 2
    assert fake_runner.commands() == ["pvecm expected 1"]


def test_quorumtool_status_optional(runner_factory: Any) -> None:
    """corosync-quorumtool is optional."""
    runner = runner_factory(missing=["corosync-quorumtool"])

    assert QuorumProvider(runner).quorumtool_status() is None


def test_check_syntax_targets_staged_file(fake_runner: Any, tmp_path: Path) -> None:
    """``corosync -t`` is pointed at the staged file."""
    provider = QuorumProvider(fake_runner)
    staged = tmp_path / ".corosync.conf.tmp"

    assert provider.validator_available()
    assert provider.check_syntax(staged).ok
    assert fake_runner.commands() == [f"corosync -c {staged} -t"]
