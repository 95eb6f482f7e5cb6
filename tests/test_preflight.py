"""Tests for the preflight gate."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest

from quorumctl.errors import (
    ConfigNotFoundError,
    ConfigNotWritableError,
    NotMountedError,
    PermissionDeniedError,
    ReadOnlyMountError,
    WriteTimeoutError,
)
from quorumctl.exit_codes import ExitCode
from quorumctl.preflight import PROBE_PREFIX, PreflightGate
from quorumctl.providers.pmxcfs import PmxcfsProvider
from quorumctl.retry import RetryPolicy


def _gate(runner: Any, **kwargs: Any) -> PreflightGate:
    kwargs.setdefault("sleep", lambda _seconds: None)
    return PreflightGate(PmxcfsProvider(runner), **kwargs)


def test_require_root_rejects_unprivileged(fake_runner: Any) -> None:
    """A non-zero effective UID fails fast."""
    gate = _gate(fake_runner, geteuid=lambda: 1000)

    with pytest.raises(PermissionDeniedError) as excinfo:
        gate.require_root()

    assert excinfo.value.exit_code == ExitCode.ENVIRONMENT
    _gate(fake_runner, geteuid=lambda: 0).require_root()


def test_require_root_reads_os_geteuid(fake_runner: Any, monkeypatch: pytest.MonkeyPatch) -> None:
    """The default UID source is looked up at call time."""
    monkeypatch.setattr(os, "geteuid", lambda: 0)

    _gate(fake_runner).require_root()


def test_check_config_file_missing(fake_runner: Any, tmp_path: Path) -> None:
    """A missing configuration points the operator at cluster membership."""
    with pytest.raises(ConfigNotFoundError) as excinfo:
        _gate(fake_runner).check_config_file(tmp_path / "corosync.conf")

    assert "Is this node in a cluster?" in excinfo.value.hints


def test_check_config_file_not_writable(
    fake_runner: Any, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Files without write access are rejected."""
    target = tmp_path / "corosync.conf"
    target.write_text("totem {\n}\n", encoding="utf-8")
    monkeypatch.setattr(os, "access", lambda path, mode: False)

    with pytest.raises(ConfigNotWritableError):
        _gate(fake_runner).check_config_file(target)


def test_check_mount_accepts_rw_fuse(fake_runner: Any, pve_dir: Path) -> None:
    """A read-write fuse mount passes."""
    info = _gate(fake_runner).check_mount(pve_dir / "corosync.conf")

    assert info.fstype == "fuse"
    assert fake_runner.calls[0][-1] == str(pve_dir)


def test_check_mount_missing(fake_runner: Any, pve_dir: Path) -> None:
    """No findmnt row means the cluster filesystem is not mounted."""
    fake_runner.respond("findmnt", returncode=1)

    with pytest.raises(NotMountedError) as excinfo:
        _gate(fake_runner).check_mount(pve_dir)

    assert any("systemctl restart pve-cluster" in hint for hint in excinfo.value.hints)


def test_check_mount_wrong_fstype(fake_runner: Any, pve_dir: Path) -> None:
    """A plain directory on the root filesystem is not pmxcfs."""
    fake_runner.respond(
        "findmnt", stdout='TARGET="/" SOURCE="/dev/sda1" FSTYPE="ext4" OPTIONS="rw"\n'
    )

    with pytest.raises(NotMountedError, match="ext4"):
        _gate(fake_runner).check_mount(pve_dir)


def test_check_mount_accepts_fuse_subtype(fake_runner: Any, pve_dir: Path) -> None:
    """``fuse.<name>`` subtypes count as fuse."""
    fake_runner.respond(
        "findmnt", stdout='TARGET="/etc/pve" SOURCE="pmxcfs" FSTYPE="fuse.pmxcfs" OPTIONS="rw"\n'
    )

    assert _gate(fake_runner).check_mount(pve_dir).fstype == "fuse.pmxcfs"


def test_check_mount_read_only(fake_runner: Any, pve_dir: Path) -> None:
    """A read-only mount is reported distinctly."""
    fake_runner.respond(
        "findmnt", stdout='TARGET="/etc/pve" SOURCE="/dev/fuse" FSTYPE="fuse" OPTIONS="ro"\n'
    )

    with pytest.raises(ReadOnlyMountError):
        _gate(fake_runner).check_mount(pve_dir)


def test_probe_write_leaves_no_files(fake_runner: Any, pve_dir: Path) -> None:
    """The write probe cleans up after itself."""
    assert _gate(fake_runner).probe_write(pve_dir)
    assert not any(path.name.startswith(PROBE_PREFIX) for path in pve_dir.iterdir())


def test_probe_write_fails_for_missing_directory(fake_runner: Any, tmp_path: Path) -> None:
    """An unusable directory reports ``False`` instead of raising."""
    assert _gate(fake_runner).probe_write(tmp_path / "missing") is False


def test_wait_writable_polls_until_success(
    fake_runner: Any, pve_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Write access that appears late is picked up by polling."""
    outcomes = iter([False, False, True])
    sleeps: list[float] = []
    monkeypatch.setattr(PreflightGate, "probe_write", lambda self, directory: next(outcomes))
    gate = _gate(fake_runner, sleep=sleeps.append)

    attempt = gate.wait_writable(pve_dir, poll=RetryPolicy(attempts=5, interval=0.5))

    assert attempt == 3
    assert sleeps == [0.5, 0.5]


def test_wait_writable_times_out(
    fake_runner: Any, pve_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Exhausted polling raises WriteTimeoutError with diagnostics hints."""
    monkeypatch.setattr(PreflightGate, "probe_write", lambda self, directory: False)

    with pytest.raises(WriteTimeoutError) as excinfo:
        _gate(fake_runner).wait_writable(pve_dir, poll=RetryPolicy(attempts=30, interval=0.5))

    assert "30 attempts (15s)" in excinfo.value.message
    assert any("journalctl -u pve-cluster -u corosync -b" in hint for hint in excinfo.value.hints)
    assert any("systemctl status pve-cluster" in hint for hint in excinfo.value.hints)


def test_check_writable_skips_mount_when_disabled(fake_runner: Any, pve_dir: Path) -> None:
    """``verify_mount=False`` relies on the write probe alone."""
    fake_runner.respond("findmnt", returncode=1)
    gate = _gate(fake_runner, verify_mount=False)

    assert gate.check_writable(pve_dir / "corosync.conf", poll=RetryPolicy.single()) == 1
    assert fake_runner.calls == []


def test_check_writable_single_attempt_reports_not_writable(
    fake_runner: Any, pve_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Without polling a refused write is a plain permission failure."""
    sleeps: list[float] = []
    monkeypatch.setattr(PreflightGate, "probe_write", lambda self, directory: False)
    gate = _gate(fake_runner, sleep=sleeps.append)

    with pytest.raises(ConfigNotWritableError) as excinfo:
        gate.check_writable(pve_dir / "corosync.conf", poll=RetryPolicy.single())

    assert "rejected a test write" in excinfo.value.message
    assert excinfo.value.exit_code == ExitCode.ENVIRONMENT
    assert sleeps == []
