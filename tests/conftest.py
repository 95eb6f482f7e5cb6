"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import pytest

from quorumctl.config import AppConfig, load_config
from quorumctl.providers.process import CommandError, CommandResult, FailurePolicy

SAMPLE_CONF = """\
logging {
  debug: off
  to_syslog: yes
}

nodelist {
  node {
    name: pve1
    nodeid: 1
    quorum_votes: 1
    ring0_addr: 192.168.1.11
  }
  node {
    name: pve2
    nodeid: 2
    quorum_votes: 1
    ring0_addr: 192.168.1.12
  }
}

quorum {
  provider: corosync_votequorum
}

totem {
  cluster_name: homelab
  config_version: 4
  interface {
    linknumber: 0
  }
  ip_version: ipv4-6
  link_mode: passive
  secauth: on
  version: 2
}
"""

FINDMNT_FUSE = 'TARGET="/etc/pve" SOURCE="/dev/fuse" FSTYPE="fuse" OPTIONS="rw,nosuid,nodev"\n'


class FakeRunner:
    """Stand-in for :class:`CommandRunner` answering from a scripted table.

    Responses are matched on the longest command-line prefix; anything
    unscripted succeeds with empty output.
    """

    def __init__(self, missing: Sequence[str] = ()) -> None:
        """Initialise an empty script."""
        self.calls: list[tuple[str, ...]] = []
        self.missing = set(missing)
        self._responses: dict[str, CommandResult] = {}

    def respond(
        self, prefix: str, *, returncode: int = 0, stdout: str = "", stderr: str = ""
    ) -> None:
        """Script the result for commands starting with *prefix*."""
        self._responses[prefix] = CommandResult(
            args=tuple(prefix.split()), returncode=returncode, stdout=stdout, stderr=stderr
        )

    def run(
        self,
        args: Sequence[str],
        *,
        policy: FailurePolicy,
        error_prefix: str | None = None,
    ) -> CommandResult:
        """Record *args* and return the scripted result."""
        argv = tuple(str(item) for item in args)
        self.calls.append(argv)
        command = " ".join(argv)
        if argv[0] in self.missing:
            result = CommandResult(args=argv, returncode=127, stderr=f"{argv[0]} not found")
        else:
            matches = [prefix for prefix in self._responses if command.startswith(prefix)]
            if matches:
                scripted = self._responses[max(matches, key=len)]
                result = CommandResult(
                    args=argv,
                    returncode=scripted.returncode,
                    stdout=scripted.stdout,
                    stderr=scripted.stderr,
                )
            else:
                result = CommandResult(args=argv, returncode=0)
        if policy is FailurePolicy.REQUIRED and not result.ok:
            raise CommandError(
                f"{error_prefix or command} failed (exit {result.returncode}): {result.output()}",
                result,
            )
        return result

    def exists(self, command: str) -> bool:
        """Return ``False`` only for commands declared missing."""
        return command not in self.missing

    def commands(self) -> list[str]:
        """Return every recorded command line."""
        return [" ".join(call) for call in self.calls]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return a runner where findmnt reports a healthy pmxcfs mount."""
    runner = FakeRunner()
    runner.respond("findmnt", stdout=FINDMNT_FUSE)
    runner.respond("corosync-quorumtool -s", stdout="Quorate:          Yes\n")
    runner.respond("hostname -s", stdout="pve1\n")
    runner.respond(
        "ip -4 -o addr show scope global",
        stdout="2: vmbr0    inet 192.168.1.11/24 brd 192.168.1.255 scope global vmbr0\n",
    )
    return runner


@pytest.fixture
def pve_dir(tmp_path: Path) -> Path:
    """Return a stand-in for ``/etc/pve``."""
    path = tmp_path / "etc" / "pve"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def app_config(tmp_path: Path, pve_dir: Path) -> AppConfig:
    """Return a configuration rooted under ``tmp_path`` with no delays."""
    return load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={
            "corosync_conf": str(pve_dir / "corosync.conf"),
            "logs_dir": str(tmp_path / "logs"),
            "backups": {"dir": str(tmp_path / "root")},
            "polling": {"attempts": 3, "interval": 0},
            "delays": {"restart_settle": 0, "release_mount": 0},
        },
    )


@pytest.fixture
def sample_conf() -> str:
    """Return a two-node corosync.conf as written by ``pvecm create``."""
    return SAMPLE_CONF


@pytest.fixture
def runner_factory() -> type[FakeRunner]:
    """Return the scripted runner class for tests that need a bare instance."""
    return FakeRunner
