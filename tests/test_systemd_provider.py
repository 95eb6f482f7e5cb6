"""Tests for the systemd provider."""
from __future__ import annotations

from typing import Any

import pytest

from quorumctl.providers.process import FailurePolicy
from quorumctl.providers.systemd import SystemdError, SystemdProvider


def test_stop_passes_units_in_order(fake_runner: Any) -> None:
    """Units are passed to systemctl in the order given."""
    provider = SystemdProvider(fake_runner, systemctl_bin="systemctl")

    provider.stop("corosync", "pve-cluster", policy=FailurePolicy.BEST_EFFORT)
    provider.start("pve-cluster", "corosync")
    provider.restart("corosync")

    assert fake_runner.commands() == [
        "systemctl stop corosync pve-cluster",
        "systemctl start pve-cluster corosync",
        "systemctl restart corosync",
    ]


def test_required_failure_raises_systemd_error(fake_runner: Any) -> None:
    """A REQUIRED systemctl failure is reported as SystemdError."""
    fake_runner.respond("systemctl restart", returncode=1, stderr="Job failed")
    provider = SystemdProvider(fake_runner)

    with pytest.raises(SystemdError, match="systemctl restart failed"):
        provider.restart("corosync")


def test_best_effort_failure_is_tolerated(fake_runner: Any) -> None:
    """BEST_EFFORT stops never raise."""
    fake_runner.respond("systemctl stop", returncode=5, stderr="Unit not loaded")
    provider = SystemdProvider(fake_runner)

    result = provider.stop("corosync", policy=FailurePolicy.BEST_EFFORT)

    assert result.returncode == 5


def test_custom_systemctl_binary(fake_runner: Any) -> None:
    """The configured systemctl path is used verbatim."""
    provider = SystemdProvider(fake_runner, systemctl_bin="/usr/bin/systemctl")

    provider.restart("corosync")

    assert fake_runner.calls == [("/usr/bin/systemctl", "restart", "corosync")]
