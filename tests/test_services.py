"""Tests for the service state controller."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from quorumctl.config import DelaysConfig, ServicesConfig
from quorumctl.errors import ServiceTransitionError, WriteTimeoutError
from quorumctl.preflight import PreflightGate
from quorumctl.providers.pmxcfs import PmxcfsProvider
from quorumctl.providers.systemd import SystemdProvider
from quorumctl.retry import RetryPolicy
from quorumctl.services import ServiceState, ServiceStateController


def _controller(runner: Any, sleeps: list[float] | None = None) -> ServiceStateController:
    recorded = sleeps if sleeps is not None else []
    pmxcfs = PmxcfsProvider(runner)
    return ServiceStateController(
        systemd=SystemdProvider(runner),
        pmxcfs=pmxcfs,
        gate=PreflightGate(pmxcfs, sleep=recorded.append),
        services=ServicesConfig(),
        delays=DelaysConfig(restart_settle=2.0, release_mount=1.0),
        sleep=recorded.append,
    )


def test_full_cycle_runs_commands_in_order(fake_runner: Any, pve_dir: Path) -> None:
    """NORMAL -> STOPPED -> LOCAL_AUTHORITATIVE -> NORMAL."""
    sleeps: list[float] = []
    controller = _controller(fake_runner, sleeps)

    controller.stop_services()
    attempt = controller.enter_local_mode(pve_dir, poll=RetryPolicy(attempts=3, interval=0))
    controller.resume_normal()

    assert attempt == 1
    assert fake_runner.commands() == [
        "systemctl stop corosync pve-cluster",
        "pmxcfs -l",
        "pkill -x pmxcfs",
        "systemctl start pve-cluster corosync",
    ]
    assert controller.state is ServiceState.NORMAL
    assert controller.history == [
        ServiceState.NORMAL,
        ServiceState.STOPPED,
        ServiceState.LOCAL_AUTHORITATIVE,
        ServiceState.NORMAL,
    ]
    assert sleeps == [1.0]


def test_stop_failure_is_tolerated(fake_runner: Any) -> None:
    """Stopping already-dead services is not an error."""
    fake_runner.respond("systemctl stop", returncode=5)
    controller = _controller(fake_runner)

    result = controller.stop_services()

    assert result.returncode == 5
    assert controller.state is ServiceState.STOPPED


def test_local_mode_timeout_stays_local(
    fake_runner: Any, pve_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A write timeout leaves the state LOCAL_AUTHORITATIVE for diagnosis."""
    monkeypatch.setattr(PreflightGate, "probe_write", lambda self, directory: False)
    controller = _controller(fake_runner)
    controller.stop_services()

    with pytest.raises(WriteTimeoutError):
        controller.enter_local_mode(pve_dir, poll=RetryPolicy(attempts=3, interval=0))

    assert controller.state is ServiceState.LOCAL_AUTHORITATIVE
    assert "systemctl start pve-cluster corosync" not in fake_runner.commands()


def test_resume_failure_raises_transition_error(fake_runner: Any, pve_dir: Path) -> None:
    """Failing to start the cluster units is fatal."""
    fake_runner.respond("systemctl start", returncode=1, stderr="dependency failed")
    controller = _controller(fake_runner)
    controller.stop_services()
    controller.enter_local_mode(pve_dir, poll=RetryPolicy.single())

    with pytest.raises(ServiceTransitionError, match="dependency failed"):
        controller.resume_normal()

    assert controller.state is ServiceState.LOCAL_AUTHORITATIVE


def test_restart_membership_settles(fake_runner: Any) -> None:
    """Restarting corosync waits for the configured settle time."""
    sleeps: list[float] = []
    controller = _controller(fake_runner, sleeps)

    controller.restart_membership()

    assert fake_runner.commands() == ["systemctl restart corosync"]
    assert sleeps == [2.0]
    assert controller.state is ServiceState.NORMAL


def test_restart_membership_failure(fake_runner: Any) -> None:
    """A failed corosync restart is a provider-level error."""
    fake_runner.respond("systemctl restart", returncode=1, stderr="Job failed")
    controller = _controller(fake_runner)

    with pytest.raises(ServiceTransitionError) as excinfo:
        controller.restart_membership()

    assert int(excinfo.value.exit_code) == 4


@pytest.mark.parametrize("action", ["enter_local_mode", "resume_normal", "restart_membership"])
def test_out_of_order_transitions_run_nothing(
    fake_runner: Any, pve_dir: Path, action: str
) -> None:
    """Transitions from the wrong state raise before invoking any command."""
    controller = _controller(fake_runner)
    if action == "restart_membership":
        controller.stop_services()
        fake_runner.calls.clear()

    with pytest.raises(ServiceTransitionError, match="Cannot"):
        if action == "enter_local_mode":
            controller.enter_local_mode(pve_dir, poll=RetryPolicy.single())
        else:
            getattr(controller, action)()

    assert fake_runner.calls == []


def test_stop_twice_is_rejected(fake_runner: Any) -> None:
    """stop_services only runs from NORMAL."""
    controller = _controller(fake_runner)
    controller.stop_services()

    with pytest.raises(ServiceTransitionError):
        controller.stop_services()
