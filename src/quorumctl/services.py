"""Lifecycle of corosync and pmxcfs during a recovery.

The controller walks the services through three states::

    NORMAL --stop_services--> STOPPED --enter_local_mode--> LOCAL_AUTHORITATIVE
      ^                                                           |
      +------------------------- resume_normal -------------------+

``restart_membership`` bounces corosync while staying in ``NORMAL``. Calling
a transition from the wrong state raises :class:`ServiceTransitionError`
before any command runs.
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import DelaysConfig, ServicesConfig
from .errors import CLUSTER_STATUS_HINT, JOURNAL_HINT, ServiceTransitionError
from .preflight import PreflightGate
from .providers.pmxcfs import PmxcfsProvider
from .providers.process import CommandResult, FailurePolicy
from .providers.systemd import SystemdError, SystemdProvider
from .retry import RetryPolicy


class ServiceState(str, Enum):
    """Where the membership services currently are."""

    STOPPED = "stopped"
    LOCAL_AUTHORITATIVE = "local-authoritative"
    NORMAL = "normal"


@dataclass(slots=True)
class ServiceStateController:
    """Sole owner of :class:`ServiceState` for one operation."""

    systemd: SystemdProvider
    pmxcfs: PmxcfsProvider
    gate: PreflightGate
    services: ServicesConfig = field(default_factory=ServicesConfig)
    delays: DelaysConfig = field(default_factory=DelaysConfig)
    sleep: Callable[[float], None] = field(default=time.sleep)
    state: ServiceState = ServiceState.NORMAL
    history: list[ServiceState] = field(default_factory=lambda: [ServiceState.NORMAL])

    def stop_services(self) -> CommandResult:
        """Stop corosync and pve-cluster; failures are tolerated."""
        self._expect(ServiceState.NORMAL, "stop services")
        result = self.systemd.stop(
            self.services.corosync_unit,
            self.services.cluster_unit,
            policy=FailurePolicy.BEST_EFFORT,
        )
        self._move(ServiceState.STOPPED)
        return result

    def enter_local_mode(self, directory: Path, *, poll: RetryPolicy) -> int:
        """Start pmxcfs in local mode and wait until *directory* is writable.

        The state is LOCAL_AUTHORITATIVE as soon as pmxcfs is launched, so a
        :class:`WriteTimeoutError` leaves it there for diagnosis. Returns the
        polling attempt that saw write access.
        """
        self._expect(ServiceState.STOPPED, "enter local mode")
        self.pmxcfs.start_local()
        self._move(ServiceState.LOCAL_AUTHORITATIVE)
        return self.gate.wait_writable(directory, poll=poll)

    def resume_normal(self) -> CommandResult:
        """Stop the local pmxcfs and bring the cluster units back."""
        self._expect(ServiceState.LOCAL_AUTHORITATIVE, "resume normal operation")
        self.pmxcfs.terminate()
        self.sleep(self.delays.release_mount)
        try:
            result = self.systemd.start(self.services.cluster_unit, self.services.corosync_unit)
        except SystemdError as exc:
            raise ServiceTransitionError(
                f"Failed to start {self.services.cluster_unit} and "
                f"{self.services.corosync_unit}: {exc}",
                hints=(CLUSTER_STATUS_HINT, JOURNAL_HINT),
            ) from exc
        self._move(ServiceState.NORMAL)
        return result

    def restart_membership(self) -> CommandResult:
        """Restart corosync so it reloads its configuration."""
        self._expect(ServiceState.NORMAL, "restart corosync")
        try:
            result = self.systemd.restart(self.services.corosync_unit)
        except SystemdError as exc:
            raise ServiceTransitionError(
                f"Failed to restart {self.services.corosync_unit}: {exc}",
                hints=(f"Check: systemctl status {self.services.corosync_unit}", JOURNAL_HINT),
            ) from exc
        self.sleep(self.delays.restart_settle)
        self._move(ServiceState.NORMAL)
        return result

    # ------------------------------------------------------------------
    def _expect(self, required: ServiceState, action: str) -> None:
        if self.state is not required:
            raise ServiceTransitionError(
                f"Cannot {action} while services are {self.state.value} "
                f"(requires {required.value})."
            )

    def _move(self, state: ServiceState) -> None:
        self.state = state
        self.history.append(state)


__all__ = ["ServiceState", "ServiceStateController"]
