"""Provider interfaces for quorumctl."""
from __future__ import annotations

from .pmxcfs import MountInfo, PmxcfsProvider
from .process import CommandError, CommandResult, CommandRunner, FailurePolicy
from .quorum import QuorumProvider
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "FailurePolicy",
    "MountInfo",
    "PmxcfsProvider",
    "QuorumProvider",
    "SystemdError",
    "SystemdProvider",
]
