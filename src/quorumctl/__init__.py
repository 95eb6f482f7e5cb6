"""quorumctl package bootstrap.

Recovery tooling for Proxmox VE nodes whose ``/etc/pve`` went read-only after
losing corosync quorum. Only lightweight metadata lives here.
"""
from __future__ import annotations

__all__ = ["__version__"]

# NOTE: Hatch reads the package version from this assignment.
__version__ = "0.1.0"
