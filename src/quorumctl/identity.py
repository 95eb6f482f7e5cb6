"""Node identity discovery for the single-node repair flow."""
from __future__ import annotations

import ipaddress
import socket
from collections.abc import Iterable
from dataclasses import dataclass, field

from .corosync import Block, CorosyncDocument, parse
from .errors import MalformedConfigError
from .providers.process import CommandRunner, FailurePolicy

LOOPBACK_ADDRESS = "127.0.0.1"
DEFAULT_NODE_ID = 1
PRIVATE_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)


@dataclass(slots=True, frozen=True)
class NodeIdentity:
    """Who this node is inside the corosync configuration."""

    cluster_name: str
    node_name: str
    node_id: int
    ring_address: str

    def __post_init__(self) -> None:
        """Enforce ``node_id >= 1`` and an IPv4 ring address."""
        if self.node_id < 1:
            raise ValueError(f"node_id must be >= 1, got {self.node_id}.")
        if not is_ipv4(self.ring_address):
            raise ValueError(f"ring_address must be an IPv4 address, got {self.ring_address!r}.")
        if not self.cluster_name or not self.node_name:
            raise ValueError("cluster_name and node_name must be non-empty.")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "cluster_name": self.cluster_name,
            "node_name": self.node_name,
            "node_id": self.node_id,
            "ring_address": self.ring_address,
        }


@dataclass(slots=True)
class DiscoveredIdentity:
    """Identity plus where each value came from."""

    identity: NodeIdentity
    sources: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def is_ipv4(value: str) -> bool:
    """Return ``True`` when *value* is a dotted-quad IPv4 address."""
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def is_private_ipv4(value: str) -> bool:
    """Return ``True`` for RFC1918 addresses."""
    if not is_ipv4(value):
        return False
    address = ipaddress.IPv4Address(value)
    return any(address in network for network in PRIVATE_NETWORKS)


def choose_ring_address(candidates: Iterable[str]) -> str | None:
    """Pick a ring address: first RFC1918 address, then any non-loopback IPv4."""
    usable = [
        candidate
        for candidate in candidates
        if is_ipv4(candidate) and not ipaddress.IPv4Address(candidate).is_loopback
    ]
    for candidate in usable:
        if is_private_ipv4(candidate):
            return candidate
    return usable[0] if usable else None


def parse_ip_addr_output(output: str) -> list[str]:
    """Extract addresses from ``ip -4 -o addr show`` output."""
    addresses: list[str] = []
    for line in output.splitlines():
        fields = line.split()
        if "inet" not in fields:
            continue
        index = fields.index("inet")
        if index + 1 < len(fields):
            addresses.append(fields[index + 1].split("/", 1)[0])
    return addresses


@dataclass(slots=True)
class HostProbe:
    """Read hostname and addresses from the running system."""

    runner: CommandRunner
    ip_bin: str = "ip"
    hostname_bin: str = "hostname"

    def short_hostname(self) -> str:
        """Return the short hostname (``hostname -s``)."""
        result = self.runner.run([self.hostname_bin, "-s"], policy=FailurePolicy.BEST_EFFORT)
        name = result.stdout.strip() if result.ok else ""
        return name or socket.gethostname().split(".", 1)[0]

    def ipv4_addresses(self) -> list[str]:
        """Return global IPv4 addresses, falling back to ``hostname -I``."""
        result = self.runner.run(
            [self.ip_bin, "-4", "-o", "addr", "show", "scope", "global"],
            policy=FailurePolicy.BEST_EFFORT,
        )
        addresses = parse_ip_addr_output(result.stdout) if result.ok else []
        if addresses:
            return addresses
        fallback = self.runner.run([self.hostname_bin, "-I"], policy=FailurePolicy.BEST_EFFORT)
        if not fallback.ok:
            return []
        return [token for token in fallback.stdout.split() if is_ipv4(token)]


def discover_identity(
    existing_text: str | None,
    probe: HostProbe,
    *,
    default_cluster_name: str = "ProxmoxCluster",
) -> DiscoveredIdentity:
    """Build the :class:`NodeIdentity` for a repair.

    Values already present in *existing_text* win over host introspection so
    the repaired node keeps its pre-incident identity.
    """
    warnings: list[str] = []
    sources: dict[str, str] = {}

    document = CorosyncDocument()
    if existing_text:
        try:
            document = parse(existing_text)
        except MalformedConfigError as exc:
            warnings.append(f"Existing configuration ignored: {exc.message}")

    hostname = probe.short_hostname()
    node = _select_node(document, hostname)

    cluster_name = document.lookup("totem", "cluster_name")
    if cluster_name:
        sources["cluster_name"] = "config"
    else:
        cluster_name = default_cluster_name
        sources["cluster_name"] = "default"

    node_name = node.get("name") if node is not None else None
    if node_name:
        sources["node_name"] = "config"
    else:
        node_name = hostname
        sources["node_name"] = "hostname"

    node_id = DEFAULT_NODE_ID
    sources["node_id"] = "default"
    raw_node_id = node.get("nodeid") if node is not None else None
    if raw_node_id is not None:
        try:
            parsed_id = int(raw_node_id)
        except ValueError:
            parsed_id = 0
        if parsed_id >= 1:
            node_id = parsed_id
            sources["node_id"] = "config"
        else:
            warnings.append(f"Ignoring invalid nodeid {raw_node_id!r}; using {DEFAULT_NODE_ID}.")

    ring_address = node.get("ring0_addr") if node is not None else None
    if ring_address and is_ipv4(ring_address):
        sources["ring_address"] = "config"
    else:
        if ring_address:
            warnings.append(f"Ignoring non-IPv4 ring0_addr {ring_address!r}.")
        ring_address = choose_ring_address(probe.ipv4_addresses())
        sources["ring_address"] = "network"
        if ring_address is None:
            ring_address = LOOPBACK_ADDRESS
            sources["ring_address"] = "loopback"
            warnings.append("No usable IPv4 address found; falling back to loopback.")

    identity = NodeIdentity(
        cluster_name=cluster_name,
        node_name=node_name,
        node_id=node_id,
        ring_address=ring_address,
    )
    return DiscoveredIdentity(identity=identity, sources=sources, warnings=warnings)


def _select_node(document: CorosyncDocument, hostname: str) -> Block | None:
    nodes = [node for nodelist in document.blocks("nodelist") for node in nodelist.blocks("node")]
    for node in nodes:
        if node.get("name") == hostname:
            return node
    return nodes[0] if nodes else None


__all__ = [
    "LOOPBACK_ADDRESS",
    "DiscoveredIdentity",
    "HostProbe",
    "NodeIdentity",
    "choose_ring_address",
    "discover_identity",
    "is_ipv4",
    "is_private_ipv4",
    "parse_ip_addr_output",
]
