"""Parser and renderer for corosync.conf.

The format is line oriented::

    totem {
        cluster_name: pve
        interface {
            linknumber: 0
        }
    }

``parse`` turns text into a :class:`CorosyncDocument`, a list of top-level
nodes (blocks, bare entries and blank/comment trivia). Parsed nodes keep
their source lines, so any node that is not edited is emitted byte for byte.
Generated blocks have no source and are rendered canonically with four
space indentation.

Corosync only nests two levels deep (``nodelist.node``,
``totem.interface``); anything deeper is rejected as malformed.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .errors import InvalidGeneratedConfigError, MalformedConfigError

if TYPE_CHECKING:
    from .identity import NodeIdentity

MAX_DEPTH = 2
INDENT = "    "

_NAME = r"[A-Za-z0-9_.\-]+"
_HEADER_RE = re.compile(rf"^({_NAME})\s*\{{(.*)$")
_ENTRY_RE = re.compile(rf"^({_NAME})\s*:\s*(.*?)$")
_EXPECTED_VOTES_ONE_RE = re.compile(r"^\s*expected_votes\s*:\s*1\s*$", re.MULTILINE)
_TWO_NODE_ONE_RE = re.compile(r"^\s*two_node\s*:\s*1\s*$", re.MULTILINE)


@dataclass(slots=True, frozen=True)
class Entry:
    """A ``key: value`` pair."""

    key: str
    value: str
    source: str | None = None

    def render(self, depth: int = 0) -> list[str]:
        """Return the source line, or a canonical line at *depth*."""
        if self.source is not None:
            return [self.source]
        return [f"{INDENT * depth}{self.key}: {self.value}"]


@dataclass(slots=True, frozen=True)
class Trivia:
    """A blank or comment line outside any block."""

    source: str

    def render(self, depth: int = 0) -> list[str]:
        """Return the line unchanged."""
        return [self.source]


@dataclass(slots=True)
class Block:
    """A named ``name { ... }`` section."""

    name: str
    children: list[Entry | Block] = field(default_factory=list)
    source: list[str] = field(default_factory=list)
    line: int | None = None

    def get(self, key: str) -> str | None:
        """Return the first value recorded for *key* in this block."""
        for child in self.children:
            if isinstance(child, Entry) and child.key == key:
                return child.value
        return None

    def blocks(self, name: str) -> list[Block]:
        """Return nested blocks called *name*."""
        return [
            child for child in self.children if isinstance(child, Block) and child.name == name
        ]

    def as_dict(self) -> dict[str, str]:
        """Return the block's own entries as a mapping (first value wins)."""
        values: dict[str, str] = {}
        for child in self.children:
            if isinstance(child, Entry):
                values.setdefault(child.key, child.value)
        return values

    def render(self, depth: int = 0) -> list[str]:
        """Return source lines, or a canonical rendering for generated blocks."""
        if self.source:
            return list(self.source)
        pad = INDENT * depth
        lines = [f"{pad}{self.name} {{"]
        for child in self.children:
            lines.extend(child.render(depth + 1))
        lines.append(f"{pad}}}")
        return lines


TopLevelNode = Block | Entry | Trivia


@dataclass(slots=True)
class CorosyncDocument:
    """Ordered top-level nodes of a corosync configuration."""

    nodes: list[TopLevelNode] = field(default_factory=list)

    def blocks(self, name: str | None = None) -> list[Block]:
        """Return top-level blocks, optionally filtered by *name*."""
        return [
            node
            for node in self.nodes
            if isinstance(node, Block) and (name is None or node.name == name)
        ]

    def block(self, name: str) -> Block | None:
        """Return the first top-level block called *name*."""
        found = self.blocks(name)
        return found[0] if found else None

    def without(self, *names: str) -> CorosyncDocument:
        """Return a copy with every top-level block in *names* removed."""
        excluded = set(names)
        return CorosyncDocument(
            nodes=[
                node
                for node in self.nodes
                if not (isinstance(node, Block) and node.name in excluded)
            ]
        )

    def lookup(self, *path: str) -> str | None:
        """Return the first value at a dotted *path* such as ``totem.cluster_name``."""
        if not path:
            return None
        *block_path, key = path
        candidates: list[Block] = self.blocks(block_path[0]) if block_path else []
        for name in block_path[1:]:
            candidates = [nested for block in candidates for nested in block.blocks(name)]
        for block in candidates:
            value = block.get(key)
            if value is not None:
                return value
        return None

    def lines(self) -> list[str]:
        """Return the rendered lines of every node."""
        rendered: list[str] = []
        for node in self.nodes:
            rendered.extend(node.render())
        return rendered

    def render(self) -> str:
        """Return the document text terminated by a newline."""
        lines = self.lines()
        if not lines:
            return ""
        return "\n".join(lines) + "\n"


@dataclass(slots=True, frozen=True)
class QuorumSettings:
    """Values of the ``quorum`` block this tool owns."""

    provider: str = "corosync_votequorum"
    expected_votes: int = 1
    two_node: int = 1
    wait_for_all: int = 0
    auto_tie_breaker: int = 0
    last_man_standing: int = 1
    last_man_standing_window: int = 0

    def to_block(self) -> Block:
        """Return a generated ``quorum`` block."""
        return _generated(
            "quorum",
            {
                "provider": self.provider,
                "expected_votes": self.expected_votes,
                "two_node": self.two_node,
                "wait_for_all": self.wait_for_all,
                "auto_tie_breaker": self.auto_tie_breaker,
                "last_man_standing": self.last_man_standing,
                "last_man_standing_window": self.last_man_standing_window,
            },
        )


SINGLE_NODE_QUORUM = QuorumSettings()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class _Parser:
    def __init__(self) -> None:
        self.document = CorosyncDocument()
        self.stack: list[Block] = []
        self.line_no = 0

    def feed(self, raw: str) -> None:
        self.line_no += 1
        if self.stack:
            self.stack[0].source.append(raw)
        stripped = raw.strip()
        if not stripped or stripped.startswith("#"):
            if not self.stack:
                self.document.nodes.append(Trivia(raw))
            return
        if self.stack:
            self._consume(stripped, raw)
            return
        if stripped.startswith("}"):
            raise MalformedConfigError("Unexpected closing brace", line=self.line_no)
        header = _HEADER_RE.match(stripped)
        if header:
            block = Block(name=header.group(1), source=[raw], line=self.line_no)
            self.document.nodes.append(block)
            self.stack.append(block)
            self._consume(header.group(2).strip(), raw)
            return
        entry = _ENTRY_RE.match(stripped)
        if entry:
            self.document.nodes.append(Entry(entry.group(1), entry.group(2), source=raw))
            return
        raise MalformedConfigError(f"Unrecognised line {stripped!r}", line=self.line_no)

    def _consume(self, fragment: str, raw: str) -> None:
        while fragment:
            if fragment.startswith("#"):
                return
            if fragment.startswith("}"):
                self._close()
                fragment = fragment[1:].strip()
                if fragment and not self.stack:
                    raise MalformedConfigError(
                        "Unexpected content after closing brace", line=self.line_no
                    )
                continue
            header = _HEADER_RE.match(fragment)
            if header:
                self._open(header.group(1))
                fragment = header.group(2).strip()
                continue
            body, brace, rest = fragment.partition("}")
            entry = _ENTRY_RE.match(body.strip())
            if entry is None:
                raise MalformedConfigError(
                    f"Unrecognised line {raw.strip()!r}", line=self.line_no
                )
            self.stack[-1].children.append(Entry(entry.group(1), entry.group(2).strip()))
            fragment = f"{brace}{rest}".strip()

    def _open(self, name: str) -> None:
        if len(self.stack) >= MAX_DEPTH:
            raise MalformedConfigError(
                f"Block '{name}' nests deeper than {MAX_DEPTH} levels", line=self.line_no
            )
        block = Block(name=name, line=self.line_no)
        self.stack[-1].children.append(block)
        self.stack.append(block)

    def _close(self) -> None:
        if not self.stack:
            raise MalformedConfigError("Unexpected closing brace", line=self.line_no)
        self.stack.pop()

    def finish(self) -> CorosyncDocument:
        if self.stack:
            block = self.stack[-1]
            raise MalformedConfigError(
                f"Block '{block.name}' opened on line {block.line} is never closed",
                line=self.line_no,
            )
        return self.document


def parse(text: str) -> CorosyncDocument:
    """Parse corosync.conf *text* into a :class:`CorosyncDocument`."""
    parser = _Parser()
    for raw in _split_lines(text):
        parser.feed(raw)
    return parser.finish()


def _split_lines(text: str) -> list[str]:
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _generated(
    block_name: str,
    entries: Mapping[str, object],
    children: Iterable[Block] = (),
) -> Block:
    block = Block(name=block_name)
    block.children.extend(Entry(key, str(value)) for key, value in entries.items())
    block.children.extend(children)
    return block


def is_quorum_patched(text: str) -> bool:
    """Return ``True`` when *text* already sets ``expected_votes: 1`` and ``two_node: 1``."""
    return bool(_EXPECTED_VOTES_ONE_RE.search(text) and _TWO_NODE_ONE_RE.search(text))


def render_quorum_patch(
    existing_text: str,
    settings: QuorumSettings = SINGLE_NODE_QUORUM,
) -> str:
    """Return *existing_text* with its quorum block replaced.

    Every other line is kept verbatim and in order; the new block is appended
    after a blank separator line.
    """
    document = parse(existing_text).without("quorum")
    lines = document.lines()
    lines.append("")
    lines.extend(settings.to_block().render())
    return "\n".join(lines) + "\n"


def canonical_preview(settings: QuorumSettings = SINGLE_NODE_QUORUM) -> str:
    """Return the quorum block alone, for nodes without a configuration."""
    return "\n".join(settings.to_block().render()) + "\n"


def totem_block(identity: NodeIdentity, *, config_version: int | None = None) -> Block:
    """Return a knet ``totem`` block for a single-node cluster."""
    entries: dict[str, object] = {"version": 2, "cluster_name": identity.cluster_name}
    if config_version is not None:
        entries["config_version"] = config_version
    entries.update(
        transport="knet",
        crypto_cipher="aes256",
        crypto_hash="sha256",
        ip_version="ipv4-6",
    )
    interface = _generated("interface", {"linknumber": 0, "knet_link_priority": 1})
    return _generated("totem", entries, (interface,))


def nodelist_block(identity: NodeIdentity) -> Block:
    """Return a ``nodelist`` holding *identity* as the only voting member."""
    node = _generated(
        "node",
        {
            "name": identity.node_name,
            "nodeid": identity.node_id,
            "quorum_votes": 1,
            "ring0_addr": identity.ring_address,
        },
    )
    return _generated("nodelist", {}, (node,))


def logging_block() -> Block:
    """Return the default ``logging`` block."""
    return _generated("logging", {"to_syslog": "yes"})


def render_single_node(
    identity: NodeIdentity,
    existing_text: str | None = None,
    settings: QuorumSettings = SINGLE_NODE_QUORUM,
) -> str:
    """Return a complete single-node configuration for *identity*.

    ``totem``, ``nodelist`` and ``quorum`` are regenerated. Everything else in
    *existing_text* (logging, comments, extra sections) is kept verbatim and
    in order. A default ``logging`` block is added when none exists. When the
    old ``totem`` carried ``config_version`` it is bumped so pmxcfs propagates
    the new file to ``/etc/corosync``.
    """
    existing = parse(existing_text) if existing_text else CorosyncDocument()
    previous_version = _as_int(existing.lookup("totem", "config_version"))
    config_version = previous_version + 1 if previous_version is not None else None

    chunks: list[list[str]] = [
        totem_block(identity, config_version=config_version).render(),
        nodelist_block(identity).render(),
        settings.to_block().render(),
    ]
    preserved = _strip_blank_edges(existing.without("totem", "nodelist", "quorum").lines())
    if preserved:
        chunks.append(preserved)
    if existing.block("logging") is None:
        chunks.append(logging_block().render())

    lines: list[str] = []
    for index, chunk in enumerate(chunks):
        if index:
            lines.append("")
        lines.extend(chunk)
    return "\n".join(lines) + "\n"


def validate_rendered(
    text: str,
    settings: QuorumSettings = SINGLE_NODE_QUORUM,
) -> CorosyncDocument:
    """Check the structural invariants of a rendered configuration."""
    if not text.strip():
        raise InvalidGeneratedConfigError("Generated configuration is empty.")
    if "quorum {" not in text:
        raise InvalidGeneratedConfigError("Generated configuration has no 'quorum {' block.")
    try:
        document = parse(text)
    except MalformedConfigError as exc:
        raise InvalidGeneratedConfigError(
            f"Generated configuration does not parse: {exc.message}"
        ) from exc

    duplicates = sorted(_duplicates(block.name for block in document.blocks()))
    if duplicates:
        raise InvalidGeneratedConfigError(
            "Generated configuration repeats block(s): " + ", ".join(duplicates) + "."
        )
    quorum = document.block("quorum")
    if quorum is None:
        raise InvalidGeneratedConfigError("Generated configuration has no quorum block.")
    values = quorum.as_dict()
    for key in ("expected_votes", "two_node"):
        expected = str(getattr(settings, key))
        if values.get(key) != expected:
            raise InvalidGeneratedConfigError(
                f"Generated quorum block sets {key}={values.get(key)!r}, expected {expected}."
            )
    return document


def _duplicates(names: Iterable[str]) -> Iterator[str]:
    seen: set[str] = set()
    reported: set[str] = set()
    for name in names:
        if name in seen and name not in reported:
            reported.add(name)
            yield name
        seen.add(name)


def _strip_blank_edges(lines: list[str]) -> list[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def _as_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


__all__ = [
    "MAX_DEPTH",
    "SINGLE_NODE_QUORUM",
    "Block",
    "CorosyncDocument",
    "Entry",
    "QuorumSettings",
    "Trivia",
    "canonical_preview",
    "is_quorum_patched",
    "logging_block",
    "nodelist_block",
    "parse",
    "render_quorum_patch",
    "render_single_node",
    "totem_block",
    "validate_rendered",
]
