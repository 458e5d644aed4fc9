"""Identity codec for ports and edges.

Handles three identity concerns:
- Generated port ids for switch cases (``port-<hex>``), immune to reordering
- Legacy positional port ids (``case-<index>``) and their migration
- Deterministic edge ids derived from the edge endpoints
"""
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Union
from uuid import uuid4

import structlog

from journey.models.journey import (
    ConditionCase,
    JourneyDocument,
    JourneyNode,
    NodeKind,
    SwitchCase,
)

logger = structlog.get_logger()

PORT_ID_PREFIX = "port-"
LEGACY_PORT_PREFIX = "case-"

_LEGACY_PORT_PATTERN = re.compile(r"^case-(\d+)$")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")

CaseEntry = Union[SwitchCase, ConditionCase]


def generate_port_id() -> str:
    """Return a fresh port id, distinguishable from positional ids by its prefix."""
    return f"{PORT_ID_PREFIX}{uuid4().hex[:12]}"


def is_generated_port_id(port_id: Optional[str]) -> bool:
    return bool(port_id) and port_id.startswith(PORT_ID_PREFIX)


def is_legacy_port_id(port_id: Optional[str]) -> bool:
    """Check if ``port_id`` follows the old ``case-<index>`` convention."""
    return bool(port_id) and _LEGACY_PORT_PATTERN.match(port_id) is not None


def legacy_port_id(index: int) -> str:
    """Positional port id for the entry at ``index``."""
    return f"{LEGACY_PORT_PREFIX}{index}"


def legacy_port_index(port_id: Optional[str]) -> Optional[int]:
    """Parse the zero-based index out of a positional port id."""
    if not port_id:
        return None
    match = _LEGACY_PORT_PATTERN.match(port_id)
    return int(match.group(1)) if match else None


def case_entries(node: JourneyNode) -> Optional[list[CaseEntry]]:
    """Return the ordered case/condition list backing a node's ports, if any."""
    if node.kind == NodeKind.SWITCH:
        return node.payload.cases
    if node.kind == NodeKind.MULTI_CONDITION:
        return node.payload.conditions
    return None


def resolve_port_index(node: JourneyNode, port_id: Optional[str]) -> Optional[int]:
    """Resolve ``port_id`` to a position in the node's case list.

    MultiCondition ports are positional only; condition ids are not port ids.
    For Switch nodes exact id matches win and positional ids fall back to
    their parsed index. Returns None when nothing matches.
    """
    entries = case_entries(node)
    if entries is None or not port_id:
        return None
    if node.kind == NodeKind.MULTI_CONDITION:
        index = legacy_port_index(port_id)
        return index if index is not None and index < len(entries) else None
    for i, entry in enumerate(entries):
        if entry.id and entry.id == port_id:
            return i
    index = legacy_port_index(port_id)
    if index is not None and index < len(entries):
        return index
    return None


def resolve_port(node: JourneyNode, port_id: Optional[str]) -> Optional[CaseEntry]:
    """Return the case/condition entry addressed by ``port_id``, or None."""
    index = resolve_port_index(node, port_id)
    if index is None:
        return None
    return case_entries(node)[index]


def sanitize_id_component(value: Optional[str]) -> str:
    """Map a value onto the safe id alphabet ``[A-Za-z0-9_-]``."""
    text = _UNSAFE_CHARS.sub("_", str(value or ""))
    return text or "_"


def build_edge_id(
    source: str,
    source_handle: Optional[str],
    target: str,
    target_handle: Optional[str],
    existing_ids: Iterable[str] = (),
    exclude: Optional[str] = None,
) -> str:
    """Build a deterministic edge id.

    The base id depends only on the endpoints. On collision with any id in
    ``existing_ids`` other than ``exclude`` (the edge being updated), an
    incrementing numeric suffix is appended until the id is unique.
    """
    base = "e{}_{}-{}_{}".format(
        sanitize_id_component(source),
        sanitize_id_component(source_handle),
        sanitize_id_component(target),
        sanitize_id_component(target_handle),
    )
    taken = set(existing_ids)
    taken.discard(exclude)

    candidate = base
    suffix = 1
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def node_sort_key(node_id: str) -> tuple:
    """Sort key that orders numeric ids numerically, then anything else."""
    if node_id.isdigit():
        return (0, int(node_id), "")
    return (1, 0, node_id)


def next_free_node_id(node_ids: Iterable[str], current: int) -> int:
    """Smallest counter value that is >= ``current`` and above every numeric id."""
    numeric = [int(n) for n in node_ids if n.isdigit()]
    highest = max(numeric) if numeric else 0
    return max(current, highest + 1)


@dataclass
class MigrationReport:
    """What a migration pass changed."""

    ports_assigned: int = 0
    handles_rewritten: int = 0
    edge_ids_rebuilt: int = 0
    next_node_id_raised: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.ports_assigned
            or self.handles_rewritten
            or self.edge_ids_rebuilt
            or self.next_node_id_raised
        )

    def to_dict(self) -> dict:
        return {
            "ports_assigned": self.ports_assigned,
            "handles_rewritten": self.handles_rewritten,
            "edge_ids_rebuilt": self.edge_ids_rebuilt,
            "next_node_id_raised": self.next_node_id_raised,
        }


def migrate_legacy_ports(document: JourneyDocument) -> tuple[JourneyDocument, MigrationReport]:
    """Normalize identities of a freshly loaded document.

    - Case/condition entries without an id get a generated one; entries that
      already have an id are left alone.
    - Switch edges still using ``case-<index>`` handles are rewritten to the
      entry's stable id. MultiCondition ports stay positional.
    - Missing or duplicate edge ids are re-derived from the endpoints.
    - ``next_node_id`` is raised above every numeric node id.

    Returns a migrated copy; the input is not modified. Running the pass on
    its own output changes nothing.
    """
    doc = document.model_copy(deep=True)
    report = MigrationReport()

    for node in doc.nodes:
        entries = case_entries(node)
        if entries is None:
            continue

        for entry in entries:
            if not entry.id:
                entry.id = generate_port_id()
                report.ports_assigned += 1

        if node.kind != NodeKind.SWITCH:
            continue

        entry_ids = {entry.id for entry in entries}
        for edge in doc.edges:
            if edge.source != node.id or edge.source_handle in entry_ids:
                continue
            index = legacy_port_index(edge.source_handle)
            if index is None or index >= len(entries):
                continue
            edge.source_handle = entries[index].id
            edge.id = ""
            report.handles_rewritten += 1

    kept: set[str] = set()
    needs_id = []
    for edge in doc.edges:
        if edge.id and edge.id not in kept:
            kept.add(edge.id)
        else:
            needs_id.append(edge)

    for edge in needs_id:
        edge.id = build_edge_id(
            edge.source,
            edge.source_handle,
            edge.target,
            edge.target_handle,
            existing_ids=kept,
        )
        kept.add(edge.id)
        report.edge_ids_rebuilt += 1

    next_id = next_free_node_id((n.id for n in doc.nodes), doc.next_node_id)
    if next_id != doc.next_node_id:
        doc.next_node_id = next_id
        report.next_node_id_raised = True

    if report.changed:
        logger.info("legacy_identities_migrated", **report.to_dict())

    return doc, report
