"""Connection rules for journey edges.

Stateless checks run by the graph model before an edge is created or
rewired. Rules:
- Both endpoints exist and the handles are real ports of those nodes
- The Start node has at most one outgoing edge
- An output port carries at most one outgoing edge
"""
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from journey.graph.ports import input_port_ids, output_port_ids
from journey.models.journey import JourneyEdge, JourneyNode, NodeKind


@dataclass(frozen=True)
class ProposedEdge:
    """Endpoints of an edge that is about to be created or rewired."""

    source: str
    source_handle: Optional[str]
    target: str
    target_handle: Optional[str]


@dataclass(frozen=True)
class ConnectionVerdict:
    """Outcome of validating a proposed connection."""

    accepted: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.accepted


ACCEPTED = ConnectionVerdict(accepted=True)


def _reject(reason: str) -> ConnectionVerdict:
    return ConnectionVerdict(accepted=False, reason=reason)


def validate_connection(
    nodes: Mapping[str, JourneyNode],
    edges: Iterable[JourneyEdge],
    proposed: ProposedEdge,
    replacing: Optional[str] = None,
) -> ConnectionVerdict:
    """Check whether ``proposed`` may be added to the graph.

    Args:
        nodes: Current nodes keyed by id
        edges: Current edges
        proposed: The edge to create, or the new endpoints of a rewired edge
        replacing: Id of the edge under rewire, ignored by the checks

    Returns:
        ConnectionVerdict with a human-readable reason on rejection
    """
    source = nodes.get(proposed.source)
    if source is None:
        return _reject(f"Source node '{proposed.source}' does not exist")
    target = nodes.get(proposed.target)
    if target is None:
        return _reject(f"Target node '{proposed.target}' does not exist")

    if proposed.source_handle not in output_port_ids(source):
        return _reject(
            f"'{proposed.source_handle}' is not an output of node '{source.id}' ({source.label})"
        )
    if proposed.target_handle not in input_port_ids(target):
        return _reject(
            f"'{proposed.target_handle}' is not an input of node '{target.id}' ({target.label})"
        )

    others = [edge for edge in edges if edge.id != replacing]

    if source.kind == NodeKind.START:
        if any(edge.source == source.id for edge in others):
            return _reject("Start node can only have one outgoing connection")

    for edge in others:
        if edge.source == proposed.source and edge.source_handle == proposed.source_handle:
            return _reject(
                f"Output '{proposed.source_handle}' of node '{source.id}' is already connected"
            )

    return ACCEPTED
