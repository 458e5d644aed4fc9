"""Journey graph model.

The single owner of a journey's nodes and edges. All mutations go through
this class; each one is validated, applied atomically, and followed by a
notification carrying the normalized document so that a persistence
collaborator can save it.
"""
from typing import Callable, Iterable, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from journey.graph.connections import ProposedEdge, validate_connection
from journey.graph.errors import (
    CaseNotFoundError,
    ConnectionRejectedError,
    DuplicateStartError,
    EdgeNotFoundError,
    InvalidPayloadError,
    NodeNotFoundError,
    ProtectedNodeError,
)
from journey.graph.identity import (
    build_edge_id,
    case_entries,
    generate_port_id,
    legacy_port_id,
    migrate_legacy_ports,
    resolve_port_index,
)
from journey.graph.ports import (
    case_id_conflicts,
    classify,
    default_handle,
    enumerate_ports,
    output_port_ids,
    repaint_edge,
)
from journey.models.journey import (
    JourneyDocument,
    JourneyEdge,
    JourneyNode,
    NodeKind,
    Port,
    PortDirection,
    Position,
    StartPayload,
    build_payload,
)

logger = structlog.get_logger()

ChangeListener = Callable[[dict], None]

DEFAULT_START_POSITION = Position(x=100, y=250)


class JourneyGraph:
    """Owns the node set and edge set of one journey.

    Invariants kept after every mutation:
    - exactly one Start node, which cannot be removed
    - the Start node has at most one outgoing edge
    - an output port has at most one outgoing edge
    - every edge references existing nodes and an existing source port
    - edge ids are unique
    """

    def __init__(
        self,
        nodes: Optional[Iterable[JourneyNode]] = None,
        edges: Optional[Iterable[JourneyEdge]] = None,
        next_node_id: int = 2,
        on_change: Optional[ChangeListener] = None,
    ):
        self._nodes: dict[str, JourneyNode] = {n.id: n for n in nodes or []}
        self._edges: dict[str, JourneyEdge] = {e.id: e for e in edges or []}
        self._next_node_id = next_node_id
        self._listeners: list[ChangeListener] = []
        if on_change:
            self._listeners.append(on_change)

    @classmethod
    def default(cls, on_change: Optional[ChangeListener] = None) -> "JourneyGraph":
        """An empty journey: one Start node, no edges."""
        start = JourneyNode(
            id="1",
            kind=NodeKind.START,
            position=DEFAULT_START_POSITION.model_copy(),
            payload=StartPayload(),
        )
        return cls([start], [], next_node_id=2, on_change=on_change)

    @classmethod
    def from_document(
        cls,
        document: JourneyDocument,
        on_change: Optional[ChangeListener] = None,
    ) -> "JourneyGraph":
        """Build a graph from a validated document.

        Identities are migrated and edge labels re-derived, since labels are
        never authoritative in stored data. Edges leaving a port their source
        node does not expose are dropped.
        """
        migrated, _ = migrate_legacy_ports(document)
        nodes = {n.id: n for n in migrated.nodes}
        edges = []
        dropped = []
        for edge in migrated.edges:
            source = nodes.get(edge.source)
            if source is None or edge.source_handle not in output_port_ids(source):
                dropped.append(edge.id)
                continue
            edges.append(edge)
        if dropped:
            logger.warning("dangling_edges_removed", edge_ids=dropped)

        graph = cls(
            migrated.nodes,
            edges,
            next_node_id=migrated.next_node_id,
            on_change=on_change,
        )
        graph._edges = graph._repainted(graph._edges, graph._nodes)
        return graph

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def nodes(self) -> list[JourneyNode]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[JourneyEdge]:
        return list(self._edges.values())

    @property
    def next_node_id(self) -> int:
        return self._next_node_id

    @property
    def start_node(self) -> Optional[JourneyNode]:
        for node in self._nodes.values():
            if node.kind == NodeKind.START:
                return node
        return None

    def get_node(self, node_id: str) -> Optional[JourneyNode]:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Optional[JourneyEdge]:
        return self._edges.get(edge_id)

    def ports(self, node_id: str) -> list[Port]:
        """Live port list of a node."""
        return enumerate_ports(self._require_node(node_id))

    def outgoing(self, node_id: str) -> list[JourneyEdge]:
        return [e for e in self._edges.values() if e.source == node_id]

    def incoming(self, node_id: str) -> list[JourneyEdge]:
        return [e for e in self._edges.values() if e.target == node_id]

    def snapshot(self) -> JourneyDocument:
        """Immutable copy of the current state, for layout and export."""
        return JourneyDocument(
            nodes=[n.model_copy(deep=True) for n in self._nodes.values()],
            edges=[e.model_copy(deep=True) for e in self._edges.values()],
            next_node_id=self._next_node_id,
        )

    def to_document(self) -> dict:
        """Normalized persistence projection without canvas-only fields."""
        return {
            "nodes": [n.to_persisted() for n in self._nodes.values()],
            "edges": [e.to_persisted() for e in self._edges.values()],
            "nextNodeId": self._next_node_id,
        }

    # =========================================================================
    # Change notification
    # =========================================================================

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: str, **context) -> None:
        logger.info(event, **context)
        if not self._listeners:
            return
        document = self.to_document()
        for listener in list(self._listeners):
            try:
                listener(document)
            except Exception as e:
                # The mutation is already applied; a failing listener must not undo it
                logger.error("graph_listener_error", graph_event=event, error=str(e))

    # =========================================================================
    # Nodes
    # =========================================================================

    def add_node(
        self,
        kind: Union[NodeKind, str],
        position: Optional[Union[Position, dict]] = None,
        payload: Optional[dict] = None,
    ) -> str:
        """Add a node with the next sequential id and kind defaults.

        Returns:
            The new node id
        """
        kind = NodeKind(kind)
        if kind == NodeKind.START and self.start_node is not None:
            raise DuplicateStartError()

        node_id = str(self._next_node_id)
        try:
            built = build_payload(kind, payload)
        except ValidationError as e:
            raise InvalidPayloadError(node_id, str(e)) from e
        _check_case_ids(node_id, kind, built)
        _assign_missing_case_ids(kind, built)

        if position is None:
            position = Position()
        elif isinstance(position, dict):
            position = Position.model_validate(position)

        node = JourneyNode(id=node_id, kind=kind, position=position, payload=built)
        self._nodes = {**self._nodes, node_id: node}
        self._next_node_id += 1

        self._emit("node_added", node_id=node_id, kind=kind.value)
        return node_id

    def remove_node(self, node_id: str) -> list[str]:
        """Delete a node and every edge touching it.

        Returns:
            Ids of the edges removed by the cascade
        """
        node = self._require_node(node_id)
        if node.kind == NodeKind.START:
            logger.warning("start_node_delete_refused", node_id=node_id)
            raise ProtectedNodeError(node_id)

        removed = [
            e.id for e in self._edges.values()
            if e.source == node_id or e.target == node_id
        ]
        self._nodes = {k: v for k, v in self._nodes.items() if k != node_id}
        self._edges = {k: v for k, v in self._edges.items() if k not in removed}

        self._emit("node_removed", node_id=node_id, edges_removed=len(removed))
        return removed

    def move_node(self, node_id: str, position: Union[Position, dict]) -> JourneyNode:
        node = self._require_node(node_id)
        if isinstance(position, dict):
            position = Position.model_validate(position)
        moved = node.model_copy(update={"position": position})
        self._nodes = {**self._nodes, node_id: moved}
        self._emit("node_moved", node_id=node_id)
        return moved

    def apply_positions(self, positions: Mapping[str, Union[Position, dict]]) -> int:
        """Apply a complete layout result as one update.

        Positions for nodes that no longer exist are ignored.

        Returns:
            Number of nodes moved
        """
        updated = dict(self._nodes)
        moved = 0
        for node_id, position in positions.items():
            node = updated.get(node_id)
            if node is None:
                logger.debug("layout_position_for_unknown_node", node_id=node_id)
                continue
            if isinstance(position, dict):
                position = Position.model_validate(position)
            updated[node_id] = node.model_copy(update={"position": position})
            moved += 1
        self._nodes = updated
        self._emit("positions_applied", moved=moved)
        return moved

    def update_node_payload(self, node_id: str, patch: dict) -> JourneyNode:
        """Merge ``patch`` into a node's payload and revalidate its edges.

        Top-level keys replace the current values (lists are replaced
        wholesale). Edges leaving a port that no longer exists are removed;
        the rest are relabelled. Keys may use field names or their camelCase
        aliases.

        Raises:
            InvalidPayloadError: The merged payload is invalid, or its case ids
                repeat or clash with a fixed port
        """
        node = self._require_node(node_id)
        merged = {**node.payload.model_dump(by_alias=True), **_aliased(node.payload, patch)}
        try:
            payload = build_payload(node.kind, merged)
        except ValidationError as e:
            raise InvalidPayloadError(node_id, str(e)) from e
        _check_case_ids(node_id, node.kind, payload)
        _assign_missing_case_ids(node.kind, payload)

        updated_node = node.model_copy(update={"payload": payload})
        nodes = {**self._nodes, node_id: updated_node}

        valid_handles = set(output_port_ids(updated_node))
        edges = {}
        dropped = []
        for edge_id, edge in self._edges.items():
            if edge.source == node_id and edge.source_handle not in valid_handles:
                dropped.append(edge_id)
                continue
            edges[edge_id] = edge

        self._nodes = nodes
        self._edges = self._repainted(edges, nodes, only_source=node_id)

        if dropped:
            logger.info("dangling_edges_removed", node_id=node_id, edge_ids=dropped)
        self._emit("node_payload_updated", node_id=node_id, edges_removed=len(dropped))
        return updated_node

    # =========================================================================
    # Cases
    # =========================================================================

    def add_case(self, node_id: str, value: str = "") -> str:
        """Append a case to a Switch node.

        Returns:
            The generated port id of the new case
        """
        node = self._require_node(node_id)
        if node.kind != NodeKind.SWITCH:
            raise InvalidPayloadError(node_id, "only switch nodes have cases")
        case_id = generate_port_id()
        cases = [c.model_dump() for c in node.payload.cases]
        cases.append({"id": case_id, "value": value})
        self.update_node_payload(node_id, {"cases": cases})
        return case_id

    def add_condition(
        self,
        node_id: str,
        condition: str = "",
        operator: str = "equals",
        value: str = "",
    ) -> str:
        """Append a condition to a MultiCondition node.

        Returns:
            The positional port id of the new condition
        """
        node = self._require_node(node_id)
        if node.kind != NodeKind.MULTI_CONDITION:
            raise InvalidPayloadError(node_id, "only multi-condition nodes have conditions")
        conditions = [c.model_dump() for c in node.payload.conditions]
        conditions.append({
            "id": generate_port_id(),
            "condition": condition,
            "operator": operator,
            "value": value,
        })
        self.update_node_payload(node_id, {"conditions": conditions})
        return legacy_port_id(len(conditions) - 1)

    def remove_case(self, node_id: str, case_ref: Union[str, int]) -> list[str]:
        """Remove a case/condition entry and the edges anchored on its port.

        ``case_ref`` is a port id (stable or positional) or a zero-based index.
        Positional handles of later MultiCondition entries are renumbered so
        their edges stay attached to the same entry.

        Returns:
            Ids of the edges removed by the cascade
        """
        node = self._require_node(node_id)
        entries = case_entries(node)
        if entries is None:
            raise CaseNotFoundError(node_id, case_ref)

        if isinstance(case_ref, int) and not isinstance(case_ref, bool):
            index = case_ref if 0 <= case_ref < len(entries) else None
        else:
            index = resolve_port_index(node, case_ref)
        if index is None:
            raise CaseNotFoundError(node_id, case_ref)

        payload = node.payload.model_copy(deep=True)
        del case_entries_of(payload, node.kind)[index]
        updated_node = node.model_copy(update={"payload": payload})
        nodes = {**self._nodes, node_id: updated_node}

        edges: dict[str, JourneyEdge] = {}
        removed = []
        shifted = []
        for edge_id, edge in self._edges.items():
            if edge.source != node_id:
                edges[edge_id] = edge
                continue
            old_index = resolve_port_index(node, edge.source_handle)
            if old_index == index:
                removed.append(edge_id)
                continue
            if (
                node.kind == NodeKind.MULTI_CONDITION
                and old_index is not None
                and old_index > index
            ):
                edge = edge.model_copy(update={"source_handle": legacy_port_id(old_index - 1)})
                shifted.append(edge_id)
            edges[edge_id] = edge

        edges = self._rekeyed(edges, shifted)
        self._nodes = nodes
        self._edges = self._repainted(edges, nodes, only_source=node_id)

        self._emit("case_removed", node_id=node_id, index=index, edges_removed=len(removed))
        return removed

    # =========================================================================
    # Edges
    # =========================================================================

    def connect(
        self,
        source: str,
        source_handle: Optional[str],
        target: str,
        target_handle: Optional[str],
    ) -> str:
        """Create an edge after checking the connection rules.

        Missing handles default to the node's only output/input port.

        Returns:
            The derived edge id

        Raises:
            ConnectionRejectedError: The connection breaks a rule
        """
        source_node = self._nodes.get(source)
        target_node = self._nodes.get(target)
        if source_handle is None and source_node is not None:
            source_handle = default_handle(source_node, PortDirection.OUT)
        if target_handle is None and target_node is not None:
            target_handle = default_handle(target_node, PortDirection.IN)

        proposed = ProposedEdge(source, source_handle, target, target_handle)
        verdict = validate_connection(self._nodes, self._edges.values(), proposed)
        if not verdict:
            logger.warning(
                "connection_rejected",
                source=source,
                source_handle=source_handle,
                target=target,
                reason=verdict.reason,
            )
            raise ConnectionRejectedError(verdict.reason)

        edge_id = build_edge_id(
            source, source_handle, target, target_handle,
            existing_ids=self._edges.keys(),
        )
        style = classify(source_node, source_handle)
        edge = JourneyEdge(
            id=edge_id,
            source=source,
            source_handle=source_handle,
            target=target,
            target_handle=target_handle,
            label=style.label,
            color_role=style.role,
        )
        self._edges = {**self._edges, edge_id: edge}

        self._emit("edge_connected", edge_id=edge_id, role=style.role.value)
        return edge_id

    def rewire_edge(
        self,
        edge_id: str,
        source: Optional[str] = None,
        source_handle: Optional[str] = None,
        target: Optional[str] = None,
        target_handle: Optional[str] = None,
    ) -> JourneyEdge:
        """Move one or both endpoints of an existing edge.

        The edge keeps its id when nothing changed; otherwise the id is
        re-derived from the new endpoints.

        Raises:
            ConnectionRejectedError: The new endpoints break a rule
        """
        edge = self._require_edge(edge_id)

        new_source = source or edge.source
        new_target = target or edge.target
        new_source_handle = source_handle or self._carry_handle(
            edge.source_handle, edge.source, new_source, PortDirection.OUT,
        )
        new_target_handle = target_handle or self._carry_handle(
            edge.target_handle, edge.target, new_target, PortDirection.IN,
        )

        unchanged = (
            new_source == edge.source
            and new_source_handle == edge.source_handle
            and new_target == edge.target
            and new_target_handle == edge.target_handle
        )
        if unchanged:
            return edge

        proposed = ProposedEdge(new_source, new_source_handle, new_target, new_target_handle)
        verdict = validate_connection(self._nodes, self._edges.values(), proposed, replacing=edge_id)
        if not verdict:
            logger.warning("rewire_rejected", edge_id=edge_id, reason=verdict.reason)
            raise ConnectionRejectedError(verdict.reason, edge_id=edge_id)

        new_id = build_edge_id(
            new_source, new_source_handle, new_target, new_target_handle,
            existing_ids=self._edges.keys(),
            exclude=edge_id,
        )
        style = classify(self._nodes[new_source], new_source_handle)
        rewired = edge.model_copy(update={
            "id": new_id,
            "source": new_source,
            "source_handle": new_source_handle,
            "target": new_target,
            "target_handle": new_target_handle,
            "label": style.label,
            "color_role": style.role,
        })
        self._edges = {
            (new_id if k == edge_id else k): (rewired if k == edge_id else v)
            for k, v in self._edges.items()
        }

        self._emit("edge_rewired", edge_id=edge_id, new_edge_id=new_id)
        return rewired

    def remove_edge(self, edge_id: str) -> JourneyEdge:
        edge = self._require_edge(edge_id)
        self._edges = {k: v for k, v in self._edges.items() if k != edge_id}
        self._emit("edge_removed", edge_id=edge_id)
        return edge

    # =========================================================================
    # Bulk replacement
    # =========================================================================

    def replace(self, document: JourneyDocument) -> None:
        """Swap the whole graph for a validated document (import path)."""
        fresh = JourneyGraph.from_document(document)
        self._nodes = fresh._nodes
        self._edges = fresh._edges
        self._next_node_id = fresh._next_node_id
        self._emit("graph_replaced", nodes=len(self._nodes), edges=len(self._edges))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_node(self, node_id: str) -> JourneyNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def _require_edge(self, edge_id: str) -> JourneyEdge:
        edge = self._edges.get(edge_id)
        if edge is None:
            raise EdgeNotFoundError(edge_id)
        return edge

    def _carry_handle(
        self,
        handle: str,
        old_node_id: str,
        new_node_id: str,
        direction: PortDirection,
    ) -> Optional[str]:
        """Keep a handle across an endpoint move when the new node has it."""
        if new_node_id == old_node_id:
            return handle
        node = self._nodes.get(new_node_id)
        if node is None:
            return handle
        ports = enumerate_ports(node)
        if any(p.id == handle and p.direction == direction for p in ports):
            return handle
        return default_handle(node, direction) or handle

    @staticmethod
    def _repainted(
        edges: dict[str, JourneyEdge],
        nodes: dict[str, JourneyNode],
        only_source: Optional[str] = None,
    ) -> dict[str, JourneyEdge]:
        result = {}
        for edge_id, edge in edges.items():
            source = nodes.get(edge.source)
            if source is not None and (only_source is None or edge.source == only_source):
                edge = repaint_edge(edge, source)
            result[edge_id] = edge
        return result

    @staticmethod
    def _rekeyed(edges: dict[str, JourneyEdge], edge_ids: list[str]) -> dict[str, JourneyEdge]:
        """Re-derive the ids of ``edge_ids`` from their current endpoints."""
        if not edge_ids:
            return edges
        changing = set(edge_ids)
        taken = {k for k in edges if k not in changing}
        result: dict[str, JourneyEdge] = {}
        for edge_id, edge in edges.items():
            if edge_id in changing:
                edge_id = build_edge_id(
                    edge.source, edge.source_handle, edge.target, edge.target_handle,
                    existing_ids=taken,
                )
                taken.add(edge_id)
                edge = edge.model_copy(update={"id": edge_id})
            result[edge_id] = edge
        return result


def case_entries_of(payload, kind: NodeKind) -> list:
    """The mutable case/condition list of a payload."""
    if kind == NodeKind.SWITCH:
        return payload.cases
    return payload.conditions


def _aliased(payload, patch: dict) -> dict:
    """Rename field-name keys of ``patch`` to the aliases the payload dumps with."""
    fields = type(payload).model_fields
    return {
        (fields[key].alias or key) if key in fields else key: value
        for key, value in patch.items()
    }


def _check_case_ids(node_id: str, kind: NodeKind, payload) -> None:
    if kind not in (NodeKind.SWITCH, NodeKind.MULTI_CONDITION):
        return
    problems = case_id_conflicts(kind, (e.id for e in case_entries_of(payload, kind)))
    if problems:
        logger.warning("case_ids_rejected", node_id=node_id, problems=problems)
        raise InvalidPayloadError(node_id, "; ".join(problems))


def _assign_missing_case_ids(kind: NodeKind, payload) -> None:
    if kind not in (NodeKind.SWITCH, NodeKind.MULTI_CONDITION):
        return
    for entry in case_entries_of(payload, kind):
        if not entry.id:
            entry.id = generate_port_id()
