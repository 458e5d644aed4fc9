"""Layered auto-layout for journey graphs.

Sugiyama-style placement in the flow direction:
1. Cycle removal (DFS from the Start node, back edges reversed)
2. Layer assignment (longest path over the acyclic graph)
3. Dummy vertices for edges spanning several layers
4. Crossing minimization (barycenter sweeps that honour port order)
5. Coordinate assignment (each vertex pulled toward its parents' ports)
6. Branch stabilization (minimum gap between two-way branch targets)

Port order is fixed per node and supplied here, never inferred by the
ordering step. Success/error order follows where the branch targets
currently sit, and is refined until the result agrees with it, so running
the layout on its own output returns the same positions.
"""
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Iterable, Optional

import networkx as nx
import structlog

from journey.config import Settings, get_settings
from journey.graph.identity import node_sort_key
from journey.graph.ports import ERROR, NO, SUCCESS, YES, output_ports
from journey.models.journey import JourneyEdge, JourneyNode, NodeKind, PortSide, Position

logger = structlog.get_logger()

DIRECTIONS = ("RIGHT", "DOWN")

# Kinds whose success/error port order is chosen by the layout
BRANCH_KINDS = {NodeKind.FORM, NodeKind.HTTP_REQUEST, NodeKind.JSON_PARSER}

TWO_WAY_PORTS = {
    NodeKind.FORM: (SUCCESS, ERROR),
    NodeKind.HTTP_REQUEST: (SUCCESS, ERROR),
    NodeKind.JSON_PARSER: (SUCCESS, ERROR),
    NodeKind.CONDITION: (YES, NO),
}

PortOrder = dict[str, tuple[str, str]]


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class LayoutOptions:
    """Tuning for the layered layout."""

    direction: str = "RIGHT"
    node_spacing: float = 40      # Between neighbours in the same layer
    layer_spacing: float = 80     # Between consecutive layers
    default_width: float = 160
    default_height: float = 80
    branch_min_gap: float = 140   # Minimum cross-axis distance between branch targets
    barycenter_iterations: int = 8
    max_port_refinements: int = 4
    padding: float = 12

    def __post_init__(self):
        self.direction = self.direction.upper()
        if self.direction not in DIRECTIONS:
            raise ValueError(f"Unsupported layout direction: {self.direction}")

    @property
    def horizontal(self) -> bool:
        return self.direction == "RIGHT"

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LayoutOptions":
        settings = settings or get_settings()
        return cls(
            direction=settings.layout_direction,
            node_spacing=settings.layout_node_spacing,
            layer_spacing=settings.layout_layer_spacing,
            default_width=settings.layout_default_node_width,
            default_height=settings.layout_default_node_height,
            branch_min_gap=settings.layout_branch_min_gap,
            max_port_refinements=settings.layout_max_port_refinements,
        )


# =============================================================================
# INTERNAL GRAPH
# =============================================================================


@dataclass
class _Vertex:
    """A node (or dummy) being laid out."""

    id: str
    main_size: float                 # Extent along the flow axis
    cross_size: float                # Extent across the flow axis
    slots: dict[str, float] = field(default_factory=dict)  # Output port -> fraction of cross extent
    seed: tuple = ()                 # Tie-breaker for ordering
    dummy: bool = False
    layer: int = 0
    order: int = 0
    cross: float = 0.0

    def slot(self, port_id: Optional[str]) -> float:
        return self.slots.get(port_id, 0.5)


@dataclass
class _Segment:
    """An edge piece between two adjacent layers."""

    upper: str
    lower: str
    upper_slot: float
    lower_slot: float = 0.5


def _node_order(nodes: Iterable[JourneyNode]) -> list[JourneyNode]:
    """Start first, then numeric id order."""
    return sorted(nodes, key=lambda n: (n.kind != NodeKind.START, node_sort_key(n.id)))


def _cross_of(position: Position, options: LayoutOptions) -> float:
    return position.y if options.horizontal else position.x


def _port_slots(node: JourneyNode, order: Optional[tuple[str, str]]) -> dict[str, float]:
    """Place each output port along the node's cross extent.

    Flow-side ports are spread evenly in their fixed order; NORTH and SOUTH
    ports sit on the leading and trailing edge.
    """
    ports = output_ports(node)
    flow = [p for p in ports if p.side == PortSide.EAST]
    if order is not None:
        rank = {port_id: i for i, port_id in enumerate(order)}
        flow.sort(key=lambda p: rank.get(p.id, len(rank)))

    slots = {p.id: (i + 1) / (len(flow) + 1) for i, p in enumerate(flow)}
    for port in ports:
        if port.side == PortSide.NORTH:
            slots[port.id] = 0.0
        elif port.side == PortSide.SOUTH:
            slots[port.id] = 1.0
    return slots


def branch_port_orders(
    nodes: Iterable[JourneyNode],
    edges: Iterable[JourneyEdge],
    positions: dict[str, Position],
    options: LayoutOptions,
) -> PortOrder:
    """Choose success/error port order from where the targets currently sit.

    The port whose target is further toward the leading edge is ordered
    first; ties and half-connected nodes keep success first.
    """
    targets: dict[str, dict[str, str]] = defaultdict(dict)
    for edge in edges:
        targets[edge.source].setdefault(edge.source_handle, edge.target)

    orders: PortOrder = {}
    for node in nodes:
        if node.kind not in BRANCH_KINDS:
            continue
        success = targets[node.id].get(SUCCESS)
        error = targets[node.id].get(ERROR)
        if success in positions and error in positions:
            if _cross_of(positions[success], options) > _cross_of(positions[error], options):
                orders[node.id] = (ERROR, SUCCESS)
                continue
        orders[node.id] = (SUCCESS, ERROR)
    return orders


class _LayeredGraph:
    """One layout pass for a fixed port order."""

    def __init__(
        self,
        nodes: list[JourneyNode],
        edges: list[JourneyEdge],
        port_order: PortOrder,
        options: LayoutOptions,
    ):
        self.options = options
        self.nodes = _node_order(nodes)
        self.edges = edges
        self.vertices: dict[str, _Vertex] = {}

        for node in self.nodes:
            width = node.width or options.default_width
            height = node.height or options.default_height
            main, cross = (width, height) if options.horizontal else (height, width)
            self.vertices[node.id] = _Vertex(
                id=node.id,
                main_size=main,
                cross_size=cross,
                slots=_port_slots(node, port_order.get(node.id)),
            )

        self.reversed: set[int] = set()
        self.self_loops = {i for i, e in enumerate(edges) if e.source == e.target}
        self.segments: list[_Segment] = []
        self.layers: dict[int, list[str]] = defaultdict(list)

    # -------------------------------------------------------------------------
    # 1. Cycle removal
    # -------------------------------------------------------------------------

    def _successors(self) -> dict[str, list[int]]:
        """Outgoing edge indexes per node, in port order."""
        outgoing: dict[str, list[int]] = defaultdict(list)
        for i, edge in enumerate(self.edges):
            if i not in self.self_loops:
                outgoing[edge.source].append(i)
        for source, indexes in outgoing.items():
            vertex = self.vertices[source]
            indexes.sort(key=lambda i: (
                vertex.slot(self.edges[i].source_handle),
                node_sort_key(self.edges[i].target),
            ))
        return outgoing

    def break_cycles(self) -> None:
        """Reverse DFS back edges, visiting from the Start node first."""
        outgoing = self._successors()
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {n.id: WHITE for n in self.nodes}
        visit_index = 0

        for root in self.nodes:
            if color[root.id] != WHITE:
                continue
            color[root.id] = GRAY
            self.vertices[root.id].seed = (visit_index, 0.0)
            visit_index += 1
            stack: list[tuple[str, int]] = [(root.id, 0)]
            while stack:
                u, idx = stack[-1]
                neighbours = outgoing.get(u, [])
                if idx >= len(neighbours):
                    color[u] = BLACK
                    stack.pop()
                    continue
                stack[-1] = (u, idx + 1)
                edge_index = neighbours[idx]
                v = self.edges[edge_index].target
                if color[v] == GRAY:
                    self.reversed.add(edge_index)
                elif color[v] == WHITE:
                    color[v] = GRAY
                    self.vertices[v].seed = (visit_index, 0.0)
                    visit_index += 1
                    stack.append((v, 0))

    def _directed(self, index: int) -> tuple[str, str]:
        edge = self.edges[index]
        if index in self.reversed:
            return edge.target, edge.source
        return edge.source, edge.target

    # -------------------------------------------------------------------------
    # 2. Layer assignment
    # -------------------------------------------------------------------------

    def assign_layers(self) -> None:
        dag = nx.DiGraph()
        dag.add_nodes_from(n.id for n in self.nodes)
        for i in range(len(self.edges)):
            if i not in self.self_loops:
                dag.add_edge(*self._directed(i))

        try:
            topo = list(nx.topological_sort(dag))
        except nx.NetworkXUnfeasible:
            logger.warning("layout_cycle_fallback", nodes=dag.number_of_nodes())
            self._assign_layers_bfs(dag)
            return

        for node_id in topo:
            preds = [self.vertices[p].layer + 1 for p in dag.predecessors(node_id)]
            self.vertices[node_id].layer = max(preds, default=0)

    def _assign_layers_bfs(self, graph: nx.DiGraph) -> None:
        """Breadth-first depth from the roots, for graphs that still have cycles."""
        seen: set[str] = set()
        for root in self.nodes:
            if root.id in seen:
                continue
            seen.add(root.id)
            queue = deque([root.id])
            while queue:
                u = queue.popleft()
                for v in graph.successors(u):
                    if v not in seen:
                        seen.add(v)
                        self.vertices[v].layer = self.vertices[u].layer + 1
                        queue.append(v)

        # Segments that still point backwards get no dummies
        for i in range(len(self.edges)):
            if i in self.self_loops:
                continue
            u, v = self._directed(i)
            if self.vertices[v].layer < self.vertices[u].layer:
                self.reversed ^= {i}

    # -------------------------------------------------------------------------
    # 3. Dummy vertices
    # -------------------------------------------------------------------------

    def insert_dummies(self) -> None:
        for i, edge in enumerate(self.edges):
            if i in self.self_loops:
                continue
            upper, lower = self._directed(i)
            if i in self.reversed:
                upper_slot, lower_slot = 0.5, self.vertices[edge.source].slot(edge.source_handle)
            else:
                upper_slot, lower_slot = self.vertices[edge.source].slot(edge.source_handle), 0.5

            start = self.vertices[upper].layer
            end = self.vertices[lower].layer
            prev, prev_slot = upper, upper_slot
            for layer in range(start + 1, end):
                dummy_id = f"_dummy_{i}_{layer}"
                self.vertices[dummy_id] = _Vertex(
                    id=dummy_id,
                    main_size=0.0,
                    cross_size=0.0,
                    seed=(self.vertices[lower].seed[0], upper_slot),
                    dummy=True,
                    layer=layer,
                )
                self.segments.append(_Segment(prev, dummy_id, prev_slot))
                prev, prev_slot = dummy_id, 0.5
            self.segments.append(_Segment(prev, lower, prev_slot, lower_slot))

        for vertex in self.vertices.values():
            self.layers[vertex.layer].append(vertex.id)

    # -------------------------------------------------------------------------
    # 4. Crossing minimization
    # -------------------------------------------------------------------------

    def order_layers(self) -> None:
        above: dict[str, list[_Segment]] = defaultdict(list)
        below: dict[str, list[_Segment]] = defaultdict(list)
        for seg in self.segments:
            above[seg.lower].append(seg)
            below[seg.upper].append(seg)

        max_layer = max(self.layers) if self.layers else 0

        self._sort_layer(0, lambda v: 0.0)
        for layer in range(1, max_layer + 1):
            self._sort_layer(layer, lambda v: self._down_barycenter(v, above))

        best = self._orders()
        best_crossings = self.count_crossings()
        for _ in range(self.options.barycenter_iterations):
            if best_crossings == 0:
                break
            for layer in range(1, max_layer + 1):
                self._sort_layer(layer, lambda v: self._down_barycenter(v, above))
            for layer in range(max_layer - 1, -1, -1):
                self._sort_layer(layer, lambda v: self._up_barycenter(v, below))
            crossings = self.count_crossings()
            if crossings >= best_crossings:
                break
            best, best_crossings = self._orders(), crossings

        for vertex_id, order in best.items():
            self.vertices[vertex_id].order = order
        for layer in self.layers.values():
            layer.sort(key=lambda v: self.vertices[v].order)

    def _orders(self) -> dict[str, int]:
        return {v.id: v.order for v in self.vertices.values()}

    def _sort_layer(self, layer: int, barycenter) -> None:
        members = self.layers[layer]
        members.sort(key=lambda v: (barycenter(v), self.vertices[v].seed))
        for i, vertex_id in enumerate(members):
            self.vertices[vertex_id].order = i

    def _down_barycenter(self, vertex_id: str, above: dict[str, list[_Segment]]) -> float:
        segs = above.get(vertex_id)
        if not segs:
            return self.vertices[vertex_id].order + 0.5
        return sum(self.vertices[s.upper].order + s.upper_slot for s in segs) / len(segs)

    def _up_barycenter(self, vertex_id: str, below: dict[str, list[_Segment]]) -> float:
        segs = below.get(vertex_id)
        if not segs:
            return self.vertices[vertex_id].order + 0.5
        return sum(
            self.vertices[s.lower].order + s.lower_slot - s.upper_slot + 0.5 for s in segs
        ) / len(segs)

    def count_crossings(self) -> int:
        by_layer: dict[int, list[tuple[float, float]]] = defaultdict(list)
        for seg in self.segments:
            upper = self.vertices[seg.upper]
            lower = self.vertices[seg.lower]
            by_layer[upper.layer].append((
                upper.order + 0.1 + 0.8 * seg.upper_slot,
                lower.order + 0.1 + 0.8 * seg.lower_slot,
            ))

        crossings = 0
        for pairs in by_layer.values():
            for i in range(len(pairs)):
                a_up, a_low = pairs[i]
                for b_up, b_low in pairs[i + 1:]:
                    if (a_up - b_up) * (a_low - b_low) < 0:
                        crossings += 1
        return crossings

    # -------------------------------------------------------------------------
    # 5. Coordinate assignment
    # -------------------------------------------------------------------------

    def _gap(self, a: _Vertex, b: _Vertex) -> float:
        if a.dummy or b.dummy:
            return self.options.node_spacing / 2
        return self.options.node_spacing

    def assign_coordinates(self) -> dict[str, tuple[float, float]]:
        """Return ``{node_id: (main, cross)}`` for real nodes."""
        above: dict[str, list[_Segment]] = defaultdict(list)
        for seg in self.segments:
            above[seg.lower].append(seg)

        main_offset: dict[int, float] = {}
        cursor = 0.0
        for layer in sorted(self.layers):
            main_offset[layer] = cursor
            extent = max((self.vertices[v].main_size for v in self.layers[layer]), default=0.0)
            cursor += extent + self.options.layer_spacing

        for layer in sorted(self.layers):
            members = [self.vertices[v] for v in self.layers[layer]]
            desired: dict[str, float] = {}
            for vertex in members:
                segs = above.get(vertex.id)
                if not segs:
                    continue
                anchors = [
                    self.vertices[s.upper].cross + self.vertices[s.upper].cross_size * s.upper_slot
                    - vertex.cross_size * s.lower_slot
                    for s in segs
                ]
                desired[vertex.id] = sum(anchors) / len(anchors)

            prev: Optional[_Vertex] = None
            for vertex in members:
                target = desired.get(vertex.id)
                if prev is None:
                    vertex.cross = target if target is not None else 0.0
                else:
                    floor = prev.cross + prev.cross_size + self._gap(prev, vertex)
                    vertex.cross = floor if target is None else max(target, floor)
                prev = vertex

            deviations = [desired[v.id] - v.cross for v in members if v.id in desired]
            if deviations:
                shift = sum(deviations) / len(deviations)
                for vertex in members:
                    vertex.cross += shift

        return {
            v.id: (main_offset[v.layer], v.cross)
            for v in self.vertices.values()
            if not v.dummy
        }

    def run(self) -> dict[str, tuple[float, float]]:
        self.break_cycles()
        self.assign_layers()
        self.insert_dummies()
        self.order_layers()
        return self.assign_coordinates()


# =============================================================================
# POST-PROCESSING
# =============================================================================


def _to_position(main: float, cross: float, options: LayoutOptions) -> Position:
    if options.horizontal:
        return Position(x=main, y=cross)
    return Position(x=cross, y=main)


def stabilize_branches(
    nodes: Iterable[JourneyNode],
    edges: Iterable[JourneyEdge],
    positions: dict[str, Position],
    options: LayoutOptions,
) -> dict[str, Position]:
    """Spread the two targets of a two-way node to at least ``branch_min_gap``.

    Targets are translated around their midpoint along the cross axis and
    never swapped.
    """
    targets: dict[str, dict[str, str]] = defaultdict(dict)
    for edge in edges:
        targets[edge.source].setdefault(edge.source_handle, edge.target)

    gap = options.branch_min_gap
    result = dict(positions)
    for node in _node_order(nodes):
        handles = TWO_WAY_PORTS.get(node.kind)
        if handles is None:
            continue
        first = targets[node.id].get(handles[0])
        second = targets[node.id].get(handles[1])
        if first is None or second is None or first == second:
            continue
        if node.id in (first, second) or first not in result or second not in result:
            continue

        a = _cross_of(result[first], options)
        b = _cross_of(result[second], options)
        if abs(b - a) >= gap:
            continue

        mid = (a + b) / 2
        if a <= b:
            a, b = mid - gap / 2, mid + gap / 2
        else:
            a, b = mid + gap / 2, mid - gap / 2
        result[first] = _with_cross(result[first], a, options)
        result[second] = _with_cross(result[second], b, options)
        logger.debug("branch_targets_spread", node_id=node.id, first=first, second=second)
    return result


def _with_cross(position: Position, cross: float, options: LayoutOptions) -> Position:
    if options.horizontal:
        return Position(x=position.x, y=cross)
    return Position(x=cross, y=position.y)


def _normalize(positions: dict[str, Position], padding: float) -> dict[str, Position]:
    if not positions:
        return positions
    min_x = min(p.x for p in positions.values())
    min_y = min(p.y for p in positions.values())
    return {
        node_id: Position(x=round(p.x - min_x + padding, 2), y=round(p.y - min_y + padding, 2))
        for node_id, p in positions.items()
    }


# =============================================================================
# ENTRY POINT
# =============================================================================


def _layout_once(
    nodes: list[JourneyNode],
    edges: list[JourneyEdge],
    port_order: PortOrder,
    options: LayoutOptions,
) -> dict[str, Position]:
    coords = _LayeredGraph(nodes, edges, port_order, options).run()
    positions = {
        node_id: _to_position(main, cross, options) for node_id, (main, cross) in coords.items()
    }
    positions = stabilize_branches(nodes, edges, positions, options)
    return _normalize(positions, options.padding)


def compute_layout(
    nodes: Iterable[JourneyNode],
    edges: Iterable[JourneyEdge],
    options: Optional[LayoutOptions] = None,
) -> dict[str, Position]:
    """Compute new positions for every node.

    Pure: reads the given nodes and edges, returns ``{node_id: Position}``
    and modifies nothing. Tolerates cycles and self-loops.

    Args:
        nodes: Nodes of a graph snapshot
        edges: Edges of the same snapshot
        options: Layout tuning, defaults to LayoutOptions()

    Returns:
        New top-left position per node id
    """
    options = options or LayoutOptions()
    nodes = list(nodes)
    if not nodes:
        return {}
    node_ids = {n.id for n in nodes}
    edges = [e for e in edges if e.source in node_ids and e.target in node_ids]

    port_order = branch_port_orders(nodes, edges, {n.id: n.position for n in nodes}, options)
    positions: dict[str, Position] = {}
    for attempt in range(options.max_port_refinements + 1):
        positions = _layout_once(nodes, edges, port_order, options)
        refined = branch_port_orders(nodes, edges, positions, options)
        if refined == port_order:
            break
        logger.debug("layout_port_order_refined", attempt=attempt)
        port_order = refined
    else:
        logger.info("layout_port_order_unsettled", attempts=options.max_port_refinements + 1)

    logger.info(
        "layout_computed",
        nodes=len(nodes),
        edges=len(edges),
        direction=options.direction,
    )
    return positions
