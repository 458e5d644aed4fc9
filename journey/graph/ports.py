"""Port semantics table.

Derives the live port list of a node from its kind and payload, and maps an
output port to the color/label policy of the edges leaving it.

Port addressing differs per kind:
- Switch cases are addressed by their stable generated id
- MultiCondition cases are addressed positionally (``case-0``, ``case-1``...)
"""
from typing import Callable, Iterable, Optional

import structlog

from journey.graph.identity import legacy_port_id, resolve_port
from journey.models.journey import (
    ConditionCase,
    JourneyEdge,
    JourneyNode,
    NodeKind,
    Port,
    PortDirection,
    PortRole,
    PortSide,
    PortStyle,
)

logger = structlog.get_logger()

# Fixed port ids
START_OUTPUT = "right"
END_INPUT = "left"
INPUT = "input"
SUCCESS = "success"
ERROR = "error"
YES = "yes"
NO = "no"
ELSE = "else"
DEFAULT = "default"
PLAIN_OUTPUT = "right"

# Palette shared with the canvas
PRIMARY = "#2563eb"
GREEN = "#059669"
RED = "#dc2626"
ORANGE = "#ea580c"
PURPLE = "#7c3aed"
GRAY = "#6b7280"

EDGE_STROKE_WIDTH = 2

_FIXED_STYLES: dict[str, tuple[PortRole, str, str]] = {
    SUCCESS: (PortRole.SUCCESS, GREEN, "success"),
    ERROR: (PortRole.ERROR, RED, "error"),
    YES: (PortRole.YES, GREEN, "true"),
    NO: (PortRole.NO, RED, "false"),
    ELSE: (PortRole.ELSE, GRAY, "else"),
    DEFAULT: (PortRole.DEFAULT, GRAY, "default"),
}

OPERATOR_SYMBOLS = {
    "equals": "==",
    "notEquals": "!=",
    "greaterThan": ">",
    "greaterThanOrEqual": ">=",
    "lessThan": "<",
    "lessThanOrEqual": "<=",
    "contains": "contains",
    "notContains": "not contains",
    "startsWith": "starts with",
    "endsWith": "ends with",
    "exists": "exists",
    "isEmpty": "is empty",
}


def _style(role: PortRole, color: str, label: str = "") -> PortStyle:
    return PortStyle(role=role, color=color, stroke_width=EDGE_STROKE_WIDTH, label=label)


PLAIN_STYLE = _style(PortRole.PLAIN, PRIMARY)

# Fixed ports that a case/condition entry id must not shadow
RESERVED_CASE_IDS: dict[NodeKind, set[str]] = {
    NodeKind.SWITCH: {INPUT, DEFAULT},
    NodeKind.MULTI_CONDITION: {INPUT, ELSE},
}


def case_id_conflicts(kind: NodeKind, entry_ids: Iterable[Optional[str]]) -> list[str]:
    """Describe entry ids that repeat, or that clash with a fixed port of ``kind``.

    Entries without an id are skipped; they get a generated one later.
    """
    reserved = RESERVED_CASE_IDS.get(kind, set())
    seen: set[str] = set()
    problems = []
    for entry_id in entry_ids:
        if not entry_id:
            continue
        if entry_id in reserved:
            problems.append(f"case id '{entry_id}' clashes with terminal port '{entry_id}'")
        elif entry_id in seen:
            problems.append(f"duplicate case id '{entry_id}'")
        seen.add(entry_id)
    return problems


def render_condition(case: ConditionCase) -> str:
    """Render a MultiCondition entry as a readable expression."""
    operator = OPERATOR_SYMBOLS.get(case.operator, case.operator)
    parts = [case.condition.strip(), operator.strip() if operator else "", case.value.strip()]
    if not parts[0] and not parts[2]:
        return ""
    return " ".join(part for part in parts if part)


def classify(node: JourneyNode, port_id: Optional[str]) -> PortStyle:
    """Return the role, color and default label for an output port.

    Unresolvable case ports fall back to the plain style rather than raising,
    so a broken label never blocks editing the rest of the graph.
    """
    if node.kind == NodeKind.SWITCH and port_id == DEFAULT:
        return _style(PortRole.DEFAULT, GRAY, node.payload.default_label or "default")

    if node.kind in (NodeKind.SWITCH, NodeKind.MULTI_CONDITION) and port_id not in _FIXED_STYLES:
        entry = resolve_port(node, port_id)
        if entry is None:
            logger.debug("port_unresolved", node_id=node.id, port_id=port_id)
            return PLAIN_STYLE.model_copy()
        if node.kind == NodeKind.SWITCH:
            return _style(PortRole.CASE, PURPLE, entry.value or "case")
        return _style(PortRole.CASE, ORANGE, render_condition(entry) or "case")

    fixed = _FIXED_STYLES.get(port_id)
    if fixed:
        role, color, label = fixed
        return _style(role, color, label)

    return PLAIN_STYLE.model_copy()


# =============================================================================
# PORT BUILDERS
# One builder per node kind; enumerate_ports dispatches on the kind.
# =============================================================================


def _input(port_id: str = INPUT) -> Port:
    return Port(id=port_id, direction=PortDirection.IN, side=PortSide.WEST, index=0)


def _output(node: JourneyNode, port_id: str, side: PortSide, index: int) -> Port:
    style = classify(node, port_id)
    return Port(
        id=port_id,
        direction=PortDirection.OUT,
        side=side,
        role=style.role,
        index=index,
        label=style.label,
    )


def _start_ports(node: JourneyNode) -> list[Port]:
    return [_output(node, START_OUTPUT, PortSide.EAST, 0)]


def _end_ports(node: JourneyNode) -> list[Port]:
    return [_input(END_INPUT)]


def _condition_ports(node: JourneyNode) -> list[Port]:
    return [
        _input(),
        _output(node, YES, PortSide.NORTH, 0),
        _output(node, NO, PortSide.SOUTH, 0),
    ]


def _multi_condition_ports(node: JourneyNode) -> list[Port]:
    conditions = node.payload.conditions
    ports = [_input()]
    for i in range(len(conditions)):
        ports.append(_output(node, legacy_port_id(i), PortSide.EAST, i))
    ports.append(_output(node, ELSE, PortSide.EAST, len(conditions)))
    return ports


def _switch_ports(node: JourneyNode) -> list[Port]:
    cases = node.payload.cases
    ports = [_input()]
    for i, case in enumerate(cases):
        # Un-migrated cases are still reachable through their position
        ports.append(_output(node, case.id or legacy_port_id(i), PortSide.EAST, i))
    ports.append(_output(node, DEFAULT, PortSide.EAST, len(cases)))
    return ports


def _single_output_ports(node: JourneyNode) -> list[Port]:
    return [_input(), _output(node, PLAIN_OUTPUT, PortSide.EAST, 0)]


def _branch_ports(node: JourneyNode) -> list[Port]:
    return [
        _input(),
        _output(node, SUCCESS, PortSide.EAST, 0),
        _output(node, ERROR, PortSide.EAST, 1),
    ]


PORT_BUILDERS: dict[NodeKind, Callable[[JourneyNode], list[Port]]] = {
    NodeKind.START: _start_ports,
    NodeKind.SUCCESS_END: _end_ports,
    NodeKind.ERROR_END: _end_ports,
    NodeKind.CONDITION: _condition_ports,
    NodeKind.MULTI_CONDITION: _multi_condition_ports,
    NodeKind.SWITCH: _switch_ports,
    NodeKind.CONTEXT_OPERATION: _single_output_ports,
    NodeKind.FORM: _branch_ports,
    NodeKind.HTTP_REQUEST: _branch_ports,
    NodeKind.JSON_PARSER: _branch_ports,
}


def enumerate_ports(node: JourneyNode) -> list[Port]:
    """Derive the live port list of a node from its kind and payload.

    Must be re-run whenever the payload changes.
    """
    return PORT_BUILDERS[node.kind](node)


def output_ports(node: JourneyNode) -> list[Port]:
    return [p for p in enumerate_ports(node) if p.direction == PortDirection.OUT]


def input_ports(node: JourneyNode) -> list[Port]:
    return [p for p in enumerate_ports(node) if p.direction == PortDirection.IN]


def output_port_ids(node: JourneyNode) -> list[str]:
    return [p.id for p in output_ports(node)]


def input_port_ids(node: JourneyNode) -> list[str]:
    return [p.id for p in input_ports(node)]


def default_handle(node: JourneyNode, direction: PortDirection) -> Optional[str]:
    """The only port in ``direction``, if the node has exactly one."""
    ports = output_ports(node) if direction == PortDirection.OUT else input_ports(node)
    return ports[0].id if len(ports) == 1 else None


def repaint_edge(edge: JourneyEdge, source: JourneyNode) -> JourneyEdge:
    """Return ``edge`` with label and color role re-derived from its source port."""
    style = classify(source, edge.source_handle)
    if edge.label == style.label and edge.color_role == style.role:
        return edge
    return edge.model_copy(update={"label": style.label, "color_role": style.role})
