"""Structural validation of journey documents.

Runs against raw, untrusted data (imports, stored documents) before anything
is installed in a graph. Every violation is collected; a document with at
least one error is refused as a whole.
"""
import math
from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from journey.graph.identity import next_free_node_id, resolve_port_index
from journey.graph.ports import case_id_conflicts, output_port_ids
from journey.models.journey import JourneyDocument, JourneyNode, NodeKind

logger = structlog.get_logger()

SUPPORTED_VERSIONS = {"1.0"}

_CASE_LISTS = {
    NodeKind.SWITCH.value: "cases",
    NodeKind.MULTI_CONDITION.value: "conditions",
}


class ValidationIssue:
    """A single problem found in a document."""

    def __init__(
        self,
        category: str,
        message: str,
        node_id: Optional[str] = None,
        edge_id: Optional[str] = None,
        severity: str = "error",
    ):
        self.category = category
        self.message = message
        self.node_id = node_id
        self.edge_id = edge_id
        self.severity = severity

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "message": self.message,
            "node_id": self.node_id,
            "edge_id": self.edge_id,
            "severity": self.severity,
        }

    def __repr__(self) -> str:
        return f"ValidationIssue({self.severity}: {self.message})"


class ValidationReport:
    """Outcome of validating a document."""

    def __init__(self):
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationIssue] = []

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, category: str, message: str, **context) -> None:
        self.errors.append(ValidationIssue(category, message, **context))

    def warn(self, category: str, message: str, **context) -> None:
        self.warnings.append(ValidationIssue(category, message, severity="warning", **context))

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _id_text(value: Any) -> Optional[str]:
    """Node/edge ids may be stored as strings or integers."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def validate_document(data: Any) -> ValidationReport:
    """Check the structure of a journey document.

    Args:
        data: Parsed JSON of a persisted or exported document

    Returns:
        ValidationReport listing every error and warning
    """
    report = ValidationReport()

    if not isinstance(data, dict):
        report.error("structure", "Document must be a JSON object")
        return report

    nodes = data.get("nodes")
    edges = data.get("edges")
    if not isinstance(nodes, list):
        report.error("structure", "'nodes' must be an array")
    if not isinstance(edges, list):
        report.error("structure", "'edges' must be an array")
    next_node_id = data.get("nextNodeId")
    if next_node_id is None:
        report.error("structure", "'nextNodeId' is missing")
    elif not _is_number(next_node_id):
        report.error("structure", "'nextNodeId' must be a number")
    if not report.valid:
        return report

    node_kinds = _check_nodes(nodes, report)
    _check_edges(edges, node_kinds, report)

    starts = [node_id for node_id, kind in node_kinds.items() if kind == NodeKind.START.value]
    if len(starts) != 1:
        report.error("start", f"Journey must have exactly one start node, found {len(starts)}")

    _check_payloads(nodes, report)

    if report.valid:
        _check_model(data, report)

    _check_warnings(data, node_kinds, report)

    if not report.valid:
        logger.warning(
            "document_invalid",
            error_count=len(report.errors),
            warning_count=len(report.warnings),
        )
    return report


def _check_nodes(nodes: list, report: ValidationReport) -> dict[str, str]:
    """Validate node entries and return ``{node_id: kind}`` for usable ones."""
    kinds = {kind.value for kind in NodeKind}
    seen: dict[str, str] = {}

    for i, node in enumerate(nodes):
        if not isinstance(node, dict):
            report.error("node", f"Node at index {i} must be an object")
            continue

        node_id = _id_text(node.get("id"))
        if node_id is None:
            report.error("node", f"Node at index {i} has no id")
            continue

        kind = node.get("kind")
        if kind not in kinds:
            report.error("node", f"Node '{node_id}' has unknown kind '{kind}'", node_id=node_id)

        position = node.get("position")
        if not (
            isinstance(position, dict)
            and _is_number(position.get("x"))
            and _is_number(position.get("y"))
            and math.isfinite(position["x"])
            and math.isfinite(position["y"])
        ):
            report.error(
                "node",
                f"Node '{node_id}' must have a position with finite x and y",
                node_id=node_id,
            )

        if "payload" not in node:
            report.error("node", f"Node '{node_id}' has no payload", node_id=node_id)
        elif not isinstance(node["payload"], dict):
            report.error("node", f"Node '{node_id}' payload must be an object", node_id=node_id)

        if node_id in seen:
            report.error("node", f"Duplicate node id: {node_id}", node_id=node_id)
            continue
        seen[node_id] = kind

    return seen


def _check_edges(edges: list, node_kinds: dict[str, str], report: ValidationReport) -> None:
    used_outputs: set[tuple[str, str]] = set()
    start_outgoing = 0
    start_ids = {n for n, k in node_kinds.items() if k == NodeKind.START.value}

    for i, edge in enumerate(edges):
        if not isinstance(edge, dict):
            report.error("edge", f"Edge at index {i} must be an object")
            continue

        edge_id = _id_text(edge.get("id"))
        label = edge_id or f"#{i}"
        source = _id_text(edge.get("source"))
        target = _id_text(edge.get("target"))

        if source is None or source not in node_kinds:
            report.error("edge", f"Edge '{label}' source '{edge.get('source')}' not found", edge_id=edge_id)
        if target is None or target not in node_kinds:
            report.error("edge", f"Edge '{label}' target '{edge.get('target')}' not found", edge_id=edge_id)

        source_handle = edge.get("sourceHandle")
        target_handle = edge.get("targetHandle")
        if not isinstance(source_handle, str) or not source_handle:
            report.error("edge", f"Edge '{label}' has no sourceHandle", edge_id=edge_id)
        if not isinstance(target_handle, str) or not target_handle:
            report.error("edge", f"Edge '{label}' has no targetHandle", edge_id=edge_id)

        if source in start_ids:
            start_outgoing += 1

        if source is not None and isinstance(source_handle, str):
            key = (source, source_handle)
            if key in used_outputs:
                report.error(
                    "edge",
                    f"Output '{source_handle}' of node '{source}' has more than one edge",
                    edge_id=edge_id,
                    node_id=source,
                )
            used_outputs.add(key)

    if start_outgoing > 1:
        report.error("start", "Start node can only have one outgoing connection")


def _check_payloads(nodes: list, report: ValidationReport) -> None:
    for node in nodes:
        if not isinstance(node, dict) or not isinstance(node.get("payload"), dict):
            continue
        list_key = _CASE_LISTS.get(node.get("kind"))
        if list_key is None:
            continue

        node_id = _id_text(node.get("id"))
        entries = node["payload"].get(list_key, [])
        if not isinstance(entries, list):
            report.error("payload", f"Node '{node_id}' {list_key} must be an array", node_id=node_id)
            continue

        entry_ids = []
        for i, entry in enumerate(entries):
            if not isinstance(entry, dict):
                report.error(
                    "payload",
                    f"Node '{node_id}' {list_key}[{i}] must be an object",
                    node_id=node_id,
                )
                continue
            entry_ids.append(entry.get("id"))

        for problem in case_id_conflicts(NodeKind(node["kind"]), entry_ids):
            report.error("payload", f"Node '{node_id}': {problem}", node_id=node_id)


def _check_model(data: dict, report: ValidationReport) -> None:
    """Run the full document model over data that passed the shape checks."""
    try:
        JourneyDocument.model_validate(data)
    except PydanticValidationError as e:
        for err in e.errors():
            location = ".".join(str(part) for part in err["loc"])
            report.error("payload", f"{location}: {err['msg']}")


def _check_warnings(data: dict, node_kinds: dict[str, str], report: ValidationReport) -> None:
    edge_ids: set[str] = set()
    nodes_by_id: dict[str, JourneyNode] = {}

    if report.valid:
        for raw in data["nodes"]:
            node = JourneyNode.model_validate(raw)
            nodes_by_id[node.id] = node

    for edge in data["edges"]:
        if not isinstance(edge, dict):
            continue
        edge_id = _id_text(edge.get("id"))
        if edge_id:
            if edge_id in edge_ids:
                report.warn("edge", f"Duplicate edge id '{edge_id}' will be regenerated", edge_id=edge_id)
            edge_ids.add(edge_id)

        source = nodes_by_id.get(_id_text(edge.get("source")))
        handle = edge.get("sourceHandle")
        if source is None or not isinstance(handle, str):
            continue
        if handle in output_port_ids(source) or resolve_port_index(source, handle) is not None:
            continue
        report.warn(
            "edge",
            f"Edge '{edge_id}' uses unknown output '{handle}' of node '{source.id}' and will be dropped",
            edge_id=edge_id,
            node_id=source.id,
        )

    next_node_id = data.get("nextNodeId")
    if _is_number(next_node_id):
        required = next_free_node_id(node_kinds.keys(), 1)
        if next_node_id < required:
            report.warn(
                "structure",
                f"nextNodeId {next_node_id} is not above every node id and will be raised to {required}",
            )

    version = data.get("version")
    if version is not None and version not in SUPPORTED_VERSIONS:
        report.warn("version", f"Unknown export version '{version}'")

    form_schemas = data.get("formSchemas")
    if isinstance(form_schemas, dict):
        for node_id in form_schemas:
            kind = node_kinds.get(node_id)
            if kind is None:
                report.warn("form_schema", f"Form schema for missing node '{node_id}' will be dropped", node_id=node_id)
            elif kind != NodeKind.FORM.value:
                report.warn("form_schema", f"Form schema for non-form node '{node_id}' will be dropped", node_id=node_id)
    elif form_schemas is not None:
        report.warn("form_schema", "'formSchemas' is not an object and will be ignored")
