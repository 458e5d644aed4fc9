"""Utility to print journey documents in clean text representation."""

from typing import Union
import json


def print_journey(document: dict, include_payload: bool = False) -> str:
    """
    Convert a persisted journey document to a clean text representation.

    Args:
        document: Journey document ({nodes, edges, nextNodeId})
        include_payload: Include node payload fields in output (default: False)

    Returns:
        Formatted string representation of the journey
    """
    lines = []

    nodes = document.get("nodes", [])
    edges = document.get("edges", [])

    # Header
    lines.append("=" * 60)
    lines.append("  JOURNEY")
    lines.append("=" * 60)
    lines.append(f"  Nodes: {len(nodes)}   Edges: {len(edges)}   Next ID: {document.get('nextNodeId', '?')}")
    if document.get("version"):
        lines.append(f"  Export version: {document['version']}")
    lines.append("")

    # Print nodes section
    lines.append("  NODES:")
    lines.append("  " + "-" * 56)

    for node in nodes:
        node_id = node.get("id", "?")
        kind = node.get("kind", "unknown")
        payload = node.get("payload") or {}
        label = payload.get("label") or kind
        pos = node.get("position") or {}

        icon = _get_node_icon(kind)

        lines.append(f"  {icon} [{node_id}] {label}")
        lines.append(f"       Kind: {kind}")
        lines.append(f"       Position: ({pos.get('x', 0)}, {pos.get('y', 0)})")

        if include_payload:
            fields = {k: v for k, v in payload.items() if k not in ("label", "description")}
            if fields:
                lines.append("       Payload:")
                for key, value in fields.items():
                    lines.append(f"         • {key}: {_format_payload_value(value)}")

        lines.append("")

    # Print flow from the start node
    lines.append("  FLOW:")
    lines.append("  " + "-" * 56)

    if edges:
        for line in _build_flow_diagram(nodes, edges):
            lines.append(f"  {line}")
    else:
        lines.append("  (No connections defined)")

    lines.append("")

    # Form schemas travel with exports
    form_schemas = document.get("formSchemas") or {}
    if form_schemas:
        lines.append("  FORMS:")
        lines.append("  " + "-" * 56)
        for node_id, schema in form_schemas.items():
            elements = schema.get("elements", []) if isinstance(schema, dict) else []
            lines.append(f"  📝 [{node_id}] {len(elements)} elements")
        lines.append("")

    lines.append("=" * 60)

    return "\n".join(lines)


def print_journey_compact(document: dict) -> str:
    """
    Print a compact one-line-per-edge representation.

    Args:
        document: Journey document

    Returns:
        Compact string representation
    """
    nodes = {str(n.get("id")): n for n in document.get("nodes", [])}
    lines = [f"📋 Journey ({len(nodes)} nodes)"]

    for edge in document.get("edges", []):
        source = nodes.get(str(edge.get("source")), {})
        target = nodes.get(str(edge.get("target")), {})
        label = edge.get("label") or edge.get("sourceHandle", "")
        lines.append(
            f"{_get_node_icon(source.get('kind', ''))} {_node_name(source)} "
            f"─[{label}]→ {_get_node_icon(target.get('kind', ''))} {_node_name(target)}"
        )

    return "\n".join(lines)


def _node_name(node: dict) -> str:
    payload = node.get("payload") or {}
    return payload.get("label") or str(node.get("id", "?"))


def _get_node_icon(kind: str) -> str:
    """Get an icon for a node kind."""
    icons = {
        "start": "⚡",
        "successEnd": "✅",
        "errorEnd": "⛔",
        "condition": "🔀",
        "multiCondition": "🔀",
        "switch": "🔀",
        "contextOperation": "📝",
        "frontendForm": "🧾",
        "httpRequest": "🌐",
        "jsonParser": "🔄",
    }
    return icons.get(kind, "⚙️")


def _format_payload_value(value, max_len: int = 50) -> str:
    """Format a payload value for display."""
    if isinstance(value, str):
        if len(value) > max_len:
            return f'"{value[:max_len]}..."'
        return f'"{value}"'
    elif isinstance(value, dict):
        return f"{{...}} ({len(value)} keys)"
    elif isinstance(value, list):
        return f"[...] ({len(value)} items)"
    else:
        return str(value)


def _build_flow_diagram(nodes: list, edges: list) -> list:
    """Build a simple text flow diagram starting at the start node."""
    lines = []

    node_lookup = {str(n.get("id")): n for n in nodes}

    outgoing = {}
    incoming = set()
    for edge in edges:
        source = str(edge.get("source"))
        outgoing.setdefault(source, []).append(edge)
        incoming.add(str(edge.get("target")))

    roots = [nid for nid, n in node_lookup.items() if n.get("kind") == "start"]
    roots += [nid for nid in node_lookup if nid not in incoming and nid not in roots]

    visited = set()

    def traverse(node_id, depth=0, via=""):
        node = node_lookup.get(node_id, {})
        indent = "  " * depth
        icon = _get_node_icon(node.get("kind", ""))
        prefix = f"[{via}] " if via else ""

        if node_id in visited:
            lines.append(f"{indent}{prefix}↺ {_node_name(node)}")
            return
        visited.add(node_id)
        lines.append(f"{indent}{prefix}{icon} {_node_name(node)}")

        targets = outgoing.get(node_id, [])
        for i, edge in enumerate(targets):
            connector = "└──→ " if i == len(targets) - 1 else "├──→ "
            lines.append(f"{indent}  {connector}")
            traverse(str(edge.get("target")), depth + 1, edge.get("label") or edge.get("sourceHandle", ""))

    for root in roots:
        if root not in visited:
            traverse(root)

    return lines if lines else ["(No flow connections)"]


# Convenience function for CLI usage
def print_journey_document(document_json: Union[str, dict], include_payload: bool = False) -> None:
    """
    Print a journey document to stdout.

    Args:
        document_json: JSON string or dict of a journey document
        include_payload: Include node payload fields
    """
    if isinstance(document_json, str):
        document = json.loads(document_json)
    else:
        document = document_json

    print(print_journey(document, include_payload=include_payload))


if __name__ == "__main__":
    import sys

    with open(sys.argv[1], encoding="utf-8") as f:
        print_journey_document(f.read(), include_payload="--payload" in sys.argv)
