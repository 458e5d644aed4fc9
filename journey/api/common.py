"""Shared helpers for the journey API routes."""
from typing import Optional

from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, Field

from journey.graph.errors import (
    CaseNotFoundError,
    ConnectionRejectedError,
    DuplicateStartError,
    EdgeNotFoundError,
    ImportRejectedError,
    InvalidPayloadError,
    JourneyError,
    NodeNotFoundError,
    ProtectedNodeError,
)
from journey.graph.model import JourneyGraph
from journey.graph.ports import classify, enumerate_ports

_STATUS_CODES = {
    NodeNotFoundError: 404,
    EdgeNotFoundError: 404,
    CaseNotFoundError: 404,
    ConnectionRejectedError: 409,
    ProtectedNodeError: 409,
    DuplicateStartError: 409,
    InvalidPayloadError: 422,
    ImportRejectedError: 422,
}


def to_http_exception(error: JourneyError) -> HTTPException:
    """Map a graph error to the HTTP status the editor expects."""
    status_code = _STATUS_CODES.get(type(error), 400)
    if isinstance(error, ImportRejectedError):
        return HTTPException(
            status_code=status_code,
            detail={
                "message": "Import rejected",
                "errors": [e.to_dict() for e in error.errors],
                "warnings": [w.to_dict() for w in error.warnings],
            },
        )
    return HTTPException(status_code=status_code, detail=str(error))


def graph_view(graph: JourneyGraph) -> dict:
    """The graph as the renderer consumes it: live ports and edge styling."""
    nodes = []
    for node in graph.nodes:
        data = node.to_persisted()
        data["ports"] = [p.model_dump(mode="json") for p in enumerate_ports(node)]
        nodes.append(data)

    edges = []
    for edge in graph.edges:
        data = edge.to_persisted()
        source = graph.get_node(edge.source)
        if source is not None:
            style = classify(source, edge.source_handle)
            data["color"] = style.color
            data["strokeWidth"] = style.stroke_width
        edges.append(data)

    return {"nodes": nodes, "edges": edges, "nextNodeId": graph.next_node_id}


class MutationResponse(BaseModel):
    """Result of a graph mutation."""

    model_config = ConfigDict(populate_by_name=True)

    graph: dict = Field(..., description="Graph after the mutation")
    node_id: Optional[str] = Field(None, alias="nodeId")
    edge_id: Optional[str] = Field(None, alias="edgeId")
    case_id: Optional[str] = Field(None, alias="caseId")
    removed_edge_ids: list[str] = Field(default_factory=list, alias="removedEdgeIds")
