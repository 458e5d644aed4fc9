"""Graph editing endpoints."""
from typing import Any, Optional, Union

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from journey.api.common import MutationResponse, graph_view, to_http_exception
from journey.graph.errors import JourneyError
from journey.models.journey import NodeKind, Position
from journey.services.session import JourneySession, get_session
from journey.utils.journey_printer import print_journey, print_journey_compact

logger = structlog.get_logger()

router = APIRouter()


class AddNodeRequest(BaseModel):
    """Request to add a node."""

    kind: NodeKind = Field(..., description="Node kind")
    position: Optional[Position] = Field(None, description="Canvas position")
    payload: Optional[dict] = Field(None, description="Initial payload, kind defaults apply")


class AddCaseRequest(BaseModel):
    """Request to append a case (switch) or condition (multi-condition)."""

    value: str = Field("", description="Case value, or condition comparison value")
    condition: str = Field("", description="Condition field (multi-condition only)")
    operator: str = Field("equals", description="Condition operator (multi-condition only)")


class ConnectRequest(BaseModel):
    """Request to connect two nodes."""

    model_config = ConfigDict(populate_by_name=True)

    source: str
    source_handle: Optional[str] = Field(None, alias="sourceHandle")
    target: str
    target_handle: Optional[str] = Field(None, alias="targetHandle")


class RewireRequest(BaseModel):
    """Request to move the endpoints of an edge. Omitted fields stay as they are."""

    model_config = ConfigDict(populate_by_name=True)

    source: Optional[str] = None
    source_handle: Optional[str] = Field(None, alias="sourceHandle")
    target: Optional[str] = None
    target_handle: Optional[str] = Field(None, alias="targetHandle")


def _edge_ids(session: JourneySession) -> set[str]:
    return {e.id for e in session.graph.edges}


@router.get("/journey")
async def get_journey(session: JourneySession = Depends(get_session)) -> dict:
    """Get the graph with live ports and edge styling."""
    view = graph_view(session.graph)
    view["formSchemas"] = session.form_schemas
    view["warnings"] = [w.to_dict() for w in session.load_warnings]
    return view


@router.get("/journey/summary")
async def get_journey_summary(
    compact: bool = False,
    session: JourneySession = Depends(get_session),
) -> dict:
    """Text rendering of the journey for logs and debugging."""
    document = session.persisted_document()
    text = print_journey_compact(document) if compact else print_journey(document)
    return {"summary": text}


@router.post("/journey/nodes", response_model=MutationResponse)
async def add_node(
    request: AddNodeRequest,
    session: JourneySession = Depends(get_session),
) -> MutationResponse:
    try:
        node_id = session.graph.add_node(request.kind, request.position, request.payload)
    except JourneyError as e:
        raise to_http_exception(e)
    return MutationResponse(graph=graph_view(session.graph), node_id=node_id)


@router.delete("/journey/nodes/{node_id}", response_model=MutationResponse)
async def remove_node(
    node_id: str,
    session: JourneySession = Depends(get_session),
) -> MutationResponse:
    """Delete a node and every edge touching it. The start node is protected."""
    try:
        removed = session.graph.remove_node(node_id)
    except JourneyError as e:
        raise to_http_exception(e)
    return MutationResponse(graph=graph_view(session.graph), node_id=node_id, removed_edge_ids=removed)


@router.put("/journey/nodes/{node_id}/position", response_model=MutationResponse)
async def move_node(
    node_id: str,
    position: Position,
    session: JourneySession = Depends(get_session),
) -> MutationResponse:
    try:
        session.graph.move_node(node_id, position)
    except JourneyError as e:
        raise to_http_exception(e)
    return MutationResponse(graph=graph_view(session.graph), node_id=node_id)


@router.patch("/journey/nodes/{node_id}/payload", response_model=MutationResponse)
async def update_node_payload(
    node_id: str,
    patch: dict[str, Any] = Body(...),
    session: JourneySession = Depends(get_session),
) -> MutationResponse:
    """
    Merge fields into a node's payload.

    Ports are re-derived from the new payload; edges leaving ports that no
    longer exist are removed and reported.
    """
    before = _edge_ids(session)
    try:
        session.graph.update_node_payload(node_id, patch)
    except JourneyError as e:
        raise to_http_exception(e)
    removed = sorted(before - _edge_ids(session))
    return MutationResponse(graph=graph_view(session.graph), node_id=node_id, removed_edge_ids=removed)


@router.post("/journey/nodes/{node_id}/cases", response_model=MutationResponse)
async def add_case(
    node_id: str,
    request: AddCaseRequest,
    session: JourneySession = Depends(get_session),
) -> MutationResponse:
    """Append a case to a switch, or a condition to a multi-condition node."""
    node = session.graph.get_node(node_id)
    try:
        if node is not None and node.kind == NodeKind.MULTI_CONDITION:
            case_id = session.graph.add_condition(
                node_id, request.condition, request.operator, request.value,
            )
        else:
            case_id = session.graph.add_case(node_id, request.value)
    except JourneyError as e:
        raise to_http_exception(e)
    return MutationResponse(graph=graph_view(session.graph), node_id=node_id, case_id=case_id)


@router.delete("/journey/nodes/{node_id}/cases/{case_ref}", response_model=MutationResponse)
async def remove_case(
    node_id: str,
    case_ref: str,
    session: JourneySession = Depends(get_session),
) -> MutationResponse:
    """Remove a case by port id (``port-…`` or ``case-N``) or by zero-based index."""
    ref: Union[str, int] = int(case_ref) if case_ref.isdigit() else case_ref
    try:
        removed = session.graph.remove_case(node_id, ref)
    except JourneyError as e:
        raise to_http_exception(e)
    return MutationResponse(graph=graph_view(session.graph), node_id=node_id, removed_edge_ids=removed)


@router.post("/journey/edges", response_model=MutationResponse)
async def connect(
    request: ConnectRequest,
    session: JourneySession = Depends(get_session),
) -> MutationResponse:
    """Connect an output port to an input port."""
    try:
        edge_id = session.graph.connect(
            request.source,
            request.source_handle,
            request.target,
            request.target_handle,
        )
    except JourneyError as e:
        raise to_http_exception(e)
    return MutationResponse(graph=graph_view(session.graph), edge_id=edge_id)


@router.patch("/journey/edges/{edge_id}", response_model=MutationResponse)
async def rewire_edge(
    edge_id: str,
    request: RewireRequest,
    session: JourneySession = Depends(get_session),
) -> MutationResponse:
    try:
        edge = session.graph.rewire_edge(
            edge_id,
            source=request.source,
            source_handle=request.source_handle,
            target=request.target,
            target_handle=request.target_handle,
        )
    except JourneyError as e:
        raise to_http_exception(e)
    return MutationResponse(graph=graph_view(session.graph), edge_id=edge.id)


@router.delete("/journey/edges/{edge_id}", response_model=MutationResponse)
async def remove_edge(
    edge_id: str,
    session: JourneySession = Depends(get_session),
) -> MutationResponse:
    try:
        session.graph.remove_edge(edge_id)
    except JourneyError as e:
        raise to_http_exception(e)
    return MutationResponse(graph=graph_view(session.graph), removed_edge_ids=[edge_id])


@router.get("/journey/forms/{node_id}")
async def get_form_schema(
    node_id: str,
    session: JourneySession = Depends(get_session),
) -> dict:
    """Get the form schema of a Form node (an empty schema if never edited)."""
    try:
        return session.get_form_schema(node_id)
    except JourneyError as e:
        raise to_http_exception(e)


@router.put("/journey/forms/{node_id}")
async def set_form_schema(
    node_id: str,
    schema: dict[str, Any] = Body(...),
    session: JourneySession = Depends(get_session),
) -> dict:
    if not isinstance(schema.get("elements", []), list):
        raise HTTPException(status_code=422, detail="'elements' must be an array")
    try:
        return session.set_form_schema(node_id, schema)
    except JourneyError as e:
        raise to_http_exception(e)
