"""Auto-arrange endpoint."""
import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from journey.api.common import graph_view
from journey.services.session import JourneySession, get_session

logger = structlog.get_logger()

router = APIRouter()


class LayoutResponse(BaseModel):
    """Response from an auto-arrange request."""

    applied: bool = Field(..., description="False when a newer arrange request superseded this one")
    positions: dict[str, dict] = Field(default_factory=dict)
    graph: dict


@router.post("/journey/layout", response_model=LayoutResponse)
async def auto_arrange(session: JourneySession = Depends(get_session)) -> LayoutResponse:
    """
    Re-compute node positions with the layered layout.

    The layout runs on a snapshot; only the most recently requested result
    is applied to the graph.
    """
    positions = await session.auto_arrange()
    if positions is None:
        return LayoutResponse(applied=False, graph=graph_view(session.graph))

    logger.info("auto_arrange_applied", nodes=len(positions))
    return LayoutResponse(
        applied=True,
        positions={node_id: p.model_dump() for node_id, p in positions.items()},
        graph=graph_view(session.graph),
    )
