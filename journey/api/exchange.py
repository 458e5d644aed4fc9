"""Import and export endpoints."""
from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from journey.api.common import graph_view, to_http_exception
from journey.graph.errors import ImportRejectedError
from journey.services.session import JourneySession, get_session

logger = structlog.get_logger()

router = APIRouter()


class ImportResponse(BaseModel):
    """Response from a successful import."""

    graph: dict
    warnings: list[dict] = Field(default_factory=list, description="Non-blocking issues")
    migration: dict = Field(default_factory=dict, description="Identity fixes applied on import")


@router.get("/journey/export")
async def export_journey(session: JourneySession = Depends(get_session)) -> dict:
    """Export the journey with its form schemas as a self-contained document."""
    return session.export_document()


@router.post("/journey/import", response_model=ImportResponse)
async def import_journey(
    document: Any = Body(...),
    session: JourneySession = Depends(get_session),
) -> ImportResponse:
    """
    Replace the journey with an exported document.

    The document is validated first; any structural error rejects the whole
    import with every issue listed, and the current journey is kept.
    """
    try:
        result = session.import_document(document)
    except ImportRejectedError as e:
        raise to_http_exception(e)

    return ImportResponse(
        graph=graph_view(session.graph),
        warnings=[w.to_dict() for w in result.warnings],
        migration=result.migration.to_dict(),
    )
