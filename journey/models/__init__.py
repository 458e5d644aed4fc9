"""Pydantic models for journey graphs."""
from journey.models.journey import (
    NodeKind,
    PortDirection,
    PortSide,
    PortRole,
    Position,
    JourneyNode,
    JourneyEdge,
    Port,
    PortStyle,
    JourneyDocument,
    ExportDocument,
    PAYLOAD_MODELS,
    build_payload,
)

__all__ = [
    "NodeKind",
    "PortDirection",
    "PortSide",
    "PortRole",
    "Position",
    "JourneyNode",
    "JourneyEdge",
    "Port",
    "PortStyle",
    "JourneyDocument",
    "ExportDocument",
    "PAYLOAD_MODELS",
    "build_payload",
]
