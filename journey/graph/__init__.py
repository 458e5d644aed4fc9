"""Journey graph core: identities, ports, connection rules and the graph model."""
from journey.graph.errors import (
    JourneyError,
    NodeNotFoundError,
    EdgeNotFoundError,
    CaseNotFoundError,
    ProtectedNodeError,
    DuplicateStartError,
    ConnectionRejectedError,
    InvalidPayloadError,
    ImportRejectedError,
)
from journey.graph.model import JourneyGraph
from journey.graph.validator import validate_document, ValidationReport, ValidationIssue
from journey.graph.exchange import build_export_document, prepare_import, ImportResult

__all__ = [
    "JourneyError",
    "NodeNotFoundError",
    "EdgeNotFoundError",
    "CaseNotFoundError",
    "ProtectedNodeError",
    "DuplicateStartError",
    "ConnectionRejectedError",
    "InvalidPayloadError",
    "ImportRejectedError",
    "JourneyGraph",
    "validate_document",
    "ValidationReport",
    "ValidationIssue",
    "build_export_document",
    "prepare_import",
    "ImportResult",
]
