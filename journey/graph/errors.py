"""Exceptions raised by the journey graph core.

Every failure leaves the graph untouched. The API layer maps these to HTTP
status codes.
"""
from typing import Optional


class JourneyError(Exception):
    """Base class for journey graph errors."""


class NodeNotFoundError(JourneyError):
    """Raised when a node id does not exist in the graph."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' not found")


class EdgeNotFoundError(JourneyError):
    """Raised when an edge id does not exist in the graph."""

    def __init__(self, edge_id: str):
        self.edge_id = edge_id
        super().__init__(f"Edge '{edge_id}' not found")


class CaseNotFoundError(JourneyError):
    """Raised when a case/condition entry cannot be resolved on a node."""

    def __init__(self, node_id: str, case_ref):
        self.node_id = node_id
        self.case_ref = case_ref
        super().__init__(f"Case '{case_ref}' not found on node '{node_id}'")


class ProtectedNodeError(JourneyError):
    """Raised when trying to delete the Start node."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' is the journey start and cannot be removed")


class DuplicateStartError(JourneyError):
    """Raised when adding a second Start node."""

    def __init__(self):
        super().__init__("A journey has exactly one start node")


class ConnectionRejectedError(JourneyError):
    """Raised when a proposed connection or rewire breaks a connection rule."""

    def __init__(self, reason: str, edge_id: Optional[str] = None):
        self.reason = reason
        self.edge_id = edge_id
        super().__init__(reason)


class InvalidPayloadError(JourneyError):
    """Raised when a payload patch does not fit the node kind."""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(f"Invalid payload for node '{node_id}': {message}")


class ImportRejectedError(JourneyError):
    """Raised when an imported document fails structural validation.

    Carries every issue found, not just the first one.
    """

    def __init__(self, errors: list, warnings: Optional[list] = None):
        self.errors = errors
        self.warnings = warnings or []
        messages = "; ".join(e.message for e in errors)
        super().__init__(f"Import rejected: {messages}")
