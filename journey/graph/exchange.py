"""Import and export of whole journeys.

Exports bundle the graph with the form schemas of its Form nodes. Imports are
all-or-nothing: the document is validated first, refused with every error
when invalid, and otherwise migrated before it reaches a graph.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from journey.graph.errors import ImportRejectedError
from journey.graph.identity import MigrationReport, migrate_legacy_ports
from journey.graph.model import JourneyGraph
from journey.graph.validator import ValidationIssue, validate_document
from journey.models.journey import ExportDocument, JourneyDocument, NodeKind

logger = structlog.get_logger()


@dataclass
class ImportResult:
    """A validated, migrated document ready to install."""

    document: JourneyDocument
    form_schemas: dict[str, dict] = field(default_factory=dict)
    warnings: list[ValidationIssue] = field(default_factory=list)
    migration: MigrationReport = field(default_factory=MigrationReport)

    def to_graph(self, on_change=None) -> JourneyGraph:
        return JourneyGraph.from_document(self.document, on_change=on_change)


def form_node_ids(document: JourneyDocument) -> set[str]:
    return {n.id for n in document.nodes if n.kind == NodeKind.FORM}


def build_export_document(
    graph: JourneyGraph,
    form_schemas: Optional[dict[str, dict]] = None,
    version: str = "1.0",
) -> dict:
    """Serialize a graph and its form schemas as a self-contained export."""
    snapshot = graph.snapshot()
    forms = form_node_ids(snapshot)
    schemas = {k: v for k, v in (form_schemas or {}).items() if k in forms}

    export = ExportDocument(
        nodes=snapshot.nodes,
        edges=snapshot.edges,
        next_node_id=snapshot.next_node_id,
        version=version,
        form_schemas=schemas,
    )
    logger.info(
        "journey_exported",
        nodes=len(export.nodes),
        edges=len(export.edges),
        form_schemas=len(schemas),
    )
    return export.to_persisted()


def prepare_import(data: Any) -> ImportResult:
    """Validate and migrate an imported document.

    Raises:
        ImportRejectedError: The document has structural errors; carries all
            of them plus any warnings
    """
    report = validate_document(data)
    if not report.valid:
        logger.warning("journey_import_rejected", error_count=len(report.errors))
        raise ImportRejectedError(report.errors, report.warnings)

    document, migration = migrate_legacy_ports(JourneyDocument.model_validate(data))

    forms = form_node_ids(document)
    raw_schemas = data.get("formSchemas")
    schemas = {}
    if isinstance(raw_schemas, dict):
        schemas = {
            node_id: schema for node_id, schema in raw_schemas.items()
            if node_id in forms and isinstance(schema, dict)
        }

    logger.info(
        "journey_import_prepared",
        nodes=len(document.nodes),
        edges=len(document.edges),
        warnings=len(report.warnings),
        migrated=migration.changed,
    )
    return ImportResult(
        document=document,
        form_schemas=schemas,
        warnings=report.warnings,
        migration=migration,
    )
