"""Editor session.

Owns the single graph instance of an editing session and wires it to its
collaborators: the store (through the debounced saver), the layout scheduler
and the per-node form schemas.
"""
from typing import Optional

import structlog

from journey.config import Settings, get_settings
from journey.db.store import DebouncedSaver, JourneyStore, get_journey_store
from journey.graph.errors import InvalidPayloadError, NodeNotFoundError
from journey.graph.exchange import ImportResult, build_export_document, prepare_import
from journey.graph.model import JourneyGraph
from journey.graph.validator import ValidationIssue
from journey.layout.engine import LayoutOptions
from journey.layout.scheduler import LayoutScheduler
from journey.models.journey import NodeKind, Position

logger = structlog.get_logger()


def create_empty_schema() -> dict:
    """Schema of a Form node that has not been edited yet."""
    return {"elements": [], "outputs": {}}


class JourneySession:
    """One journey being edited."""

    def __init__(
        self,
        store: JourneyStore,
        settings: Optional[Settings] = None,
        layout_options: Optional[LayoutOptions] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.saver = DebouncedSaver(store, self.settings.debounce_seconds())
        self.scheduler = LayoutScheduler(layout_options or LayoutOptions.from_settings(self.settings))
        self.form_schemas: dict[str, dict] = {}
        self.load_warnings: list[ValidationIssue] = []
        self.graph = JourneyGraph.default(on_change=self._on_graph_change)

    def _on_graph_change(self, document: dict) -> None:
        self.saver.notify(self.persisted_document(document))

    def persisted_document(self, document: Optional[dict] = None) -> dict:
        """The graph document plus the schemas of Form nodes that still exist."""
        document = document or self.graph.to_document()
        forms = {n["id"] for n in document["nodes"] if n["kind"] == NodeKind.FORM.value}
        self.form_schemas = {k: v for k, v in self.form_schemas.items() if k in forms}
        return {**document, "formSchemas": dict(self.form_schemas)}

    # =========================================================================
    # Load / import / export
    # =========================================================================

    async def load(self) -> list[ValidationIssue]:
        """Install the stored journey, or the default graph when none exists.

        Raises:
            ImportRejectedError: The stored document is structurally invalid
        """
        data = await self.store.load()
        if data is None:
            self.graph = JourneyGraph.default(on_change=self._on_graph_change)
            self.form_schemas = {}
            self.load_warnings = []
            logger.info("journey_default_created")
            return []

        result = prepare_import(data)
        self.form_schemas = dict(result.form_schemas)
        self.graph = result.to_graph(on_change=self._on_graph_change)
        self.load_warnings = result.warnings

        if result.migration.changed or len(self.graph.edges) != len(result.document.edges):
            self.saver.notify(self.persisted_document())

        logger.info(
            "journey_loaded",
            nodes=len(self.graph.nodes),
            edges=len(self.graph.edges),
            warnings=len(result.warnings),
        )
        return result.warnings

    def import_document(self, data: dict) -> ImportResult:
        """Replace the journey with an imported document, all or nothing.

        Raises:
            ImportRejectedError: Nothing was changed
        """
        result = prepare_import(data)
        self.form_schemas = dict(result.form_schemas)
        self.graph.replace(result.document)
        return result

    def export_document(self) -> dict:
        return build_export_document(
            self.graph,
            self.form_schemas,
            version=self.settings.export_version,
        )

    # =========================================================================
    # Layout
    # =========================================================================

    async def auto_arrange(self) -> Optional[dict[str, Position]]:
        """Lay the graph out and apply the positions.

        Returns None when a newer arrange request superseded this one.
        """
        snapshot = self.graph.snapshot()
        return await self.scheduler.run(snapshot.nodes, snapshot.edges, self.graph.apply_positions)

    # =========================================================================
    # Form schemas
    # =========================================================================

    def _require_form(self, node_id: str) -> None:
        node = self.graph.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        if node.kind != NodeKind.FORM:
            raise InvalidPayloadError(node_id, "only form nodes have a form schema")

    def get_form_schema(self, node_id: str) -> dict:
        self._require_form(node_id)
        return self.form_schemas.get(node_id) or create_empty_schema()

    def set_form_schema(self, node_id: str, schema: dict) -> dict:
        self._require_form(node_id)
        self.form_schemas[node_id] = schema
        self.saver.notify(self.persisted_document())
        logger.info("form_schema_saved", node_id=node_id, elements=len(schema.get("elements", [])))
        return schema

    async def flush(self) -> bool:
        return await self.saver.flush()


# Singleton session for the API
_session: Optional[JourneySession] = None


async def get_session() -> JourneySession:
    """Get the API's session, loading it from the store on first use."""
    global _session

    if _session is None:
        session = JourneySession(get_journey_store())
        await session.load()
        _session = session

    return _session


def reset_session():
    """Drop the session (for testing)."""
    global _session
    _session = None
