"""Tests for journey import and export."""
import pytest

from journey.graph.errors import ImportRejectedError
from journey.graph.exchange import build_export_document, prepare_import
from journey.graph.identity import is_generated_port_id
from journey.models.journey import NodeKind


@pytest.fixture
def form_graph(graph):
    graph.add_node(NodeKind.FORM, {"x": 300, "y": 250})
    graph.add_node(NodeKind.SUCCESS_END, {"x": 600, "y": 250})
    graph.connect("1", "right", "2", "input")
    graph.connect("2", "success", "3", "left")
    return graph


class TestExport:
    """Test suite for build_export_document."""

    def test_export_shape(self, form_graph):
        exported = build_export_document(form_graph)
        assert list(exported) == ["version", "exportedAt", "nodes", "edges", "nextNodeId", "formSchemas"]
        assert exported["version"] == "1.0"
        assert exported["nodes"] == form_graph.to_document()["nodes"]

    def test_only_form_schemas_of_form_nodes_are_exported(self, form_graph):
        schema = {"elements": [{"type": "text", "name": "email"}], "outputs": {}}
        exported = build_export_document(form_graph, {"2": schema, "3": {}, "99": {}})
        assert exported["formSchemas"] == {"2": schema}

    def test_export_then_import_restores_the_journey(self, form_graph):
        schema = {"elements": [], "outputs": {"email": "string"}}
        exported = build_export_document(form_graph, {"2": schema})

        result = prepare_import(exported)

        assert result.document.to_persisted() == form_graph.to_document()
        assert result.form_schemas == {"2": schema}
        assert result.warnings == []
        assert not result.migration.changed


class TestImport:
    """Test suite for prepare_import."""

    def test_invalid_document_is_rejected_with_every_error(self, node, edge):
        data = {
            "nodes": [node("1", "start"), node("2", "start"), node("3", "bogus")],
            "edges": [edge("1", "right", "404", "left")],
            "nextNodeId": 4,
        }
        with pytest.raises(ImportRejectedError) as exc:
            prepare_import(data)
        assert len(exc.value.errors) >= 3
        assert "Import rejected" in str(exc.value)

    def test_rejection_carries_warnings(self, node):
        data = {
            "nodes": [node("2", "successEnd")],
            "edges": [],
            "nextNodeId": 3,
            "version": "0.1",
        }
        with pytest.raises(ImportRejectedError) as exc:
            prepare_import(data)
        assert [w.category for w in exc.value.warnings] == ["version"]

    def test_legacy_document_is_migrated(self, node, edge):
        data = {
            "nodes": [
                node("1", "start"),
                node("2", "switch", cases=[{"value": "a"}, {"value": "b"}]),
                node("3", "successEnd"),
            ],
            "edges": [
                edge("1", "right", "2", "input"),
                edge("2", "case-1", "3", "left"),
            ],
            "nextNodeId": 2,
        }
        result = prepare_import(data)

        cases = result.document.get_node("2").payload.cases
        assert all(is_generated_port_id(c.id) for c in cases)
        switch_edge = next(e for e in result.document.edges if e.source == "2")
        assert switch_edge.source_handle == cases[1].id
        assert result.document.next_node_id == 4
        assert result.migration.ports_assigned == 2

    def test_form_schemas_are_filtered(self, node):
        data = {
            "nodes": [node("1", "start"), node("2", "frontendForm")],
            "edges": [],
            "nextNodeId": 3,
            "formSchemas": {"2": {"elements": []}, "1": {"elements": []}, "2b": "nope"},
        }
        result = prepare_import(data)
        assert result.form_schemas == {"2": {"elements": []}}
        assert len(result.warnings) == 2

    def test_to_graph_repaints_labels(self, node, edge):
        stale = edge("2", "success", "3", "left", edge_id="e2_success-3_left")
        stale["label"] = "stale"
        data = {
            "nodes": [node("1", "start"), node("2", "httpRequest"), node("3", "successEnd")],
            "edges": [stale],
            "nextNodeId": 4,
        }
        graph = prepare_import(data).to_graph()
        assert graph.get_edge("e2_success-3_left").label == "success"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
