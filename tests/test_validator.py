"""Tests for structural document validation."""
import pytest

from journey.graph.validator import validate_document


@pytest.fixture
def valid_document(node, edge):
    return {
        "nodes": [
            node("1", "start", 100, 250),
            node("2", "frontendForm", 300, 250),
            node("3", "successEnd", 600, 250),
        ],
        "edges": [
            edge("1", "right", "2", "input", edge_id="e1_right-2_input"),
            edge("2", "success", "3", "left", edge_id="e2_success-3_left"),
        ],
        "nextNodeId": 4,
    }


def journey(nodes, edges=(), next_node_id=10):
    return {"nodes": list(nodes), "edges": list(edges), "nextNodeId": next_node_id}


def categories(issues):
    return {issue.category for issue in issues}


class TestStructure:
    """Test suite for document-level checks."""

    def test_valid_document(self, valid_document):
        report = validate_document(valid_document)
        assert report.valid
        assert report.errors == []
        assert report.warnings == []

    @pytest.mark.parametrize("data", [None, [], "journey", 3])
    def test_document_must_be_an_object(self, data):
        report = validate_document(data)
        assert not report.valid
        assert categories(report.errors) == {"structure"}

    def test_nodes_and_edges_must_be_arrays(self):
        report = validate_document({"nodes": {}, "edges": "none", "nextNodeId": 2})
        assert len(report.errors) == 2

    def test_next_node_id_must_be_numeric(self, valid_document):
        valid_document["nextNodeId"] = "4"
        assert not validate_document(valid_document).valid

    def test_next_node_id_is_required(self, valid_document):
        del valid_document["nextNodeId"]
        report = validate_document(valid_document)
        assert not report.valid
        assert report.errors[0].message == "'nextNodeId' is missing"

    def test_all_errors_are_collected(self, node, edge):
        report = validate_document(journey(
            [node("1", "start"), node("2", "start"), node("3", "teleport")],
            [edge("1", "right", "9", "left")],
        ))
        assert not report.valid
        assert {"node", "edge", "start"} <= categories(report.errors)
        assert len(report.errors) >= 3

    def test_report_serializes(self):
        data = validate_document(journey([])).to_dict()
        assert data["valid"] is False
        assert data["errors"][0]["category"] == "start"
        assert data["errors"][0]["severity"] == "error"


class TestNodes:
    """Test suite for node checks."""

    def test_missing_start(self, node):
        report = validate_document(journey([node("3", "successEnd")]))
        assert not report.valid
        assert "exactly one start" in report.errors[0].message

    def test_duplicate_node_ids(self, node):
        report = validate_document(journey(
            [node("1", "start"), node("2", "errorEnd"), node("2", "successEnd")],
        ))
        assert any("Duplicate node id" in e.message for e in report.errors)

    @pytest.mark.parametrize("position", [None, {"x": 1}, {"x": "1", "y": 2}, {"x": float("nan"), "y": 0}])
    def test_position_must_be_finite(self, node, position):
        bad = node("2", "successEnd")
        bad["position"] = position
        report = validate_document(journey([node("1", "start"), bad]))
        assert not report.valid
        assert report.errors[0].node_id == "2"

    def test_payload_must_be_an_object(self, node):
        bad = node("2", "successEnd")
        bad["payload"] = ["label"]
        assert not validate_document(journey([node("1", "start"), bad])).valid

    def test_payload_is_required(self, node):
        bare = node("2", "successEnd")
        del bare["payload"]
        report = validate_document(journey([node("1", "start"), bare]))
        assert not report.valid
        assert report.errors[0].message == "Node '2' has no payload"

    def test_integer_ids_are_accepted(self, node, edge):
        report = validate_document(journey(
            [node(1, "start"), node(2, "successEnd")],
            [edge(1, "right", 2, "left")],
        ))
        assert report.valid

    def test_payload_model_errors(self, node):
        report = validate_document(journey(
            [node("1", "start"), node("2", "httpRequest", timeoutMs=-1)],
        ))
        assert not report.valid
        assert categories(report.errors) == {"payload"}

    def test_duplicate_case_ids(self, node):
        report = validate_document(journey([
            node("1", "start"),
            node("2", "switch", cases=[{"id": "port-a"}, {"id": "port-a"}]),
        ]))
        assert any("duplicate case id" in e.message for e in report.errors)

    @pytest.mark.parametrize("kind, entries, terminal", [
        ("switch", {"cases": [{"id": "default", "value": "x"}]}, "default"),
        ("multiCondition", {"conditions": [{"id": "else", "condition": "a"}]}, "else"),
    ])
    def test_case_id_clashing_with_terminal_port(self, node, kind, entries, terminal):
        report = validate_document(journey([node("1", "start"), node("2", kind, **entries)]))
        assert not report.valid
        assert report.errors[0].message == (
            f"Node '2': case id '{terminal}' clashes with terminal port '{terminal}'"
        )

    def test_cases_must_be_objects(self, node):
        report = validate_document(journey(
            [node("1", "start"), node("2", "multiCondition", conditions=["a"])],
        ))
        assert not report.valid


class TestEdges:
    """Test suite for edge checks."""

    def test_dangling_endpoints(self, valid_document, edge):
        valid_document["edges"].append(edge("7", "success", "8", "left"))
        report = validate_document(valid_document)
        messages = [e.message for e in report.errors]
        assert any("source '7' not found" in m for m in messages)
        assert any("target '8' not found" in m for m in messages)

    def test_handles_are_required(self, valid_document, edge):
        valid_document["edges"].append(edge("2", "", "3", None))
        report = validate_document(valid_document)
        assert len(report.errors) == 2

    def test_start_has_one_outgoing_edge(self, valid_document, edge):
        valid_document["edges"].append(edge("1", "other", "3", "left"))
        report = validate_document(valid_document)
        assert any(e.message == "Start node can only have one outgoing connection" for e in report.errors)

    def test_output_port_has_one_edge(self, valid_document, node, edge):
        valid_document["nodes"].append(node("4", "errorEnd"))
        valid_document["edges"].append(edge("2", "success", "4", "left"))
        report = validate_document(valid_document)
        assert any("more than one edge" in e.message for e in report.errors)


class TestWarnings:
    """Test suite for issues that do not block a load."""

    def test_duplicate_edge_ids(self, valid_document, node, edge):
        valid_document["nodes"].append(node("4", "errorEnd"))
        valid_document["edges"].append(edge("2", "error", "4", "left", edge_id="e2_success-3_left"))
        valid_document["nextNodeId"] = 5
        report = validate_document(valid_document)
        assert report.valid
        assert categories(report.warnings) == {"edge"}

    def test_unknown_output_handle(self, valid_document):
        valid_document["edges"][1]["sourceHandle"] = "maybe"
        report = validate_document(valid_document)
        assert report.valid
        assert "unknown output 'maybe'" in report.warnings[0].message

    def test_positional_case_handle_is_known(self, node, edge):
        report = validate_document({
            "nodes": [
                node("1", "start"),
                node("2", "switch", cases=[{"value": "a"}]),
                node("3", "successEnd"),
            ],
            "edges": [edge("2", "case-0", "3", "left")],
            "nextNodeId": 4,
        })
        assert report.valid
        assert report.warnings == []

    def test_low_next_node_id(self, valid_document):
        valid_document["nextNodeId"] = 2
        report = validate_document(valid_document)
        assert report.valid
        assert "raised to 4" in report.warnings[0].message

    def test_unknown_version(self, valid_document):
        valid_document["version"] = "9.9"
        report = validate_document(valid_document)
        assert categories(report.warnings) == {"version"}

    def test_misplaced_form_schemas(self, valid_document):
        valid_document["formSchemas"] = {"2": {}, "3": {}, "42": {}}
        report = validate_document(valid_document)
        assert report.valid
        assert {w.node_id for w in report.warnings} == {"3", "42"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
