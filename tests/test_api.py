"""Tests for the HTTP API."""
import pytest
from fastapi.testclient import TestClient

from journey.db.store import MemoryJourneyStore
from journey.main import app
from journey.services.session import JourneySession, get_session


@pytest.fixture
def session(settings):
    return JourneySession(MemoryJourneyStore(), settings)


@pytest.fixture
def client(session):
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


def add(client, kind, **body):
    response = client.post("/api/journey/nodes", json={"kind": kind, **body})
    assert response.status_code == 200
    return response.json()["nodeId"]


class TestGraphEndpoints:
    """Test suite for graph editing routes."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_get_journey_includes_ports(self, client):
        data = client.get("/api/journey").json()

        start = data["nodes"][0]
        assert start["id"] == "1"
        assert [p["id"] for p in start["ports"]] == ["right"]
        assert data["edges"] == []
        assert data["formSchemas"] == {}

    def test_add_and_connect(self, client):
        node_id = add(client, "httpRequest", position={"x": 300, "y": 250})
        assert node_id == "2"

        response = client.post("/api/journey/edges", json={"source": "1", "target": node_id})
        assert response.status_code == 200
        body = response.json()
        assert body["edgeId"] == "e1_right-2_input"
        edge = body["graph"]["edges"][0]
        assert edge["sourceHandle"] == "right"
        assert "color" in edge and edge["strokeWidth"] == 2

    def test_invalid_kind_is_rejected(self, client):
        response = client.post("/api/journey/nodes", json={"kind": "teleport"})
        assert response.status_code == 422

    def test_second_start_conflicts(self, client):
        response = client.post("/api/journey/nodes", json={"kind": "start"})
        assert response.status_code == 409

    def test_rejected_connection_conflicts(self, client):
        add(client, "frontendForm")
        add(client, "successEnd")
        client.post("/api/journey/edges", json={"source": "1", "target": "2"})

        response = client.post(
            "/api/journey/edges",
            json={"source": "1", "sourceHandle": "right", "target": "3", "targetHandle": "left"},
        )

        assert response.status_code == 409
        assert "Start node" in response.json()["detail"]

    def test_start_cannot_be_deleted(self, client):
        assert client.delete("/api/journey/nodes/1").status_code == 409

    def test_unknown_node_is_not_found(self, client):
        assert client.delete("/api/journey/nodes/42").status_code == 404
        assert client.put("/api/journey/nodes/42/position", json={"x": 1, "y": 1}).status_code == 404

    def test_delete_node_reports_cascade(self, client):
        add(client, "frontendForm")
        client.post("/api/journey/edges", json={"source": "1", "target": "2"})

        body = client.delete("/api/journey/nodes/2").json()

        assert body["removedEdgeIds"] == ["e1_right-2_input"]
        assert body["graph"]["edges"] == []

    def test_invalid_payload_patch(self, client):
        node_id = add(client, "httpRequest")
        response = client.patch(f"/api/journey/nodes/{node_id}/payload", json={"method": "FETCH"})
        assert response.status_code == 422

    def test_switch_case_lifecycle(self, client):
        switch = add(client, "switch")
        end = add(client, "successEnd")

        case_id = client.post(f"/api/journey/nodes/{switch}/cases", json={"value": "200"}).json()["caseId"]
        edge_id = client.post(
            "/api/journey/edges",
            json={"source": switch, "sourceHandle": case_id, "target": end, "targetHandle": "left"},
        ).json()["edgeId"]

        graph = client.get("/api/journey").json()
        assert graph["edges"][0]["label"] == "200"

        body = client.delete(f"/api/journey/nodes/{switch}/cases/0").json()
        assert body["removedEdgeIds"] == [edge_id]

    def test_multi_condition_case_is_positional(self, client):
        multi = add(client, "multiCondition")
        response = client.post(
            f"/api/journey/nodes/{multi}/cases",
            json={"condition": "status", "operator": "equals", "value": "ok"},
        )
        assert response.json()["caseId"] == "case-0"

    def test_unknown_case(self, client):
        switch = add(client, "switch")
        assert client.delete(f"/api/journey/nodes/{switch}/cases/port-nope").status_code == 404

    def test_rewire_and_remove_edge(self, client):
        add(client, "frontendForm")
        add(client, "successEnd")
        add(client, "errorEnd")
        edge_id = client.post(
            "/api/journey/edges",
            json={"source": "2", "sourceHandle": "success", "target": "3"},
        ).json()["edgeId"]

        rewired = client.patch(f"/api/journey/edges/{edge_id}", json={"target": "4"}).json()
        assert rewired["edgeId"] == "e2_success-4_left"

        assert client.delete(f"/api/journey/edges/{edge_id}").status_code == 404
        assert client.delete("/api/journey/edges/e2_success-4_left").status_code == 200

    def test_form_schema_routes(self, client):
        form = add(client, "frontendForm")

        assert client.get(f"/api/journey/forms/{form}").json() == {"elements": [], "outputs": {}}
        schema = {"elements": [{"type": "email", "name": "email"}], "outputs": {"email": "string"}}
        assert client.put(f"/api/journey/forms/{form}", json=schema).json() == schema
        assert client.get(f"/api/journey/forms/{form}").json() == schema

        assert client.put(f"/api/journey/forms/{form}", json={"elements": "x"}).status_code == 422
        assert client.get("/api/journey/forms/1").status_code == 422

    def test_summary(self, client):
        add(client, "frontendForm")
        client.post("/api/journey/edges", json={"source": "1", "target": "2"})

        summary = client.get("/api/journey/summary", params={"compact": "true"}).json()["summary"]
        assert "Start" in summary and "Frontend - Form" in summary


class TestLayoutAndExchange:
    """Test suite for auto-arrange, import and export routes."""

    def test_auto_arrange(self, client):
        add(client, "successEnd", position={"x": 900, "y": 900})
        client.post("/api/journey/edges", json={"source": "1", "target": "2"})

        body = client.post("/api/journey/layout").json()

        assert body["applied"] is True
        assert set(body["positions"]) == {"1", "2"}
        assert body["positions"]["1"] == {"x": 12.0, "y": 12.0}

    def test_export_then_import(self, client, session):
        add(client, "frontendForm")
        client.put("/api/journey/forms/2", json={"elements": [], "outputs": {"a": "string"}})
        exported = client.get("/api/journey/export").json()
        assert exported["formSchemas"] == {"2": {"elements": [], "outputs": {"a": "string"}}}

        client.delete("/api/journey/nodes/2")
        response = client.post("/api/journey/import", json=exported)

        assert response.status_code == 200
        assert [n["id"] for n in response.json()["graph"]["nodes"]] == ["1", "2"]
        assert session.form_schemas == {"2": {"elements": [], "outputs": {"a": "string"}}}

    def test_invalid_import_lists_every_error(self, client, session):
        before = session.graph.to_document()
        response = client.post("/api/journey/import", json={
            "nodes": [{"id": "2", "kind": "bogus", "position": {"x": 0, "y": 0}}],
            "edges": [{"id": "x", "source": "2", "target": "9"}],
            "nextNodeId": 3,
        })

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["message"] == "Import rejected"
        assert len(detail["errors"]) >= 3
        assert session.graph.to_document() == before


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
