"""Shared fixtures for the journey test suite."""
import pytest

from journey.config import Settings
from journey.graph.model import JourneyGraph
from journey.models.journey import JourneyDocument


@pytest.fixture
def graph():
    """A fresh default graph: one Start node, no edges."""
    return JourneyGraph.default()


@pytest.fixture
def settings(tmp_path):
    """Settings pointing the file store at a temporary directory."""
    return Settings(
        storage_backend="file",
        storage_dir=str(tmp_path / "journeys"),
        journey_id="test",
        persistence_debounce_ms=0,
    )


@pytest.fixture
def make_document():
    """Build a JourneyDocument from plain node/edge dicts."""

    def _make(nodes, edges=(), next_node_id=None):
        data = {"nodes": list(nodes), "edges": list(edges)}
        if next_node_id is not None:
            data["nextNodeId"] = next_node_id
        return JourneyDocument.model_validate(data)

    return _make


def node_dict(node_id, kind, x=0, y=0, **payload):
    """Plain node dict as stored by the editor."""
    return {"id": node_id, "kind": kind, "position": {"x": x, "y": y}, "payload": payload}


def edge_dict(source, source_handle, target, target_handle, edge_id=None):
    """Plain edge dict as stored by the editor."""
    data = {
        "source": source,
        "sourceHandle": source_handle,
        "target": target,
        "targetHandle": target_handle,
    }
    if edge_id is not None:
        data["id"] = edge_id
    return data


@pytest.fixture
def node():
    return node_dict


@pytest.fixture
def edge():
    return edge_dict
