"""Tests for the auto-layout engine and scheduler."""
import asyncio
import math

import pytest

from journey.graph.model import JourneyGraph
from journey.layout.engine import LayoutOptions, compute_layout, stabilize_branches
from journey.layout.scheduler import LayoutScheduler
from journey.models.journey import JourneyEdge, JourneyNode, NodeKind, Position


def chain(graph):
    """Start -> Form -> Success."""
    graph.add_node(NodeKind.FORM)
    graph.add_node(NodeKind.SUCCESS_END)
    graph.connect("1", "right", "2", "input")
    graph.connect("2", "success", "3", "left")
    return graph


def branched(graph, success_at=None, error_at=None):
    """Start -> Form, success and error each to their own end."""
    graph.add_node(NodeKind.FORM)
    graph.add_node(NodeKind.SUCCESS_END, success_at)
    graph.add_node(NodeKind.ERROR_END, error_at)
    graph.connect("1", "right", "2", "input")
    graph.connect("2", "success", "3", "left")
    graph.connect("2", "error", "4", "left")
    return graph


def with_retry_loop(graph):
    """HTTP call whose form step can send the user back to the call."""
    graph.add_node(NodeKind.HTTP_REQUEST)  # 2
    graph.add_node(NodeKind.FORM)          # 3
    graph.add_node(NodeKind.SUCCESS_END)   # 4
    graph.add_node(NodeKind.ERROR_END)     # 5
    graph.connect("1", "right", "2", "input")
    graph.connect("2", "success", "3", "input")
    graph.connect("2", "error", "5", "left")
    graph.connect("3", "success", "4", "left")
    graph.connect("3", "error", "2", "input")
    return graph


class TestComputeLayout:
    """Test suite for compute_layout."""

    def test_empty_graph(self):
        assert compute_layout([], []) == {}

    def test_single_node_is_padded(self, graph):
        positions = compute_layout(graph.nodes, graph.edges)
        assert positions == {"1": Position(x=12, y=12)}

    def test_chain_flows_left_to_right(self, graph):
        positions = compute_layout(chain(graph).nodes, graph.edges)

        xs = [positions[n].x for n in ("1", "2", "3")]
        assert xs == sorted(xs)
        assert xs[1] - xs[0] == pytest.approx(160 + 80)
        assert positions["1"].y == positions["2"].y

    def test_chain_flows_top_to_bottom(self, graph):
        options = LayoutOptions(direction="down")
        positions = compute_layout(chain(graph).nodes, graph.edges, options)

        ys = [positions[n].y for n in ("1", "2", "3")]
        assert ys[0] < ys[1] < ys[2]
        assert ys[1] - ys[0] == pytest.approx(80 + 80)
        assert positions["1"].x == positions["2"].x

    def test_every_node_gets_a_finite_position(self, graph):
        graph = with_retry_loop(graph)
        graph.add_node(NodeKind.CONTEXT_OPERATION)  # disconnected
        positions = compute_layout(graph.nodes, graph.edges)

        assert set(positions) == {n.id for n in graph.nodes}
        assert all(math.isfinite(p.x) and math.isfinite(p.y) for p in positions.values())

    def test_self_loop_is_tolerated(self, graph):
        graph.add_node(NodeKind.FORM)
        graph.connect("1", "right", "2", "input")
        graph.connect("2", "error", "2", "input")
        positions = compute_layout(graph.nodes, graph.edges)
        assert set(positions) == {"1", "2"}

    def test_unconnected_nodes_do_not_overlap(self, graph):
        graph.add_node(NodeKind.SUCCESS_END)
        graph.add_node(NodeKind.ERROR_END)
        positions = compute_layout(graph.nodes, graph.edges)

        ys = sorted(p.y for p in positions.values())
        assert all(b - a >= 80 + 40 for a, b in zip(ys, ys[1:]))

    def test_branch_targets_keep_minimum_gap(self, graph):
        positions = compute_layout(branched(graph).nodes, graph.edges)
        assert abs(positions["3"].y - positions["4"].y) >= 140 - 0.01

    def test_branch_gap_is_configurable(self, graph):
        options = LayoutOptions(branch_min_gap=300)
        positions = compute_layout(branched(graph).nodes, graph.edges, options)
        assert abs(positions["3"].y - positions["4"].y) >= 300 - 0.01

    def test_success_goes_first_by_default(self, graph):
        positions = compute_layout(branched(graph).nodes, graph.edges)
        assert positions["3"].y < positions["4"].y

    def test_existing_branch_order_is_kept(self, graph):
        graph = branched(graph, success_at={"x": 500, "y": 400}, error_at={"x": 500, "y": 0})
        positions = compute_layout(graph.nodes, graph.edges)
        assert positions["4"].y < positions["3"].y

    @pytest.mark.parametrize("build", [chain, branched, with_retry_loop])
    def test_layout_of_a_layout_is_unchanged(self, graph, build):
        graph = build(graph)
        first = compute_layout(graph.nodes, graph.edges)
        graph.apply_positions(first)

        second = compute_layout(graph.nodes, graph.edges)

        assert second == first

    def test_inputs_are_not_modified(self, graph):
        graph = with_retry_loop(graph)
        before = graph.to_document()
        compute_layout(graph.nodes, graph.edges)
        assert graph.to_document() == before

    def test_edges_to_unknown_nodes_are_ignored(self, graph):
        graph.add_node(NodeKind.FORM)
        stray = JourneyEdge(id="x", source="2", source_handle="success", target="99", target_handle="left")
        positions = compute_layout(graph.nodes, graph.edges + [stray])
        assert set(positions) == {"1", "2"}

    def test_unsupported_direction(self):
        with pytest.raises(ValueError):
            LayoutOptions(direction="LEFT")


class TestStabilizeBranches:
    """Test suite for the branch spreading pass."""

    def make(self, node_id, kind):
        return JourneyNode.model_validate({"id": node_id, "kind": kind})

    def test_close_targets_are_spread_around_their_midpoint(self):
        nodes = [self.make("2", "condition"), self.make("3", "successEnd"), self.make("4", "errorEnd")]
        edges = [
            JourneyEdge(id="a", source="2", source_handle="yes", target="3", target_handle="left"),
            JourneyEdge(id="b", source="2", source_handle="no", target="4", target_handle="left"),
        ]
        positions = {
            "2": Position(x=0, y=100),
            "3": Position(x=240, y=100),
            "4": Position(x=240, y=120),
        }

        result = stabilize_branches(nodes, edges, positions, LayoutOptions())

        assert result["3"] == Position(x=240, y=40)
        assert result["4"] == Position(x=240, y=180)
        assert result["2"] == positions["2"]

    def test_targets_are_never_swapped(self):
        nodes = [self.make("2", "httpRequest"), self.make("3", "successEnd"), self.make("4", "errorEnd")]
        edges = [
            JourneyEdge(id="a", source="2", source_handle="success", target="3", target_handle="left"),
            JourneyEdge(id="b", source="2", source_handle="error", target="4", target_handle="left"),
        ]
        positions = {"3": Position(x=0, y=50), "4": Position(x=0, y=0)}

        result = stabilize_branches(nodes, edges, positions, LayoutOptions())

        assert result["4"].y < result["3"].y
        assert result["3"].y - result["4"].y == pytest.approx(140)

    def test_far_targets_are_left_alone(self):
        nodes = [self.make("2", "jsonParser")]
        edges = [
            JourneyEdge(id="a", source="2", source_handle="success", target="3", target_handle="left"),
            JourneyEdge(id="b", source="2", source_handle="error", target="4", target_handle="left"),
        ]
        positions = {"3": Position(x=0, y=0), "4": Position(x=0, y=500)}
        assert stabilize_branches(nodes, edges, positions, LayoutOptions()) == positions


class TestLayoutScheduler:
    """Test suite for last-write-wins layout scheduling."""

    def test_run_applies_positions(self, graph):
        graph = chain(graph)
        scheduler = LayoutScheduler()

        positions = asyncio.run(scheduler.run(graph.nodes, graph.edges, graph.apply_positions))

        assert positions == compute_layout(graph.snapshot().nodes, graph.edges)
        assert graph.get_node("1").position == positions["1"]
        assert scheduler.generation == 1

    def test_stale_result_is_discarded(self):
        graph = branched(JourneyGraph.default())
        scheduler = LayoutScheduler()
        applied = []

        async def arrange_twice():
            return await asyncio.gather(
                scheduler.run(graph.nodes, graph.edges, applied.append),
                scheduler.run(graph.nodes, graph.edges, applied.append),
            )

        first, second = asyncio.run(arrange_twice())

        assert first is None
        assert second is not None
        assert applied == [second]
        assert scheduler.generation == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
