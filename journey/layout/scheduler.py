"""Asynchronous layout scheduling.

Layouts run in a worker thread against a copy of the graph. When several
are requested before the first finishes, only the most recently requested
result is applied.
"""
import asyncio
from typing import Callable, Iterable, Optional

import structlog

from journey.layout.engine import LayoutOptions, compute_layout
from journey.models.journey import JourneyEdge, JourneyNode, Position

logger = structlog.get_logger()

ApplyPositions = Callable[[dict[str, Position]], object]


class LayoutScheduler:
    """Last-write-wins runner for layout computations."""

    def __init__(self, options: Optional[LayoutOptions] = None):
        self.options = options or LayoutOptions()
        self._generation = 0

    @property
    def generation(self) -> int:
        """Number of layouts requested so far."""
        return self._generation

    async def run(
        self,
        nodes: Iterable[JourneyNode],
        edges: Iterable[JourneyEdge],
        apply: ApplyPositions,
    ) -> Optional[dict[str, Position]]:
        """Compute a layout and apply it unless a newer one was requested.

        Args:
            nodes: Nodes to lay out; copied before the computation starts
            edges: Edges to lay out; copied before the computation starts
            apply: Called with the complete position map

        Returns:
            The applied positions, or None when the result was stale
        """
        self._generation += 1
        ticket = self._generation

        nodes = [n.model_copy(deep=True) for n in nodes]
        edges = [e.model_copy(deep=True) for e in edges]

        positions = await asyncio.to_thread(compute_layout, nodes, edges, self.options)

        if ticket != self._generation:
            logger.info("layout_result_discarded", ticket=ticket, latest=self._generation)
            return None

        apply(positions)
        return positions
