"""API route modules."""
from journey.api import graph, layout, exchange

__all__ = ["graph", "layout", "exchange"]
