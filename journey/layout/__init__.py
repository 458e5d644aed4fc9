"""Automatic layout of journey graphs."""
from journey.layout.engine import LayoutOptions, compute_layout
from journey.layout.scheduler import LayoutScheduler

__all__ = ["LayoutOptions", "compute_layout", "LayoutScheduler"]
