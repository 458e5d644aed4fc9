"""Persistence for journeys."""
from journey.db.store import (
    JourneyStore,
    MemoryJourneyStore,
    FileJourneyStore,
    SupabaseJourneyStore,
    DebouncedSaver,
    get_journey_store,
)

__all__ = [
    "JourneyStore",
    "MemoryJourneyStore",
    "FileJourneyStore",
    "SupabaseJourneyStore",
    "DebouncedSaver",
    "get_journey_store",
]
