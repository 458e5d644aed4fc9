"""Session services."""
from journey.services.session import JourneySession, create_empty_schema, get_session

__all__ = ["JourneySession", "create_empty_schema", "get_session"]
