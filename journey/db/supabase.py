"""Supabase access for journey rows.

Each journey is one row of the journeys table:
``id`` (text, primary key), ``document`` (jsonb), ``updated_at`` (timestamptz).
The service key is used, so row level security does not apply.
"""
import asyncio
from datetime import datetime, timezone
from typing import Optional

import structlog
from supabase import Client, create_client

from journey.config import Settings, get_settings

logger = structlog.get_logger()

# Shared across tables; created on first use
_client: Optional[Client] = None


class JourneyTable:
    """Reads and writes journey documents in one Supabase table.

    The supabase client is synchronous, so every request runs in a worker
    thread.
    """

    def __init__(self, client: Client, table: str = "journeys"):
        self._client = client
        self.table = table

    async def load_document(self, journey_id: str) -> Optional[dict]:
        """Return the document stored for ``journey_id``, or None without a row."""
        query = (
            self._client.table(self.table)
            .select("document")
            .eq("id", journey_id)
            .limit(1)
        )
        try:
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error("journey_row_load_error", table=self.table, journey_id=journey_id, error=str(e))
            raise
        if not result.data:
            return None
        return result.data[0].get("document")

    async def save_document(self, journey_id: str, document: dict) -> None:
        """Insert or replace the row of ``journey_id``."""
        row = {
            "id": journey_id,
            "document": document,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        query = self._client.table(self.table).upsert(row, on_conflict="id")
        try:
            await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error("journey_row_save_error", table=self.table, journey_id=journey_id, error=str(e))
            raise
        logger.debug("journey_row_saved", table=self.table, journey_id=journey_id)

    async def delete_document(self, journey_id: str) -> bool:
        """Delete the row of ``journey_id``.

        Returns:
            True if a row was deleted
        """
        query = self._client.table(self.table).delete().eq("id", journey_id)
        try:
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error("journey_row_delete_error", table=self.table, journey_id=journey_id, error=str(e))
            raise
        return bool(result.data)


def get_journey_table(settings: Optional[Settings] = None) -> Optional[JourneyTable]:
    """Journey table access for the configured project.

    Returns:
        JourneyTable, or None when Supabase is not configured or unreachable
    """
    global _client
    settings = settings or get_settings()

    if not settings.supabase_configured():
        logger.warning(
            "supabase_not_configured",
            has_url=bool(settings.supabase_url),
            has_key=bool(settings.supabase_service_key),
        )
        return None

    if _client is None:
        try:
            _client = create_client(settings.supabase_url, settings.supabase_service_key)
        except Exception as e:
            logger.error("supabase_client_init_error", error=str(e))
            return None
        logger.info("supabase_client_initialized", table=settings.journeys_table)

    return JourneyTable(_client, settings.journeys_table)
