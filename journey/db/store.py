"""Journey persistence.

A store keeps one journey document: ``{nodes, edges, nextNodeId}`` plus the
``formSchemas`` of its Form nodes. The graph model never talks to a store
directly; it emits documents, and ``DebouncedSaver`` coalesces them into
saves.
"""
import asyncio
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import structlog

from journey.config import Settings, get_settings
from journey.db.supabase import JourneyTable, get_journey_table

logger = structlog.get_logger()


class JourneyStore(ABC):
    """Load and save a single journey document."""

    @abstractmethod
    async def load(self) -> Optional[dict]:
        """Return the stored document, or None when nothing was saved yet."""

    @abstractmethod
    async def save(self, document: dict) -> None:
        """Replace the stored document."""

    async def clear(self) -> None:
        """Remove the stored document."""


class MemoryJourneyStore(JourneyStore):
    """Keeps the document in memory. Used by tests and ephemeral sessions."""

    def __init__(self, document: Optional[dict] = None):
        self.document = document
        self.saves = 0

    async def load(self) -> Optional[dict]:
        return json.loads(json.dumps(self.document)) if self.document is not None else None

    async def save(self, document: dict) -> None:
        self.document = json.loads(json.dumps(document))
        self.saves += 1

    async def clear(self) -> None:
        self.document = None


class FileJourneyStore(JourneyStore):
    """Stores the document as JSON at ``<storage_dir>/<journey_id>.json``.

    File access runs in a worker thread.
    """

    def __init__(self, storage_dir: str, journey_id: str = "default"):
        self.path = Path(storage_dir) / f"{journey_id}.json"

    async def load(self) -> Optional[dict]:
        try:
            return await asyncio.to_thread(self._read)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("journey_file_load_error", path=str(self.path), error=str(e))
            raise

    async def save(self, document: dict) -> None:
        try:
            await asyncio.to_thread(self._write, document)
        except OSError as e:
            logger.error("journey_file_save_error", path=str(self.path), error=str(e))
            raise
        logger.debug("journey_file_saved", path=str(self.path))

    async def clear(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)

    def _read(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        with self.path.open(encoding="utf-8") as f:
            return json.load(f)

    def _write(self, document: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(document, f, indent=2)
        os.replace(tmp, self.path)


class SupabaseJourneyStore(JourneyStore):
    """Stores the document in the journey's row of a Supabase table."""

    def __init__(self, table: JourneyTable, journey_id: str = "default"):
        self.table = table
        self.journey_id = journey_id

    async def load(self) -> Optional[dict]:
        return await self.table.load_document(self.journey_id)

    async def save(self, document: dict) -> None:
        await self.table.save_document(self.journey_id, document)

    async def clear(self) -> None:
        await self.table.delete_document(self.journey_id)


def get_journey_store(settings: Optional[Settings] = None) -> JourneyStore:
    """Build the store selected by ``storage_backend``.

    Falls back to the file store when Supabase is selected but not
    configured.
    """
    settings = settings or get_settings()

    if settings.storage_backend == "supabase":
        table = get_journey_table(settings)
        if table is not None:
            return SupabaseJourneyStore(table, settings.journey_id)
        logger.warning("journey_store_fallback", backend="file")

    return FileJourneyStore(settings.storage_dir, settings.journey_id)


class DebouncedSaver:
    """Coalesces a burst of document emissions into a single save.

    ``notify`` records the latest document and (re)starts the delay timer
    when an event loop is running; otherwise the document waits for an
    explicit ``flush``.
    """

    def __init__(self, store: JourneyStore, delay: float = 0.15):
        self.store = store
        self.delay = delay
        self._pending: Optional[dict] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def notify(self, document: dict) -> None:
        self._pending = document
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_timer()
        self._task = loop.create_task(self._save_later())

    async def flush(self) -> bool:
        """Save the pending document now.

        Returns:
            True if a document was saved
        """
        if self._task is not asyncio.current_task():
            self._cancel_timer()
        document, self._pending = self._pending, None
        if document is None:
            return False
        try:
            await self.store.save(document)
        except Exception as e:
            logger.error("journey_save_failed", error=str(e))
            if self._pending is None:
                self._pending = document
            raise
        logger.info("journey_saved", nodes=len(document.get("nodes", [])))
        return True

    async def _save_later(self) -> None:
        await asyncio.sleep(self.delay)
        try:
            await self.flush()
        except Exception:
            # Already logged; the document stays pending for the next flush
            return

    def _cancel_timer(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
