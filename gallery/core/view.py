"""Refreshable gallery view backed by temporary files.

Displaying an image needs somewhere to point at, so the view writes each
payload to a temporary file it owns. Handles for a record are released
before a new one is created, on every refresh, and when the view closes.
"""

import asyncio
import logging
import mimetypes
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from .errors import RecordNotFound
from .events import Topic
from .models import ImageRecord
from .service import GalleryService

logger = logging.getLogger(__name__)

REFRESH_TOPICS = (Topic.UPLOADED, Topic.PROCESSED, Topic.DELETED, Topic.CLEARED)


@dataclass
class GalleryEntry:
    """A displayed image: its metadata and the file holding its bytes."""

    record: ImageRecord
    path: Path
    similarity: Optional[float] = None

    @property
    def id(self) -> int:
        return self.record.id


class GalleryView:
    """Keeps a list of gallery entries in sync with the store."""

    def __init__(self, service: GalleryService):
        self.service = service
        self.entries: list[GalleryEntry] = []
        self._handles: dict[int, Path] = {}
        self._tmpdir = tempfile.TemporaryDirectory(prefix="gallery-view-")
        self._unsubscribers: list[Callable[[], None]] = []
        self._refresh_lock = asyncio.Lock()
        self._closed = False

    @property
    def handle_count(self) -> int:
        return len(self._handles)

    def handle_for(self, record_id: int) -> Optional[Path]:
        return self._handles.get(record_id)

    def attach(self) -> None:
        """Refresh automatically whenever images are added, embedded or removed."""
        if self._unsubscribers:
            return
        for topic in REFRESH_TOPICS:
            self._unsubscribers.append(self.service.subscribe(topic, self._on_change))

    def _on_change(self, _payload):
        return self.refresh()

    async def refresh(self) -> list[GalleryEntry]:
        """Release every handle, then reload all images from the store."""
        async with self._refresh_lock:
            if self._closed:
                return []
            self.release_all()
            entries = []
            for record in await self.service.list_images():
                try:
                    payload, mimetype = await self.service.fetch_payload(record.id)
                except RecordNotFound:
                    # Deleted between listing and fetching
                    continue
                path = self._create_handle(record.id, payload, mimetype)
                entries.append(GalleryEntry(record=record, path=path))
            self.entries = entries
            return entries

    async def on_memory_pressure(self) -> None:
        logger.info("Memory pressure: releasing %d image handle(s)", len(self._handles))
        self.release_all()
        await self.refresh()

    async def search(
        self,
        query: str | Sequence[float],
        threshold: Optional[float] = None,
    ) -> list[GalleryEntry]:
        """Entries matching the query, best match first."""
        results = await self.service.search(query, threshold)
        by_id = {entry.id: entry for entry in self.entries}
        matches = []
        for result in results:
            entry = by_id.get(result.id)
            if entry is not None:
                matches.append(GalleryEntry(entry.record, entry.path, result.similarity))
        return matches

    def _create_handle(self, record_id: int, payload: bytes, mimetype: str) -> Path:
        self.release(record_id)
        suffix = mimetypes.guess_extension(mimetype) or ".bin"
        with tempfile.NamedTemporaryFile(
            dir=self._tmpdir.name, prefix=f"{record_id}-", suffix=suffix, delete=False
        ) as f:
            f.write(payload)
        path = Path(f.name)
        self._handles[record_id] = path
        return path

    def release(self, record_id: int) -> None:
        path = self._handles.pop(record_id, None)
        if path is not None:
            path.unlink(missing_ok=True)

    def release_all(self) -> None:
        for record_id in list(self._handles):
            self.release(record_id)

    def close(self) -> None:
        """Stop listening for changes and delete every temporary file."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.release_all()
        self.entries = []
        self._closed = True
        self._tmpdir.cleanup()

    async def __aenter__(self) -> "GalleryView":
        self.attach()
        await self.refresh()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
