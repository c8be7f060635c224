"""Gallery service: the single object the CLI and views talk to.

It owns the content store, the embedding provider, the event bus and the
pipeline. Build it once at startup and pass it to whatever needs it.
"""

import logging
import mimetypes
from pathlib import Path
from typing import Optional, Sequence

from ..api.embedding_api import EmbeddingAPI, EmbeddingAPIError, EmbeddingProvider, MockEmbeddingAPI, Modality
from ..config import Settings
from ..storage.database import ImageDatabase
from .errors import RecordNotFound, StorageError
from .events import EventBus, Handler, Topic
from .models import ImageRecord
from .pipeline import EmbeddingPipeline, ProgressCallback, RecoveryReport
from .search import DEFAULT_THRESHOLD, SearchResult, rank_by_similarity

logger = logging.getLogger(__name__)


def guess_mimetype(name: str) -> str:
    mimetype, _ = mimetypes.guess_type(name)
    return mimetype or "application/octet-stream"


def build_provider(settings: Settings) -> EmbeddingProvider:
    """Create the embedding client described by the settings."""
    if settings.mock_embeddings:
        return MockEmbeddingAPI()
    return EmbeddingAPI(
        base_url=settings.api_url,
        api_token=settings.api_token,
        model_version=settings.model_version,
        max_attempts=settings.poll_attempts,
        poll_interval=settings.poll_interval,
        max_image_dimension=settings.max_image_dimension,
    )


class GalleryService:
    """Stores images, keeps their embeddings up to date and searches them."""

    def __init__(
        self,
        db: ImageDatabase,
        provider: EmbeddingProvider,
        bus: Optional[EventBus] = None,
        batch_size: int = 3,
        search_threshold: float = DEFAULT_THRESHOLD,
    ):
        self.db = db
        self.provider = provider
        self.bus = bus or EventBus()
        self.pipeline = EmbeddingPipeline(db, provider, self.bus, batch_size=batch_size)
        self.search_threshold = search_threshold

    @classmethod
    def create(cls, settings: Settings) -> "GalleryService":
        return cls(
            db=ImageDatabase(settings.db_path),
            provider=build_provider(settings),
            batch_size=settings.batch_size,
            search_threshold=settings.search_threshold,
        )

    async def start(self, on_progress: Optional[ProgressCallback] = None) -> RecoveryReport:
        """Open the store and resume embeddings left pending by a previous run."""
        await self.db.init()
        return await self.pipeline.recover_pending(on_progress)

    async def recover(self, on_progress: Optional[ProgressCallback] = None) -> RecoveryReport:
        return await self.pipeline.recover_pending(on_progress)

    async def close(self) -> None:
        await self.bus.drain()
        await self.db.close()

    async def __aenter__(self) -> "GalleryService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def save(self, data: bytes, name: str, mimetype: Optional[str] = None) -> int:
        """Store an image and compute its embedding.

        If the embedding cannot be computed the image is kept and stays
        pending; the next recovery pass retries it.
        """
        mimetype = mimetype or guess_mimetype(name)
        record_id = await self.db.save(data, name, mimetype)
        self.bus.publish(Topic.UPLOADED, record_id)

        try:
            await self.pipeline.process_new(record_id, data, mimetype)
        except EmbeddingAPIError as e:
            logger.warning("Embedding failed for %s (id %d), left pending: %s", name, record_id, e)
        except RecordNotFound:
            logger.info("Image %d was deleted before its embedding was stored", record_id)
        except StorageError:
            raise
        except Exception:
            logger.exception("Unexpected error embedding %s (id %d), left pending", name, record_id)
        return record_id

    async def save_file(self, path: str | Path) -> int:
        path = Path(path)
        return await self.save(path.read_bytes(), path.name, guess_mimetype(path.name))

    async def list_images(self) -> list[ImageRecord]:
        return await self.db.get_all()

    async def get(self, record_id: int) -> ImageRecord:
        return await self.db.get(record_id)

    async def fetch_payload(self, record_id: int) -> tuple[bytes, str]:
        return await self.db.get_payload(record_id)

    async def delete_one(self, record_id: int) -> None:
        await self.db.delete(record_id)
        self.bus.publish(Topic.DELETED, record_id)

    async def delete_all(self) -> None:
        await self.db.delete_all()
        self.bus.publish(Topic.CLEARED)

    async def storage_usage(self) -> int:
        return await self.db.storage_usage()

    async def embed_query(self, text: str) -> list[float]:
        return await self.provider.embed(text.encode("utf-8"), Modality.TEXT, "text/plain")

    async def search(
        self,
        query: str | Sequence[float],
        threshold: Optional[float] = None,
    ) -> list[SearchResult]:
        """Rank stored images against a text query or a query vector."""
        if threshold is None:
            threshold = self.search_threshold
        if isinstance(query, str):
            if not query.strip():
                return []
            vector = await self.embed_query(query)
        else:
            vector = list(query)
        records = await self.db.get_all()
        return rank_by_similarity(vector, records, threshold)

    def subscribe(self, topic: Topic, handler: Handler):
        return self.bus.subscribe(topic, handler)
