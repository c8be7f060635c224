"""Embedding pipeline: computes embeddings for stored images.

New uploads are embedded one at a time right after they are saved. Images
left without an embedding (failed call, interrupted run) stay pending in the
database and are picked up again by ``recover_pending`` on the next start.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from ..api.embedding_api import EmbeddingAPIError, EmbeddingProvider, Modality
from ..storage.database import ImageDatabase
from .errors import RecordNotFound, StorageError
from .events import EventBus, Topic
from .models import ImageRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3


@dataclass(frozen=True)
class ProgressUpdate:
    """Number of images embedded so far in the current run."""

    total: int
    completed: int


@dataclass
class RecoveryReport:
    """Outcome of a recovery pass."""

    total: int = 0
    processed: list[int] = field(default_factory=list)  # ids that got embeddings
    failed: list[int] = field(default_factory=list)  # ids still pending
    missing: list[int] = field(default_factory=list)  # ids deleted during the run
    skipped: bool = False  # another pass was already running

    def __str__(self) -> str:
        if self.skipped:
            return "Recovery already running"
        if not self.total:
            return "No pending images"
        lines = [f"Embeddings computed: {len(self.processed)}/{self.total}"]
        if self.failed:
            lines.append(f"Still pending: {len(self.failed)}")
        if self.missing:
            lines.append(f"Deleted during recovery: {len(self.missing)}")
        return "\n".join(lines)


ProgressCallback = Callable[[ProgressUpdate], None]


class EmbeddingPipeline:
    """Drives pending images through the embedding provider."""

    def __init__(
        self,
        db: ImageDatabase,
        provider: EmbeddingProvider,
        bus: EventBus,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the pipeline.

        Args:
            db: Content store holding the images
            provider: Embedding provider
            bus: Receives PROCESSED and PROGRESS events
            batch_size: Images embedded concurrently during recovery
            batch_delay: Seconds to wait between recovery batches
            sleep: Awaited for the batch delay; replaced in tests
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self.db = db
        self.provider = provider
        self.bus = bus
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._sleep = sleep
        self._recovering = False

    @property
    def is_recovering(self) -> bool:
        return self._recovering

    async def process_new(
        self,
        record_id: int,
        payload: bytes,
        mimetype: str = "application/octet-stream",
    ) -> list[float]:
        """Compute and store the embedding of a freshly saved image.

        There is no retry here: on failure the image stays pending until the
        next recovery pass.

        Raises:
            EmbeddingAPIError: If the provider fails
            RecordNotFound: If the image was deleted in the meantime
        """
        embedding = await self.provider.embed(payload, Modality.VISION, mimetype)
        await self.db.update_embedding(record_id, embedding)
        self.bus.publish(Topic.PROCESSED, record_id)
        return embedding

    async def recover_pending(
        self,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RecoveryReport:
        """Embed every image still marked as processing.

        Only one pass runs at a time; calling this while a pass is active
        returns a report with ``skipped`` set. Individual failures are logged
        and leave the image pending; they never abort the pass.
        """
        if self._recovering:
            logger.debug("Recovery already in progress, skipping")
            return RecoveryReport(skipped=True)

        self._recovering = True
        try:
            pending = await self.db.get_pending()
            report = RecoveryReport(total=len(pending))
            if not pending:
                return report

            logger.info("Recovering %d pending image(s)", len(pending))
            batches = [
                pending[i:i + self.batch_size]
                for i in range(0, len(pending), self.batch_size)
            ]
            for index, batch in enumerate(batches):
                if index and self.batch_delay > 0:
                    await self._sleep(self.batch_delay)
                results = await asyncio.gather(
                    *(self._recover_one(record, report, on_progress) for record in batch),
                    return_exceptions=True,
                )
                # Let the whole batch settle before a storage failure ends the pass
                for result in results:
                    if isinstance(result, BaseException):
                        raise result

            logger.info(
                "Recovery finished: %d processed, %d failed, %d deleted",
                len(report.processed), len(report.failed), len(report.missing),
            )
            return report
        finally:
            self._recovering = False

    async def _recover_one(
        self,
        record: ImageRecord,
        report: RecoveryReport,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        try:
            payload, mimetype = await self.db.get_payload(record.id)
            await self.process_new(record.id, payload, mimetype)
        except RecordNotFound:
            logger.info("Image %d was deleted before its embedding was stored", record.id)
            report.missing.append(record.id)
            return
        except StorageError:
            raise
        except EmbeddingAPIError as e:
            logger.warning("Failed to embed image %d (%s): %s", record.id, record.name, e)
            report.failed.append(record.id)
            return
        except Exception:
            logger.exception("Unexpected error embedding image %d (%s)", record.id, record.name)
            report.failed.append(record.id)
            return

        report.processed.append(record.id)
        update = ProgressUpdate(total=report.total, completed=len(report.processed))
        self.bus.publish(Topic.PROGRESS, update)
        if on_progress is not None:
            try:
                on_progress(update)
            except Exception:
                logger.exception("Progress callback %r failed", on_progress)
