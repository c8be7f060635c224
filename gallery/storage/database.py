"""SQLite content store for image payloads, metadata and embeddings.

All records live in a single ``images`` table. Every public call runs as one
transaction on a shared connection, so readers never see a record whose
embedding was written without its processing flag being cleared.
"""

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

import aiosqlite

from ..core.errors import RecordNotFound, StorageUnavailable, StorageUninitialized
from ..core.models import ImageRecord

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_METADATA_COLUMNS = "id, name, mimetype, size, created_at, embedding, is_processing"


class ImageDatabase:
    """Manages image storage in SQLite."""

    def __init__(
        self,
        db_path: str | Path = "data/gallery.db",
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Create the store. Nothing is opened until ``init()``.

        Args:
            db_path: Path to the SQLite file, or ``":memory:"``
            clock: Returns the timestamp recorded on new images
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._clock = clock
        self._conn: Optional[aiosqlite.Connection] = None
        self._init_lock = asyncio.Lock()
        self._lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._conn is not None

    async def init(self) -> None:
        """Open the connection and create the schema if absent.

        Safe to call several times, including concurrently.

        Raises:
            StorageUnavailable: If the database cannot be opened
        """
        async with self._init_lock:
            if self._conn is not None:
                return
            try:
                if isinstance(self.db_path, Path):
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = await aiosqlite.connect(str(self.db_path), isolation_level=None)
            except (OSError, sqlite3.Error) as e:
                raise StorageUnavailable(f"Cannot open {self.db_path}: {e}") from e

            try:
                await conn.execute("PRAGMA journal_mode=WAL")
                await self._migrate(conn)
            except sqlite3.Error as e:
                await conn.close()
                raise StorageUnavailable(f"Cannot initialize {self.db_path}: {e}") from e

            self._conn = conn
            logger.debug("Opened image database at %s", self.db_path)

    async def _migrate(self, conn: aiosqlite.Connection) -> None:
        """Bring the schema up to SCHEMA_VERSION without touching existing rows."""
        async with conn.execute("PRAGMA user_version") as cursor:
            (version,) = await cursor.fetchone()

        if version >= SCHEMA_VERSION:
            return

        await conn.execute("BEGIN IMMEDIATE")
        try:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS images (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    mimetype TEXT NOT NULL,
                    payload BLOB NOT NULL,
                    size INTEGER NOT NULL,
                    embedding TEXT,
                    is_processing INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    CHECK ((embedding IS NULL) = (is_processing = 1))
                )
            """)
            await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            await conn.execute("COMMIT")
        except sqlite3.Error:
            await conn.execute("ROLLBACK")
            raise
        logger.info("Image database schema upgraded from v%d to v%d", version, SCHEMA_VERSION)

    async def close(self) -> None:
        """Close the connection. The store must be re-initialized before reuse."""
        async with self._init_lock:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None

    async def __aenter__(self) -> "ImageDatabase":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @asynccontextmanager
    async def _transaction(self, write: bool = False):
        """Run a block as a single transaction on the shared connection."""
        if self._conn is None:
            raise StorageUninitialized()
        async with self._lock:
            conn = self._conn
            await conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    def _row_to_record(self, row) -> ImageRecord:
        """Convert a metadata row to an ImageRecord."""
        embedding = json.loads(row[5]) if row[5] is not None else None
        return ImageRecord(
            id=row[0],
            name=row[1],
            mimetype=row[2],
            size=row[3],
            created_at=datetime.fromisoformat(row[4]),
            embedding=embedding,
            is_processing=bool(row[6]),
        )

    async def save(self, payload: bytes, name: str, mimetype: str) -> int:
        """Insert a new image awaiting its embedding. Returns the assigned id."""
        payload = bytes(payload)
        async with self._transaction(write=True) as conn:
            cursor = await conn.execute(
                """
                INSERT INTO images (name, mimetype, payload, size, embedding, is_processing, created_at)
                VALUES (?, ?, ?, ?, NULL, 1, ?)
                """,
                (name, mimetype, payload, len(payload), self._clock().isoformat()),
            )
            record_id = cursor.lastrowid
        logger.debug("Saved image %d (%s, %d bytes)", record_id, name, len(payload))
        return record_id

    async def update_embedding(self, record_id: int, embedding: Sequence[float]) -> None:
        """Store the embedding for an image and clear its processing flag.

        Raises:
            RecordNotFound: If no image has this id
        """
        encoded = json.dumps([float(x) for x in embedding])
        async with self._transaction(write=True) as conn:
            async with conn.execute(
                "SELECT 1 FROM images WHERE id = ?", (record_id,)
            ) as cursor:
                if await cursor.fetchone() is None:
                    raise RecordNotFound(record_id)
            await conn.execute(
                "UPDATE images SET embedding = ?, is_processing = 0 WHERE id = ?",
                (encoded, record_id),
            )

    async def get(self, record_id: int) -> ImageRecord:
        """Retrieve the metadata of one image (without its payload)."""
        async with self._transaction() as conn:
            async with conn.execute(
                f"SELECT {_METADATA_COLUMNS} FROM images WHERE id = ?", (record_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            raise RecordNotFound(record_id)
        return self._row_to_record(row)

    async def get_payload(self, record_id: int) -> tuple[bytes, str]:
        """Return the raw bytes and mimetype of an image."""
        async with self._transaction() as conn:
            async with conn.execute(
                "SELECT payload, mimetype FROM images WHERE id = ?", (record_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            raise RecordNotFound(record_id)
        return bytes(row[0]), row[1]

    async def get_all(self) -> list[ImageRecord]:
        """List all images, newest first. Payloads are not loaded."""
        async with self._transaction() as conn:
            async with conn.execute(
                f"SELECT {_METADATA_COLUMNS} FROM images ORDER BY created_at DESC, id DESC"
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def get_pending(self) -> list[ImageRecord]:
        """List images still waiting for an embedding, oldest first."""
        async with self._transaction() as conn:
            async with conn.execute(
                f"""
                SELECT {_METADATA_COLUMNS} FROM images
                WHERE is_processing = 1 OR embedding IS NULL
                ORDER BY id
                """
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def delete(self, record_id: int) -> None:
        """Delete one image.

        Raises:
            RecordNotFound: If no image has this id
        """
        async with self._transaction(write=True) as conn:
            cursor = await conn.execute("DELETE FROM images WHERE id = ?", (record_id,))
            if cursor.rowcount == 0:
                raise RecordNotFound(record_id)
        logger.debug("Deleted image %d", record_id)

    async def delete_all(self) -> None:
        """Remove every image. Ids are not reused afterwards."""
        async with self._transaction(write=True) as conn:
            await conn.execute("DELETE FROM images")

    async def storage_usage(self) -> int:
        """Total payload bytes across all images."""
        async with self._transaction() as conn:
            async with conn.execute("SELECT COALESCE(SUM(size), 0) FROM images") as cursor:
                (total,) = await cursor.fetchone()
        return int(total)

    async def count(self) -> int:
        """Return the number of images in the database."""
        async with self._transaction() as conn:
            async with conn.execute("SELECT COUNT(*) FROM images") as cursor:
                (total,) = await cursor.fetchone()
        return int(total)
