"""
Binary store for cached documents.

Persists (identity -> payload + metadata) records in a single SQLite table.
Each write is one transaction, so a record's payload and size_bytes always
agree even if the process dies mid-write.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path

import aiosqlite

from caseshelf.exceptions import StorageUnavailableError, StoreCorruptedError
from caseshelf.logging import get_logger
from caseshelf.storage import open_database, translate_engine_error
from caseshelf.types import CachedDocument, DocumentInfo, FailureKind, StoreOutcome

logger = get_logger(__name__)


class BinaryStore:
    """Persistent store of cached documents.

    Payloads live in the ``documents`` table of ``db_path`` next to their
    metadata. An optional quota caps the sum of ``size_bytes``.
    """

    def __init__(self, db_path: str | Path, quota_bytes: int | None = None) -> None:
        """Initialize binary store.

        Args:
            db_path: Path of the SQLite database file.
            quota_bytes: Maximum total payload size, None for unbounded.
        """
        if quota_bytes is not None and quota_bytes <= 0:
            raise ValueError("quota_bytes must be positive or None")
        self.db_path = Path(db_path)
        self.quota_bytes = quota_bytes
        self._db: aiosqlite.Connection | None = None
        # One connection is shared by all flows; transactions must not interleave.
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        """Open the database and create the schema.

        Raises:
            StorageUnavailableError: If the database cannot be opened.
            StoreCorruptedError: If the file is not a usable database.
        """
        self._db = await open_database(self.db_path, "documents")
        try:
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    identity TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    source_url TEXT NOT NULL,
                    payload BLOB NOT NULL,
                    cached_at TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_cached_at ON documents(cached_at)"
            )
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_title ON documents(title)"
            )
        except aiosqlite.Error as e:
            await self.close()
            raise translate_engine_error(e, "documents", "init") from e

        logger.info("Binary store initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("BinaryStore not initialized. Call init() first.")
        return self._db

    async def put(
        self,
        identity: str,
        title: str,
        source_url: str,
        payload: bytes,
    ) -> StoreOutcome:
        """Insert or replace the document for ``identity``.

        The quota check and the write share one transaction.

        Args:
            identity: Caller-supplied document key.
            title: Display label.
            source_url: URL the payload was fetched from.
            payload: Full document content.

        Returns:
            StoreOutcome; failure kind is storage_unavailable when the engine
            is unavailable or the quota would be exceeded.
        """
        document = CachedDocument.create(identity, title, source_url, bytes(payload))
        try:
            await self._write(document)
        except StorageUnavailableError as e:
            logger.warning("Document not stored", identity=identity, error=str(e))
            return StoreOutcome.fail(FailureKind.STORAGE_UNAVAILABLE, str(e))

        logger.debug("Stored document", identity=identity, size=document.size_bytes)
        return StoreOutcome.ok()

    async def _write(self, document: CachedDocument) -> None:
        db = self._require_db()
        async with self._lock:
            # Once started, the transaction runs to COMMIT or ROLLBACK even if
            # the caller is cancelled; the lock is held until it has.
            task = asyncio.ensure_future(self._transaction(db, document))
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                await asyncio.wait({task})
                if not task.cancelled() and task.exception() is not None:
                    logger.warning(
                        "Document write failed after cancellation",
                        identity=document.identity,
                        error=str(task.exception()),
                    )
                raise

    async def _transaction(self, db: aiosqlite.Connection, document: CachedDocument) -> None:
        try:
            try:
                await db.execute("BEGIN IMMEDIATE")
                if self.quota_bytes is not None:
                    async with db.execute(
                        "SELECT COALESCE(SUM(size_bytes), 0) FROM documents WHERE identity != ?",
                        (document.identity,),
                    ) as cursor:
                        row = await cursor.fetchone()
                    others = row[0] if row else 0
                    if others + document.size_bytes > self.quota_bytes:
                        raise StorageUnavailableError(
                            "Cache quota exceeded",
                            context={
                                "store": "documents",
                                "quota_bytes": self.quota_bytes,
                                "used_bytes": others,
                                "requested_bytes": document.size_bytes,
                            },
                        )

                await db.execute(
                    """
                    INSERT OR REPLACE INTO documents (
                        identity, title, source_url, payload, cached_at, size_bytes
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        document.identity,
                        document.title,
                        document.source_url,
                        document.payload,
                        document.cached_at.isoformat(),
                        document.size_bytes,
                    ),
                )
                await db.execute("COMMIT")
            except BaseException:
                if db.in_transaction:
                    await db.execute("ROLLBACK")
                raise
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "documents", "put") from e

    async def get(self, identity: str) -> CachedDocument | None:
        """Retrieve a document by identity.

        Returns:
            CachedDocument or None if not cached.

        Raises:
            StorageUnavailableError: If the engine cannot be read.
        """
        db = self._require_db()
        async with self._lock:
            try:
                async with db.execute(
                    "SELECT * FROM documents WHERE identity = ?", (identity,)
                ) as cursor:
                    row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise translate_engine_error(e, "documents", "get") from e

        if not row:
            return None

        return CachedDocument(
            identity=row["identity"],
            title=row["title"],
            source_url=row["source_url"],
            payload=bytes(row["payload"]),
            cached_at=datetime.fromisoformat(row["cached_at"]),
            size_bytes=row["size_bytes"],
        )

    async def contains(self, identity: str) -> bool:
        """Check whether ``identity`` is stored, without loading its payload."""
        db = self._require_db()
        async with self._lock:
            try:
                async with db.execute(
                    "SELECT 1 FROM documents WHERE identity = ?", (identity,)
                ) as cursor:
                    row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise translate_engine_error(e, "documents", "contains") from e
        return row is not None

    async def remove(self, identity: str) -> StoreOutcome:
        """Delete a document. Removing an unknown identity succeeds."""
        db = self._require_db()
        async with self._lock:
            try:
                await db.execute("DELETE FROM documents WHERE identity = ?", (identity,))
            except aiosqlite.Error as e:
                error = translate_engine_error(e, "documents", "remove")
                if isinstance(error, StoreCorruptedError):
                    raise error from e
                logger.warning("Document not removed", identity=identity, error=str(error))
                return StoreOutcome.fail(FailureKind.STORAGE_UNAVAILABLE, str(error))

        logger.debug("Removed document", identity=identity)
        return StoreOutcome.ok()

    async def list_documents(self) -> list[DocumentInfo]:
        """List metadata of all cached documents, newest first.

        Payloads are not loaded. Each call is a fresh snapshot.
        """
        db = self._require_db()
        async with self._lock:
            try:
                async with db.execute(
                    """
                    SELECT identity, title, source_url, cached_at, size_bytes
                    FROM documents
                    ORDER BY cached_at DESC
                    """
                ) as cursor:
                    rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise translate_engine_error(e, "documents", "list") from e

        return [self._row_to_info(row) for row in rows]

    async def total_size(self) -> int:
        """Sum of ``size_bytes`` over stored documents."""
        db = self._require_db()
        async with self._lock:
            try:
                async with db.execute(
                    "SELECT COALESCE(SUM(size_bytes), 0) FROM documents"
                ) as cursor:
                    row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise translate_engine_error(e, "documents", "total_size") from e
        return row[0] if row else 0

    async def count(self) -> int:
        """Get total count of stored documents."""
        db = self._require_db()
        async with self._lock:
            try:
                async with db.execute("SELECT COUNT(*) FROM documents") as cursor:
                    row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise translate_engine_error(e, "documents", "count") from e
        return row[0] if row else 0

    async def stats(self) -> tuple[int, int]:
        """Get (count, total size) from one consistent read."""
        db = self._require_db()
        async with self._lock:
            try:
                async with db.execute(
                    "SELECT COUNT(*), COALESCE(SUM(size_bytes), 0) FROM documents"
                ) as cursor:
                    row = await cursor.fetchone()
            except aiosqlite.Error as e:
                raise translate_engine_error(e, "documents", "stats") from e
        return (row[0], row[1]) if row else (0, 0)

    async def clear(self) -> StoreOutcome:
        """Remove every stored document."""
        db = self._require_db()
        async with self._lock:
            try:
                await db.execute("DELETE FROM documents")
            except aiosqlite.Error as e:
                error = translate_engine_error(e, "documents", "clear")
                if isinstance(error, StoreCorruptedError):
                    raise error from e
                logger.warning("Document cache not cleared", error=str(error))
                return StoreOutcome.fail(FailureKind.STORAGE_UNAVAILABLE, str(error))

        logger.info("Cleared document cache")
        return StoreOutcome.ok()

    def _row_to_info(self, row: aiosqlite.Row) -> DocumentInfo:
        """Convert a database row to DocumentInfo."""
        return DocumentInfo(
            identity=row["identity"],
            title=row["title"],
            source_url=row["source_url"],
            cached_at=datetime.fromisoformat(row["cached_at"]),
            size_bytes=row["size_bytes"],
        )
