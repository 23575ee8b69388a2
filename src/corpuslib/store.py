"""Async SQLite document store for ingested files.

Wraps aiosqlite to provide the persistence side of the pipeline: one
``documents`` row per ingested file, later updated with its embedding.

Each write method commits immediately -- no transactions are held across
``await`` boundaries.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

import aiosqlite

from corpuslib.ingest.exceptions import PersistenceError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    word_count INTEGER NOT NULL DEFAULT 0,

    -- Embedding (JSON array of floats, null until attached)
    embedding TEXT,
    embedding_model TEXT,

    category TEXT NOT NULL DEFAULT 'general',
    status TEXT NOT NULL DEFAULT 'draft'
        CHECK(status IN ('draft', 'published', 'archived')),

    -- Timestamps (ISO 8601 with microseconds)
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_documents_created ON documents(created_at);
"""


class AsyncDocumentStore:
    """Async SQLite repository for ingested documents.

    Usage::

        async with AsyncDocumentStore("data/corpus.db") as store:
            doc_id = await store.create_document("Notes", text, 120)
            await store.attach_embedding(doc_id, vector, "text-embedding-004")
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection (WAL mode) and ensure the schema exists."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the connection if open."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> AsyncDocumentStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Not connected -- use 'async with' or call connect()")
        return self._db

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")

    # ------------------------------------------------------------------
    # Writes (each commits immediately)
    # ------------------------------------------------------------------

    async def create_document(self, title: str, content: str, word_count: int) -> str:
        """Insert a draft document and return its id.

        Raises:
            PersistenceError: The insert failed.
        """
        db = self._ensure_connected()
        document_id = str(uuid.uuid4())
        now = self._now_iso()
        try:
            await db.execute(
                """INSERT INTO documents
                       (id, title, content, word_count, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (document_id, title, content, word_count, now, now),
            )
            await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Database insertion failed: {exc}") from exc
        logger.debug("Inserted document %s (%s)", document_id, title)
        return document_id

    async def attach_embedding(
        self, document_id: str, embedding: Sequence[float], model: str
    ) -> None:
        """Store *embedding* on an existing document.

        Raises:
            PersistenceError: The update failed or the document does not exist.
        """
        db = self._ensure_connected()
        try:
            cursor = await db.execute(
                """UPDATE documents
                   SET embedding = ?, embedding_model = ?, updated_at = ?
                   WHERE id = ?""",
                (json.dumps(list(embedding)), model, self._now_iso(), document_id),
            )
            await db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Database update failed: {exc}") from exc
        if cursor.rowcount == 0:
            raise PersistenceError(
                f"Database update failed: document {document_id} not found"
            )
        logger.debug("Attached %d-dim embedding to %s", len(embedding), document_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str) -> dict | None:
        """Return a document as a dict (embedding decoded), or ``None``."""
        db = self._ensure_connected()
        cursor = await db.execute("SELECT * FROM documents WHERE id = ?", (document_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        document = dict(row)
        if document["embedding"] is not None:
            document["embedding"] = json.loads(document["embedding"])
        return document

    async def count_documents(self) -> int:
        """Return the total number of stored documents."""
        db = self._ensure_connected()
        cursor = await db.execute("SELECT COUNT(*) FROM documents")
        row = await cursor.fetchone()
        return int(row[0])
