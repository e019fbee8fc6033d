"""SQLite document table and cosine-similarity vector index."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence

import numpy as np

from docrag.errors import ConfigurationError, DimensionMismatchError, DocumentNotFoundError
from docrag.models import Document, DocumentStatus, EmbeddedChunk, SearchHit

METRIC = "cosine"


def normalize(vector: np.ndarray) -> np.ndarray:
    """Return a float32 unit-length copy of ``vector`` (zero vectors unchanged)."""
    vector = np.asarray(vector, dtype="float32")
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


class SQLiteVectorStore:
    """Persistence layer for documents, their chunks and chunk embeddings.

    Only chunks of documents whose status is ``indexed`` are visible to
    :meth:`query`; a document's chunks and its ``indexed`` status are written
    in the same transaction.
    """

    def __init__(self, db_path: Path, *, dimension: int, index_name: str = "documents-index") -> None:
        if dimension <= 0:
            raise ConfigurationError(f"index dimension must be positive, got {dimension}")
        self.db_path = Path(db_path)
        self.dimension = dimension
        self.index_name = index_name
        self.metric = METRIC
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()
        self._check_index_meta()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS index_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    metadata TEXT,
                    blob_url TEXT,
                    search_index_id TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS documents_updated
                AFTER UPDATE ON documents
                BEGIN
                    UPDATE documents SET updated_at = CURRENT_TIMESTAMP WHERE id = NEW.id;
                END;
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id TEXT PRIMARY KEY,
                    document_id INTEGER NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    start_offset INTEGER NOT NULL,
                    end_offset INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_document_id
                    ON chunks(document_id)
                """
            )

    def _check_index_meta(self) -> None:
        with self.transaction() as conn:
            rows = {row["key"]: row["value"] for row in conn.execute("SELECT key, value FROM index_meta")}
            if not rows:
                conn.executemany(
                    "INSERT INTO index_meta(key, value) VALUES (?, ?)",
                    [("dimension", str(self.dimension)), ("metric", self.metric)],
                )
                return

        if rows.get("metric") != self.metric:
            raise ConfigurationError(
                f"index at {self.db_path} uses metric {rows.get('metric')}, expected {self.metric}"
            )
        if int(rows.get("dimension", 0)) != self.dimension:
            raise ConfigurationError(
                f"index at {self.db_path} was built with {rows.get('dimension')}-dimensional "
                f"embeddings, configured dimension is {self.dimension}"
            )

    # -- documents -----------------------------------------------------------------

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            status=DocumentStatus(row["status"]),
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            blob_url=row["blob_url"],
            search_index_id=row["search_index_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_document(
        self,
        title: str,
        content: str,
        *,
        metadata: Dict[str, Any] | None = None,
        blob_url: str | None = None,
    ) -> Document:
        if not title:
            raise ValueError("Document title is required")
        with self.transaction() as conn:
            doc_id = conn.execute(
                """
                INSERT INTO documents(title, content, status, metadata, blob_url)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    title,
                    content,
                    DocumentStatus.PENDING.value,
                    json.dumps(metadata or {}, ensure_ascii=True),
                    blob_url,
                ),
            ).lastrowid
        return self.get_document(doc_id)

    def get_document(self, doc_id: int) -> Document:
        row = self._conn.execute("SELECT * FROM documents WHERE id = ?", (doc_id,)).fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {doc_id} not found", document_id=doc_id)
        return self._row_to_document(row)

    def list_documents(
        self, *, status: DocumentStatus | None = None, limit: int | None = None
    ) -> List[Document]:
        sql = "SELECT * FROM documents"
        params: list[Any] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._row_to_document(row) for row in self._conn.execute(sql, params)]

    def set_status(
        self,
        doc_id: int,
        status: DocumentStatus,
        *,
        metadata_updates: Dict[str, Any] | None = None,
    ) -> Document:
        """Move a document to ``status``; ``None`` values in ``metadata_updates`` remove keys."""
        document = self.get_document(doc_id)
        metadata = dict(document.metadata)
        for key, value in (metadata_updates or {}).items():
            if value is None:
                metadata.pop(key, None)
            else:
                metadata[key] = value
        with self.transaction() as conn:
            conn.execute(
                "UPDATE documents SET status = ?, metadata = ? WHERE id = ?",
                (status.value, json.dumps(metadata, ensure_ascii=True), doc_id),
            )
        return self.get_document(doc_id)

    def delete_document(self, doc_id: int) -> bool:
        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks WHERE document_id = ?", (doc_id,))
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
        return cursor.rowcount > 0

    def get_stats(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in DocumentStatus}
        for row in self._conn.execute("SELECT status, COUNT(*) AS n FROM documents GROUP BY status"):
            counts[row["status"]] = row["n"]
        chunk_count = self._conn.execute(
            """
            SELECT COUNT(*) FROM chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE d.status = ?
            """,
            (DocumentStatus.INDEXED.value,),
        ).fetchone()[0]
        return {
            "document_count": sum(counts.values()),
            "indexed_chunk_count": chunk_count,
            "by_status": counts,
            "dimension": self.dimension,
            "metric": self.metric,
        }

    # -- vector index ----------------------------------------------------------------

    def _check_dimension(self, vector: np.ndarray) -> np.ndarray:
        vector = np.asarray(vector, dtype="float32")
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise DimensionMismatchError(
                f"vector has {vector.shape[-1] if vector.ndim else 0} dimensions, "
                f"index expects {self.dimension}"
            )
        return vector

    def upsert(self, doc_id: int, chunks: Sequence[EmbeddedChunk]) -> int:
        """Replace a document's chunks and mark it ``indexed`` in one transaction.

        Every vector is validated before anything is written; on any error the
        transaction rolls back and the document keeps its previous state.
        """
        vectors = [normalize(self._check_dimension(chunk.vector)) for chunk in chunks]
        self.get_document(doc_id)

        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks WHERE document_id = ?", (doc_id,))
            conn.executemany(
                """
                INSERT INTO chunks(id, document_id, chunk_index, start_offset, end_offset, text, embedding)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.chunk_id,
                        doc_id,
                        chunk.chunk.index,
                        chunk.chunk.start,
                        chunk.chunk.end,
                        chunk.text,
                        sqlite3.Binary(vector.tobytes()),
                    )
                    for chunk, vector in zip(chunks, vectors)
                ],
            )
            conn.execute(
                "UPDATE documents SET status = ?, search_index_id = ? WHERE id = ?",
                (DocumentStatus.INDEXED.value, f"{self.index_name}/{doc_id}", doc_id),
            )
        return len(chunks)

    def query(self, embedding: np.ndarray, *, top_k: int = 5) -> List[SearchHit]:
        """Return the ``top_k`` chunks most similar to ``embedding`` by cosine similarity."""
        if top_k <= 0:
            raise ValueError(f"top_k must be positive, got {top_k}")
        query = normalize(self._check_dimension(embedding))
        rows = self._conn.execute(
            """
            SELECT
                c.id AS chunk_id,
                c.document_id AS document_id,
                d.title AS title,
                c.chunk_index AS chunk_index,
                c.text AS text,
                c.embedding AS embedding
            FROM chunks c
            JOIN documents d ON d.id = c.document_id
            WHERE d.status = ?
            """,
            (DocumentStatus.INDEXED.value,),
        ).fetchall()

        if not rows:
            return []

        embeddings = np.vstack([np.frombuffer(row["embedding"], dtype="float32") for row in rows])
        scores = embeddings @ query

        if top_k < len(scores):
            top_indices = np.argpartition(scores, -top_k)[-top_k:]
            top_indices = top_indices[np.argsort(scores[top_indices])[::-1]]
        else:
            top_indices = np.argsort(scores)[::-1]

        return [
            SearchHit(
                chunk_id=rows[idx]["chunk_id"],
                document_id=rows[idx]["document_id"],
                title=rows[idx]["title"],
                chunk_index=rows[idx]["chunk_index"],
                text=rows[idx]["text"],
                score=float(scores[idx]),
            )
            for idx in top_indices
        ]
