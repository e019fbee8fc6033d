"""Tests for SQLiteVectorStore."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from conftest import DIMENSION, unit

from docrag.errors import ConfigurationError, DimensionMismatchError, DocumentNotFoundError
from docrag.index.storage import SQLiteVectorStore, normalize
from docrag.models import Chunk, DocumentStatus, EmbeddedChunk, make_chunk_id


def embedded(doc_id: int, texts_and_vectors) -> list[EmbeddedChunk]:
    chunks = []
    offset = 0
    for index, (text, vector) in enumerate(texts_and_vectors):
        chunk = Chunk(index=index, text=text, start=offset, end=offset + len(text))
        chunks.append(EmbeddedChunk(chunk_id=make_chunk_id(doc_id, index), chunk=chunk, vector=vector))
        offset += len(text)
    return chunks


class TestSchema:
    """Test SQLiteVectorStore initialization and schema."""

    def test_init_creates_database(self, tmp_path: Path) -> None:
        db_path = tmp_path / "new.db"

        store = SQLiteVectorStore(db_path, dimension=4)

        assert db_path.exists()
        assert store.dimension == 4
        assert store.metric == "cosine"
        store.close()

    def test_tables_exist(self, store: SQLiteVectorStore) -> None:
        names = {
            row[0]
            for row in store.connection.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {"documents", "chunks", "index_meta"} <= names

    def test_pragma_settings(self, store: SQLiteVectorStore) -> None:
        assert store.connection.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        assert store.connection.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_reopen_with_other_dimension_rejected(self, tmp_path: Path) -> None:
        db_path = tmp_path / "idx.db"
        SQLiteVectorStore(db_path, dimension=4).close()

        with pytest.raises(ConfigurationError):
            SQLiteVectorStore(db_path, dimension=8)

        reopened = SQLiteVectorStore(db_path, dimension=4)
        reopened.close()

    def test_non_positive_dimension(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            SQLiteVectorStore(tmp_path / "x.db", dimension=0)


class TestDocuments:
    def test_create_and_get(self, store: SQLiteVectorStore) -> None:
        doc = store.create_document("a.txt", "hello", metadata={"size": 5}, blob_url="file:///a")

        fetched = store.get_document(doc.id)

        assert fetched.status is DocumentStatus.PENDING
        assert fetched.metadata == {"size": 5}
        assert fetched.blob_url == "file:///a"

    def test_missing_document(self, store: SQLiteVectorStore) -> None:
        with pytest.raises(DocumentNotFoundError):
            store.get_document(999)

    def test_empty_title_rejected(self, store: SQLiteVectorStore) -> None:
        with pytest.raises(ValueError):
            store.create_document("", "x")

    def test_set_status_merges_metadata(self, store: SQLiteVectorStore) -> None:
        doc = store.create_document("a.txt", "hello", metadata={"size": 5, "failure": {"x": 1}})

        updated = store.set_status(
            doc.id, DocumentStatus.PROCESSING, metadata_updates={"failure": None, "step": "go"}
        )

        assert updated.status is DocumentStatus.PROCESSING
        assert updated.metadata == {"size": 5, "step": "go"}

    def test_list_by_status(self, store: SQLiteVectorStore) -> None:
        first = store.create_document("a.txt", "a")
        store.create_document("b.txt", "b")
        store.set_status(first.id, DocumentStatus.FAILED)

        assert [d.title for d in store.list_documents(status=DocumentStatus.FAILED)] == ["a.txt"]
        assert len(store.list_documents()) == 2
        assert len(store.list_documents(limit=1)) == 1

    def test_delete_document(self, store: SQLiteVectorStore) -> None:
        doc = store.create_document("a.txt", "text")
        store.upsert(doc.id, embedded(doc.id, [("text", unit(DIMENSION, 0))]))

        assert store.delete_document(doc.id) is True
        assert store.delete_document(doc.id) is False
        assert store.connection.execute("SELECT COUNT(*) FROM chunks").fetchone()[0] == 0


class TestVectorIndex:
    def test_upsert_marks_indexed(self, store: SQLiteVectorStore) -> None:
        doc = store.create_document("a.txt", "alpha beta")

        count = store.upsert(
            doc.id, embedded(doc.id, [("alpha", unit(DIMENSION, 0)), ("beta", unit(DIMENSION, 1))])
        )

        stored = store.get_document(doc.id)
        assert count == 2
        assert stored.status is DocumentStatus.INDEXED
        assert stored.search_index_id == f"documents-index/{doc.id}"

    def test_upsert_replaces_previous_chunks(self, store: SQLiteVectorStore) -> None:
        doc = store.create_document("a.txt", "alpha beta")
        store.upsert(doc.id, embedded(doc.id, [("old1", unit(DIMENSION, 0)), ("old2", unit(DIMENSION, 1))]))
        store.upsert(doc.id, embedded(doc.id, [("new", unit(DIMENSION, 0))]))

        hits = store.query(unit(DIMENSION, 0), top_k=10)

        assert [h.text for h in hits] == ["new"]

    def test_upsert_wrong_dimension_writes_nothing(self, store: SQLiteVectorStore) -> None:
        doc = store.create_document("a.txt", "alpha beta")
        chunks = embedded(doc.id, [("ok", unit(DIMENSION, 0)), ("bad", np.ones(3, dtype="float32"))])

        with pytest.raises(DimensionMismatchError):
            store.upsert(doc.id, chunks)

        assert store.get_document(doc.id).status is DocumentStatus.PENDING
        assert store.connection.execute("SELECT COUNT(*) FROM chunks").fetchone()[0] == 0

    def test_query_orders_by_cosine_similarity(self, store: SQLiteVectorStore) -> None:
        doc = store.create_document("a.txt", "text")
        close = unit(DIMENSION, 0) * 5 + unit(DIMENSION, 1)
        far = unit(DIMENSION, 0) + unit(DIMENSION, 1) * 2
        store.upsert(doc.id, embedded(doc.id, [("far", far), ("close", close), ("other", unit(DIMENSION, 2))]))

        hits = store.query(unit(DIMENSION, 0) * 3, top_k=2)

        assert [h.text for h in hits] == ["close", "far"]
        assert hits[0].score == pytest.approx(5 / np.sqrt(26), rel=1e-5)
        assert hits[0].chunk_id == f"{doc.id}_1"
        assert hits[0].title == "a.txt"

    def test_query_ignores_non_indexed_documents(self, store: SQLiteVectorStore) -> None:
        doc = store.create_document("a.txt", "text")
        store.upsert(doc.id, embedded(doc.id, [("text", unit(DIMENSION, 0))]))
        store.set_status(doc.id, DocumentStatus.FAILED)

        assert store.query(unit(DIMENSION, 0)) == []

    def test_query_empty_index(self, store: SQLiteVectorStore) -> None:
        assert store.query(unit(DIMENSION, 0)) == []

    def test_query_dimension_checked(self, store: SQLiteVectorStore) -> None:
        with pytest.raises(DimensionMismatchError):
            store.query(np.ones(DIMENSION + 1, dtype="float32"))

    def test_query_top_k_must_be_positive(self, store: SQLiteVectorStore) -> None:
        with pytest.raises(ValueError):
            store.query(unit(DIMENSION, 0), top_k=0)

    def test_stats(self, store: SQLiteVectorStore) -> None:
        doc = store.create_document("a.txt", "text")
        store.create_document("b.txt", "text")
        store.upsert(doc.id, embedded(doc.id, [("a", unit(DIMENSION, 0)), ("b", unit(DIMENSION, 1))]))

        stats = store.get_stats()

        assert stats["document_count"] == 2
        assert stats["indexed_chunk_count"] == 2
        assert stats["by_status"]["indexed"] == 1
        assert stats["by_status"]["pending"] == 1
        assert stats["dimension"] == DIMENSION


class TestNormalize:
    def test_unit_length(self) -> None:
        assert np.linalg.norm(normalize(np.array([3.0, 4.0]))) == pytest.approx(1.0)

    def test_zero_vector_unchanged(self) -> None:
        assert np.array_equal(normalize(np.zeros(3)), np.zeros(3))
