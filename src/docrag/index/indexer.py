"""Document ingestion pipeline: upload, chunk, embed, index."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Sequence

from docrag.embedding.encoder import EmbeddingModel
from docrag.errors import (
    ConfigurationError,
    DocRagError,
    DocumentNotFoundError,
    PipelineError,
    Reason,
    Stage,
)
from docrag.index.storage import SQLiteVectorStore
from docrag.ingestion.blob_storage import BlobStorage
from docrag.ingestion.loader import SUPPORTED_SUFFIXES, extract_text
from docrag.models import (
    Document,
    DocumentStatus,
    EmbeddedChunk,
    ProcessingResult,
    make_chunk_id,
)
from docrag.utils.files import compute_sha256, iter_input_files
from docrag.utils.text import chunk_text, validate_chunking

LOGGER = logging.getLogger(__name__)


def find_documents(paths: Sequence[Path]) -> list[Path]:
    """Find all supported files under the given paths."""
    return list(iter_input_files(paths, suffixes=SUPPORTED_SUFFIXES))


@dataclass(slots=True)
class IndexStats:
    indexed: int = 0
    failed: int = 0
    skipped: int = 0
    processed_files: list[Path] = field(default_factory=list)
    results: List[ProcessingResult] = field(default_factory=list)

    def record(self, path: Path, result: ProcessingResult | None) -> None:
        if result is None:
            self.skipped += 1
        elif result.success:
            self.indexed += 1
        else:
            self.failed += 1
        if result is not None:
            self.results.append(result)
        self.processed_files.append(path)


class Indexer:
    """Coordinates document ingestion and persistence.

    A document moves ``pending -> processing -> indexed | failed``. It only
    becomes ``indexed`` once every chunk has an embedding and all chunks were
    written by a single :meth:`SQLiteVectorStore.upsert`; any failure leaves
    it ``failed`` with the failing stage recorded in its metadata.
    """

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteVectorStore,
        *,
        storage: BlobStorage | None = None,
        chunk_chars: int = 1000,
        overlap: int = 200,
    ) -> None:
        validate_chunking(chunk_chars, overlap)
        if embedder.dimension != store.dimension:
            raise ConfigurationError(
                f"embedding model {embedder.model_name} produces {embedder.dimension} dimensions, "
                f"index expects {store.dimension}"
            )
        self.embedder = embedder
        self.store = store
        self.storage = storage
        self.chunk_chars = chunk_chars
        self.overlap = overlap

    def ingest(
        self, filename: str, content: bytes, content_type: str | None = None
    ) -> tuple[Document, ProcessingResult]:
        """Store an upload, record it as a pending document and process it."""
        if not content:
            raise ValueError("No file content provided")
        text = extract_text(filename, content, content_type)
        if not text.strip():
            raise ValueError(f"No text could be extracted from {filename}")

        metadata = {
            "size": len(content),
            "content_type": content_type,
            "sha256": compute_sha256(content),
            "uploaded_at": datetime.now(timezone.utc).isoformat(),
        }
        blob_url = None
        if self.storage is not None:
            stored = self.storage.upload_document(filename, content)
            blob_url = stored.url
            metadata.update(
                {
                    "cloud_provider": stored.provider,
                    "blob_name": stored.name,
                    "container": stored.container,
                }
            )

        document = self.store.create_document(filename, text, metadata=metadata, blob_url=blob_url)
        LOGGER.info("Created document %d: %s", document.id, filename)
        result = self.process(document.id)
        return self.store.get_document(document.id), result

    def index(self, paths: Sequence[Path]) -> IndexStats:
        """Ingest every supported file found under the given paths."""
        files = find_documents(paths)
        if not files:
            LOGGER.warning("No supported files found")
            return IndexStats()

        stats = IndexStats()
        for path in files:
            LOGGER.info("Processing: %s", path)
            try:
                _, result = self.ingest(path.name, path.read_bytes())
            except (OSError, ValueError, DocRagError) as exc:
                LOGGER.error("Skipping %s: %s", path, exc)
                stats.record(path, None)
                continue
            stats.record(path, result)
        return stats

    def delete(self, doc_id: int) -> bool:
        """Remove a document, its chunks and its stored upload."""
        try:
            document = self.store.get_document(doc_id)
        except DocumentNotFoundError:
            return False
        blob_name = document.metadata.get("blob_name")
        if self.storage is not None and blob_name:
            self.storage.delete_document(blob_name)
        deleted = self.store.delete_document(doc_id)
        LOGGER.info("Deleted document %d: %s", doc_id, document.title)
        return deleted

    def process(self, doc_id: int) -> ProcessingResult:
        """Chunk, embed and index one stored document."""
        document = self.store.get_document(doc_id)
        LOGGER.info("Processing document %d: %s", doc_id, document.title)
        self.store.set_status(
            doc_id,
            DocumentStatus.PROCESSING,
            metadata_updates={
                "failure": None,
                "processing_started_at": datetime.now(timezone.utc).isoformat(),
            },
        )

        stage = Stage.CHUNKING
        current_chunk: int | None = None
        embedded: List[EmbeddedChunk] = []
        chunk_count = 0
        try:
            chunks = chunk_text(document.content, chunk_size=self.chunk_chars, overlap=self.overlap)
            chunk_count = len(chunks)
            if not chunks:
                raise PipelineError("document has no text to index", reason=Reason.REJECTED)
            LOGGER.info("Created %d chunks", chunk_count)

            stage = Stage.EMBEDDING
            for chunk in chunks:
                current_chunk = chunk.index
                LOGGER.debug("Creating embedding %d/%d...", chunk.index + 1, chunk_count)
                vector = self.embedder.embed(chunk.text)
                embedded.append(
                    EmbeddedChunk(chunk_id=make_chunk_id(doc_id, chunk.index), chunk=chunk, vector=vector)
                )
            current_chunk = None

            stage = Stage.INDEXING
            self.store.upsert(doc_id, embedded)
        except DocRagError as exc:
            exc.at(stage, document_id=doc_id, chunk_index=current_chunk)
            return self._fail(doc_id, exc, chunk_count, len(embedded))
        except Exception as exc:
            LOGGER.exception("Unexpected %s failure for document %d", stage.value, doc_id)
            error = PipelineError(
                f"{stage.value} failed: {type(exc).__name__}",
                stage=stage,
                document_id=doc_id,
                chunk_index=current_chunk,
            )
            return self._fail(doc_id, error, chunk_count, len(embedded))

        LOGGER.info("Indexed document %d (%d chunks)", doc_id, len(embedded))
        return ProcessingResult(
            document_id=doc_id,
            status=DocumentStatus.INDEXED,
            chunks_created=chunk_count,
            embeddings_created=len(embedded),
        )

    def _fail(
        self, doc_id: int, error: DocRagError, chunks_created: int, embeddings_created: int
    ) -> ProcessingResult:
        LOGGER.error(
            "Processing failed for document %d: %s",
            doc_id,
            error,
            extra={
                "event": "document_failed",
                "document_id": doc_id,
                "stage": error.stage.value if error.stage else None,
                "reason": error.reason.value,
            },
        )
        failure = {
            **error.to_dict(),
            "chunks_computed": chunks_created,
            "embeddings_computed": embeddings_created,
        }
        self.store.set_status(doc_id, DocumentStatus.FAILED, metadata_updates={"failure": failure})
        return ProcessingResult(
            document_id=doc_id,
            status=DocumentStatus.FAILED,
            chunks_created=chunks_created,
            embeddings_created=embeddings_created,
            stage=error.stage.value if error.stage else None,
            reason=error.reason.value,
            error=error.message,
        )
