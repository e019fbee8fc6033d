"""Core DocRAG data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

import numpy as np


class DocumentStatus(str, Enum):
    """Lifecycle of an uploaded document: pending -> processing -> indexed | failed."""

    PENDING = "pending"
    PROCESSING = "processing"
    INDEXED = "indexed"
    FAILED = "failed"


@dataclass(slots=True)
class Document:
    """Uploaded document as persisted in the document table."""

    id: int
    title: str
    content: str
    status: DocumentStatus = DocumentStatus.PENDING
    metadata: Dict[str, Any] = field(default_factory=dict)
    blob_url: str | None = None
    search_index_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self, *, preview_chars: int = 200) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content_preview": self.content[:preview_chars],
            "status": self.status.value,
            "metadata": self.metadata,
            "blob_url": self.blob_url,
            "search_index_id": self.search_index_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True, slots=True)
class Chunk:
    """Contiguous ``[start, end)`` window of a document's text."""

    index: int
    text: str
    start: int
    end: int


@dataclass(frozen=True, slots=True, eq=False)
class EmbeddedChunk:
    """Chunk paired with its embedding, ready for the vector index."""

    chunk_id: str
    chunk: Chunk
    vector: np.ndarray

    @property
    def text(self) -> str:
        return self.chunk.text


def make_chunk_id(document_id: int, index: int) -> str:
    return f"{document_id}_{index}"


@dataclass(slots=True)
class SearchHit:
    chunk_id: str
    document_id: int
    title: str
    chunk_index: int
    text: str
    score: float


@dataclass(slots=True)
class SourceCitation:
    """Chunk text actually placed in the prompt, for citation."""

    document_id: int
    title: str
    chunk_id: str
    score: float
    content: str
    truncated: bool = False


@dataclass(slots=True)
class ContextSelection:
    """Result of fitting ranked chunk texts into a token budget."""

    texts: List[str] = field(default_factory=list)
    total_tokens: int = 0
    budget: int = 0
    truncated: bool = False
    dropped: int = 0
    used_indices: List[int] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.truncated or self.dropped > 0


@dataclass(slots=True)
class RagAnswer:
    query: str
    answer: str
    sources: List[SourceCitation] = field(default_factory=list)
    chunks_found: int = 0
    context: ContextSelection | None = None


@dataclass(slots=True)
class ProcessingResult:
    """Outcome of one ingestion run for a single document."""

    document_id: int
    status: DocumentStatus
    chunks_created: int = 0
    embeddings_created: int = 0
    stage: str | None = None
    reason: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status is DocumentStatus.INDEXED

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "document_id": self.document_id,
            "status": self.status.value,
            "chunks_created": self.chunks_created,
            "embeddings_created": self.embeddings_created,
        }
        if not self.success:
            payload.update({"stage": self.stage, "reason": self.reason, "error": self.error})
        return payload


@dataclass(slots=True)
class Setting:
    key: str
    value: str | None
    category: str = "general"
    description: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "description": self.description,
            "category": self.category,
            "updated_at": self.updated_at,
        }
