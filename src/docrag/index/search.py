"""Semantic search and retrieval-augmented answering."""

from __future__ import annotations

import logging
from typing import List

import numpy as np

from docrag.embedding.encoder import EmbeddingModel
from docrag.embedding.tokenizer import TokenizerRegistry
from docrag.errors import (
    ConfigurationError,
    DimensionMismatchError,
    DocRagError,
    PipelineError,
    Reason,
    Stage,
)
from docrag.generation.completion import ChatGenerator
from docrag.index.context import assemble_context
from docrag.index.storage import SQLiteVectorStore
from docrag.models import RagAnswer, SearchHit, SourceCitation
from docrag.utils.text import clean_text

LOGGER = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a helpful assistant that answers questions based on the provided documents. "
    "Only use information from the documents to answer. If the answer is not in the "
    "documents, say so."
)
NO_RESULTS_ANSWER = "I don't have information about that in the uploaded documents."
CONTEXT_SEPARATOR = "\n\n---\n\n"


def build_user_prompt(query: str, context_texts: List[str]) -> str:
    context = CONTEXT_SEPARATOR.join(context_texts)
    return f"Context from documents:\n\n{context}{CONTEXT_SEPARATOR}Question: {query}"


class Searcher:
    """High-level API to query the vector index and answer from it."""

    def __init__(
        self,
        embedder: EmbeddingModel,
        store: SQLiteVectorStore,
        *,
        generator: ChatGenerator | None = None,
        tokenizers: TokenizerRegistry | None = None,
        top_k: int = 5,
        context_budget: int = 6000,
        max_output_tokens: int = 2000,
    ) -> None:
        if embedder.dimension != store.dimension:
            raise ConfigurationError(
                f"embedding model {embedder.model_name} produces {embedder.dimension} dimensions, "
                f"index expects {store.dimension}"
            )
        if top_k <= 0 or context_budget <= 0 or max_output_tokens <= 0:
            raise ConfigurationError("top_k, context_budget and max_output_tokens must be positive")
        self.embedder = embedder
        self.store = store
        self.generator = generator
        self.tokenizers = tokenizers
        self.top_k = top_k
        self.context_budget = context_budget
        self.max_output_tokens = max_output_tokens

    def _embed_query(self, query: str) -> np.ndarray:
        try:
            vector = np.asarray(self.embedder.embed(query), dtype="float32")
        except DocRagError as exc:
            raise exc.at(Stage.QUERY_EMBEDDING)
        except Exception as exc:
            raise PipelineError(
                f"query embedding failed: {type(exc).__name__}", stage=Stage.QUERY_EMBEDDING
            ) from exc

        if vector.ndim != 1 or vector.shape[0] != self.store.dimension:
            raise DimensionMismatchError(
                f"query embedding has {vector.shape[-1] if vector.ndim else 0} dimensions, "
                f"index was built with {self.store.dimension}",
                stage=Stage.QUERY_EMBEDDING,
            )
        return vector

    def search(self, query: str, *, top_k: int | None = None) -> List[SearchHit]:
        """Return the nearest chunks for ``query`` without generating an answer."""
        if not query.strip():
            raise ValueError("Query is required")
        vector = self._embed_query(query)
        try:
            return self.store.query(vector, top_k=top_k or self.top_k)
        except DocRagError as exc:
            raise exc.at(Stage.SEARCH)
        except Exception as exc:
            raise PipelineError(
                f"search failed: {type(exc).__name__}", reason=Reason.UNAVAILABLE, stage=Stage.SEARCH
            ) from exc

    def answer(self, query: str) -> RagAnswer:
        """Retrieve relevant chunks and generate an answer grounded in them."""
        if self.generator is None or self.tokenizers is None:
            raise ConfigurationError("answering requires a text generator and a tokenizer registry")

        LOGGER.info("RAG search: %s", query)
        hits = self.search(query)
        LOGGER.info("Found %d relevant chunks", len(hits))
        if not hits:
            return RagAnswer(query=query, answer=NO_RESULTS_ANSWER, chunks_found=0)

        cleaned = [clean_text(hit.text) for hit in hits]
        tokenizer = self.tokenizers.get(self.generator.model_name)
        selection = assemble_context(cleaned, budget=self.context_budget, tokenizer=tokenizer)

        try:
            result = self.generator.generate(
                SYSTEM_INSTRUCTION,
                build_user_prompt(query, selection.texts),
                self.max_output_tokens,
            )
        except DocRagError as exc:
            raise exc.at(Stage.GENERATION)
        except Exception as exc:
            raise PipelineError(
                f"generation failed: {type(exc).__name__}", stage=Stage.GENERATION
            ) from exc

        last = len(selection.texts) - 1
        sources = [
            SourceCitation(
                document_id=hits[index].document_id,
                title=hits[index].title,
                chunk_id=hits[index].chunk_id,
                score=hits[index].score,
                content=text,
                truncated=selection.truncated and position == last,
            )
            for position, (index, text) in enumerate(zip(selection.used_indices, selection.texts))
        ]
        return RagAnswer(
            query=query,
            answer=result.text,
            sources=sources,
            chunks_found=len(hits),
            context=selection,
        )
