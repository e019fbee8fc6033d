"""Embedding model management."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np
from openai import OpenAI, OpenAIError

from docrag.config import DEFAULT_EMBEDDING_DIMENSION, DEFAULT_EMBEDDING_MODEL
from docrag.embedding.tokenizer import (
    MODEL_LIMITS,
    TokenizerRegistry,
    count_tokens,
    truncate_to_tokens,
)
from docrag.errors import DimensionMismatchError
from docrag.openai_client import classify_openai_error, estimate_cost
from docrag.utils.retry import RetryPolicy, call_with_retry

LOGGER = logging.getLogger(__name__)


class EmbeddingModel(Protocol):
    """Embedding capability: one fixed-dimension vector per text."""

    model_name: str
    dimension: int

    def embed(self, text: str) -> np.ndarray: ...


@dataclass(slots=True)
class EmbeddingConfig:
    model_name: str = DEFAULT_EMBEDDING_MODEL
    dimension: int = DEFAULT_EMBEDDING_DIMENSION
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    # Kept below the model limit so the truncated text never sits on the boundary.
    token_margin: int = 10


class OpenAIEmbeddingModel:
    """Thin wrapper around the OpenAI embeddings endpoint.

    Inputs longer than the model's maximum token length are truncated at
    token level before the call; every returned vector is checked against
    the configured dimension.
    """

    def __init__(
        self,
        client: OpenAI,
        tokenizers: TokenizerRegistry,
        config: EmbeddingConfig | None = None,
    ) -> None:
        self.config = config or EmbeddingConfig()
        self.client = client
        self.tokenizers = tokenizers
        self.model_name = self.config.model_name
        self.dimension = self.config.dimension

    def _prepare(self, text: str) -> str:
        limit = MODEL_LIMITS.get(self.model_name)
        if limit is None:
            return text
        tokenizer = self.tokenizers.get(self.model_name)
        tokens = count_tokens(tokenizer, text)
        if tokens <= limit:
            return text
        LOGGER.warning(
            "Text exceeds embedding limit (%d > %d). Truncating...",
            tokens,
            limit,
            extra={"event": "embedding_input_truncated", "tokens": tokens, "limit": limit},
        )
        return truncate_to_tokens(tokenizer, text, limit - self.config.token_margin)

    def _request(self, text: str) -> np.ndarray:
        try:
            response = self.client.embeddings.create(model=self.model_name, input=text)
        except OpenAIError as exc:
            raise classify_openai_error(exc, operation="embedding") from exc

        usage = getattr(response, "usage", None)
        if usage is not None:
            cost = estimate_cost(self.model_name, usage.prompt_tokens)
            LOGGER.debug(
                "Token usage [embedding]: prompt=%s, estimated_cost=$%.6f",
                usage.prompt_tokens,
                cost,
                extra={
                    "event": "token_usage",
                    "operation": "embedding",
                    "prompt_tokens": usage.prompt_tokens,
                    "estimated_cost": cost,
                },
            )
        return np.asarray(response.data[0].embedding, dtype="float32")

    def embed(self, text: str) -> np.ndarray:
        """Return the float32 embedding of ``text``."""
        prepared = self._prepare(text)
        vector = call_with_retry(
            lambda: self._request(prepared), self.config.retry, operation="embedding"
        )
        if vector.shape != (self.dimension,):
            raise DimensionMismatchError(
                f"embedding model {self.model_name} returned {vector.shape[-1]} dimensions, "
                f"expected {self.dimension}",
            )
        return vector
