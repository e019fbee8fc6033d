"""Local sentence-transformers embedding backend."""

from __future__ import annotations

import logging

import numpy as np
from sentence_transformers import SentenceTransformer

from docrag.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

DEFAULT_LOCAL_MODEL = "sentence-transformers/all-mpnet-base-v2"


class SentenceTransformerEmbeddingModel:
    """Embed text in-process with a ``SentenceTransformer`` model.

    The dimension comes from the loaded model; when an expected dimension is
    given it must match, otherwise the index built with it would be unusable.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_LOCAL_MODEL,
        *,
        expected_dimension: int | None = None,
        device: str | None = None,
    ) -> None:
        self.model_name = model_name
        self._model = SentenceTransformer(model_name, device=device)
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        if expected_dimension is not None and expected_dimension != self.dimension:
            raise ConfigurationError(
                f"{model_name} produces {self.dimension}-dimensional embeddings, "
                f"configured dimension is {expected_dimension}"
            )
        LOGGER.info("Loaded local embedding model %s (%d dims)", model_name, self.dimension)

    def embed(self, text: str) -> np.ndarray:
        """Return a float32 embedding for a single text."""
        embeddings = self._model.encode(
            [text],
            show_progress_bar=False,
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return embeddings[0].astype("float32", copy=False)
