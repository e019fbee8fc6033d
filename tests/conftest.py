"""Shared fixtures: deterministic tokenizer, embedder and generator fakes."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Sequence

import numpy as np
import pytest

from docrag.embedding.tokenizer import TokenizerRegistry
from docrag.generation.completion import GenerationResult
from docrag.index.storage import SQLiteVectorStore

DIMENSION = 8


class WordTokenizer:
    """One token per whitespace-separated word."""

    def encode(self, text: str) -> List[str]:
        return text.split()

    def decode(self, tokens: Sequence[str]) -> str:
        return " ".join(tokens)


def word_registry() -> TokenizerRegistry:
    return TokenizerRegistry(factory=lambda _model: WordTokenizer())


class FakeEmbedder:
    """Deterministic embedder; each text maps to a fixed vector.

    ``failures`` maps a call number (1-based) to an exception raised on it.
    """

    def __init__(
        self,
        dimension: int = DIMENSION,
        *,
        model_name: str = "fake-embedding",
        failures: Dict[int, Exception] | None = None,
        vector_for: Callable[[str], np.ndarray] | None = None,
    ) -> None:
        self.model_name = model_name
        self.dimension = dimension
        self.failures = failures or {}
        self.vector_for = vector_for
        self.calls: List[str] = []

    def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        failure = self.failures.get(len(self.calls))
        if failure is not None:
            raise failure
        if self.vector_for is not None:
            return np.asarray(self.vector_for(text), dtype="float32")
        vector = np.zeros(self.dimension, dtype="float32")
        vector[len(text) % self.dimension] = 1.0
        vector[0] += 0.1
        return vector


class FakeGenerator:
    def __init__(self, answer: str = "generated answer", model_name: str = "gpt-4-turbo") -> None:
        self.model_name = model_name
        self.answer = answer
        self.prompts: List[tuple[str, str, int]] = []

    def generate(
        self, system_instruction: str, user_prompt: str, max_output_tokens: int
    ) -> GenerationResult:
        self.prompts.append((system_instruction, user_prompt, max_output_tokens))
        return GenerationResult(text=self.answer, prompt_tokens=10, completion_tokens=5)


def unit(dimension: int, axis: int) -> np.ndarray:
    vector = np.zeros(dimension, dtype="float32")
    vector[axis] = 1.0
    return vector


@pytest.fixture
def tokenizers() -> TokenizerRegistry:
    return word_registry()


@pytest.fixture
def store(tmp_path: Path):
    vector_store = SQLiteVectorStore(tmp_path / "test.db", dimension=DIMENSION)
    yield vector_store
    vector_store.close()
