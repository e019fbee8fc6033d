"""Model-specific tokenizers and token-level truncation."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Mapping, Protocol, Sequence

import tiktoken

LOGGER = logging.getLogger(__name__)

# Maximum input tokens (embeddings) or context window (chat) per model.
MODEL_LIMITS: Dict[str, int] = {
    "text-embedding-ada-002": 8191,
    "text-embedding-3-small": 8191,
    "text-embedding-3-large": 8191,
    "gpt-4": 8192,
    "gpt-4-turbo": 128_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
}

FALLBACK_ENCODING = "cl100k_base"


class Tokenizer(Protocol):
    """Deterministic encoder for one model identifier."""

    def encode(self, text: str) -> Sequence[int]: ...

    def decode(self, tokens: Sequence[int]) -> str: ...


class TiktokenTokenizer:
    """``tiktoken`` encoding resolved from an OpenAI model name."""

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name
        try:
            self._encoding = tiktoken.encoding_for_model(model_name)
        except KeyError:
            LOGGER.warning(
                "No tiktoken encoding registered for %s, using %s", model_name, FALLBACK_ENCODING
            )
            self._encoding = tiktoken.get_encoding(FALLBACK_ENCODING)

    def encode(self, text: str) -> list[int]:
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: Sequence[int]) -> str:
        # A token slice may end inside a multi-byte character; drop the partial bytes.
        return self._encoding.decode_bytes(list(tokens)).decode("utf-8", errors="ignore")


class TokenizerRegistry:
    """Per-model tokenizer cache, passed explicitly into the pipelines.

    Tests hand in a registry built around a fake factory instead of relying on
    a process-wide cache.
    """

    def __init__(self, factory: Callable[[str], Tokenizer] = TiktokenTokenizer) -> None:
        self._factory = factory
        self._tokenizers: Dict[str, Tokenizer] = {}

    def get(self, model_name: str) -> Tokenizer:
        tokenizer = self._tokenizers.get(model_name)
        if tokenizer is None:
            tokenizer = self._factory(model_name)
            self._tokenizers[model_name] = tokenizer
        return tokenizer


def count_tokens(tokenizer: Tokenizer, text: str) -> int:
    if not text:
        return 0
    return len(tokenizer.encode(text))


def truncate_to_tokens(tokenizer: Tokenizer, text: str, max_tokens: int) -> str:
    """Return the longest token prefix of ``text`` holding at most ``max_tokens`` tokens.

    Slicing happens on tokens and is decoded back, so multi-byte characters are
    never split mid-sequence the way a character slice could.
    """
    if max_tokens <= 0:
        return ""
    tokens = tokenizer.encode(text)
    if len(tokens) <= max_tokens:
        return text

    # Re-encoding a decoded prefix can merge differently; shrink until it fits.
    limit = max_tokens
    while limit > 0:
        candidate = tokenizer.decode(tokens[:limit])
        if len(tokenizer.encode(candidate)) <= max_tokens:
            return candidate
        limit -= 1
    return ""


def count_message_tokens(
    tokenizer: Tokenizer, messages: Sequence[Mapping[str, str]], model_name: str
) -> int:
    """Estimate prompt tokens of a chat request, including per-message overhead."""
    tokens_per_message = 3 if model_name.startswith("gpt-4") else 4
    tokens_per_name = 1

    total = 0
    for message in messages:
        total += tokens_per_message
        for key, value in message.items():
            total += count_tokens(tokenizer, str(value))
            if key == "name":
                total += tokens_per_name
    # every reply is primed with <|start|>assistant<|message|>
    return total + 3
