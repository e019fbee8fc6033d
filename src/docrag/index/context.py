"""Token-budgeted context assembly for the answer prompt."""

from __future__ import annotations

import logging
from typing import Sequence

from docrag.embedding.tokenizer import Tokenizer, count_tokens, truncate_to_tokens
from docrag.errors import ConfigurationError
from docrag.models import ContextSelection

LOGGER = logging.getLogger(__name__)


def _degradation_fields(selection: ContextSelection) -> dict:
    return {
        "dropped": selection.dropped,
        "truncated": selection.truncated,
        "total_tokens": selection.total_tokens,
        "budget": selection.budget,
    }


def assemble_context(
    texts: Sequence[str], *, budget: int, tokenizer: Tokenizer
) -> ContextSelection:
    """Select the longest prefix of ``texts`` that fits in ``budget`` tokens.

    Chunks are taken whole while they fit. The first chunk that does not fit
    is cut down to the remaining allowance (at token level) and assembly
    stops; once the budget is spent, remaining chunks are dropped. Positions
    of the kept inputs are recorded in ``used_indices``. Truncation and
    dropping are logged as warnings carrying ``event``, ``dropped``,
    ``truncated``, ``total_tokens`` and ``budget`` fields so degraded context
    can be detected.
    """
    if budget <= 0:
        raise ConfigurationError(f"context token budget must be positive, got {budget}")

    selection = ContextSelection(budget=budget)
    truncation: tuple[int, int] | None = None
    for index, text in enumerate(texts):
        remaining = budget - selection.total_tokens
        if remaining <= 0:
            break

        tokens = count_tokens(tokenizer, text)
        if tokens <= remaining:
            selection.texts.append(text)
            selection.used_indices.append(index)
            selection.total_tokens += tokens
            continue

        partial = truncate_to_tokens(tokenizer, text, remaining)
        if partial:
            kept = count_tokens(tokenizer, partial)
            selection.texts.append(partial)
            selection.used_indices.append(index)
            selection.total_tokens += kept
            selection.truncated = True
            truncation = (tokens, kept)
        break

    selection.dropped = len(texts) - len(selection.texts)

    if truncation is not None:
        original, kept = truncation
        LOGGER.warning(
            "Truncated context chunk %d from %d to %d tokens",
            selection.used_indices[-1],
            original,
            kept,
            extra={
                "event": "context_truncated",
                "original_tokens": original,
                "kept_tokens": kept,
                **_degradation_fields(selection),
            },
        )
    if selection.dropped:
        LOGGER.warning(
            "Dropped %d of %d context chunks (%d/%d tokens used)",
            selection.dropped,
            len(texts),
            selection.total_tokens,
            budget,
            extra={"event": "context_dropped", **_degradation_fields(selection)},
        )

    LOGGER.info(
        "Context: %d chunks, %d tokens", len(selection.texts), selection.total_tokens
    )
    return selection
