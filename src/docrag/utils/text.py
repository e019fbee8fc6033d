"""Text helpers: fixed-size overlapping chunking and cleanup."""

from __future__ import annotations

import re
from typing import Iterable, List

from docrag.errors import ConfigurationError
from docrag.models import Chunk

_NON_PRINTABLE = re.compile(r"[^\x20-\x7E\n\r\t]")


def validate_chunking(chunk_size: int, overlap: int) -> None:
    """Reject window settings that would not advance through the text."""
    if chunk_size <= 0:
        raise ConfigurationError(f"chunk size must be positive, got {chunk_size}")
    if overlap < 0:
        raise ConfigurationError(f"overlap must not be negative, got {overlap}")
    if overlap >= chunk_size:
        raise ConfigurationError(
            f"overlap ({overlap}) must be smaller than chunk size ({chunk_size})"
        )


def chunk_text(text: str, *, chunk_size: int = 1000, overlap: int = 200) -> List[Chunk]:
    """Split text into overlapping character windows.

    Windows start at offset 0 and advance by ``chunk_size - overlap``. The
    last window may be shorter; once a window reaches the end of the text no
    further (fully overlapped) window is produced, so a text of at most
    ``chunk_size`` characters yields exactly one chunk.
    """
    validate_chunking(chunk_size, overlap)
    if not text:
        return []

    step = chunk_size - overlap
    length = len(text)
    chunks: List[Chunk] = []
    for index, start in enumerate(range(0, length, step)):
        end = min(start + chunk_size, length)
        chunks.append(Chunk(index=index, text=text[start:end], start=start, end=end))
        if end == length:
            break
    return chunks


def clean_text(text: str) -> str:
    """Drop NUL bytes and non-printable characters before prompting."""
    return _NON_PRINTABLE.sub("", text.replace("\x00", ""))


def decode_upload(content: bytes) -> str:
    """Decode uploaded bytes as UTF-8, discarding invalid sequences and NULs."""
    return content.decode("utf-8", errors="ignore").replace("\x00", "")


def normalize_whitespace(lines: Iterable[str]) -> str:
    """Collapse whitespace and join lines."""
    return "\n".join(line.strip() for line in lines if line.strip())
