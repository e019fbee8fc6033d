"""Utility helpers for working with uploaded files."""

from __future__ import annotations

import hashlib
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def iter_input_files(inputs: Iterable[Path], *, suffixes: Iterable[str]) -> Iterator[Path]:
    """Yield files with one of ``suffixes`` from input paths, descending into directories."""
    allowed = {suffix.lower() for suffix in suffixes}
    for item in inputs:
        if item.is_dir():
            yield from iter_input_files(
                sorted(child for child in item.rglob("*") if child.is_file()), suffixes=allowed
            )
        elif item.is_file() and item.suffix.lower() in allowed:
            yield item


def sanitize_filename(filename: str) -> str:
    """Replace every character outside ``[A-Za-z0-9._-]`` with an underscore."""
    return _UNSAFE_CHARS.sub("_", filename)


def generate_blob_path(filename: str, *, now: datetime | None = None) -> str:
    """Return a date-partitioned, collision-free blob path for ``filename``."""
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y/%m/%d}/{uuid.uuid4()}_{filename}"


def compute_sha256(content: bytes) -> str:
    """Compute SHA256 hash for uploaded bytes."""
    return hashlib.sha256(content).hexdigest()
