"""Text extraction from uploaded bytes.

PDFs are read with PyMuPDF (fitz) page by page; everything else is treated
as UTF-8 text.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import fitz  # PyMuPDF

from docrag.utils.text import decode_upload, normalize_whitespace

LOGGER = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".pdf", ".txt", ".md", ".markdown", ".csv", ".json", ".html", ".rst")


def is_pdf(filename: str, content: bytes, content_type: str | None = None) -> bool:
    return (
        content_type == "application/pdf"
        or Path(filename).suffix.lower() == ".pdf"
        or content.startswith(b"%PDF-")
    )


def iter_pdf_pages(content: bytes) -> Iterator[str]:
    """Yield normalised text of each PDF page that has any."""
    doc = fitz.open(stream=content, filetype="pdf")
    try:
        for index in range(len(doc)):
            text = doc[index].get_text() or ""
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield normalized
    finally:
        doc.close()


def extract_text(filename: str, content: bytes, content_type: str | None = None) -> str:
    """Return the plain text of an upload."""
    if is_pdf(filename, content, content_type):
        LOGGER.debug("Extracting PDF text from %s", filename)
        try:
            return "\n".join(iter_pdf_pages(content))
        except RuntimeError as exc:  # fitz.FileDataError and friends
            LOGGER.error("Failed to read PDF %s: %s", filename, exc)
            raise ValueError(f"Could not read PDF {filename}") from exc
    return decode_upload(content)
