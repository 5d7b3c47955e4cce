"""PDF text extraction.

Uses PyMuPDF (fitz) to pull plain text out of every page. Extraction works on
raw bytes so the same buffer can be hashed and parsed without a second read.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

import fitz  # PyMuPDF

from pdfrag.models import ExtractedDocument, PageContent
from pdfrag.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)


def extract_pages(data: bytes) -> List[PageContent]:
    """Return the text of every page in order, 1-based page numbers."""
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        pages: List[PageContent] = []
        for index in range(len(doc)):
            text = doc[index].get_text() or ""
            pages.append(PageContent(page_number=index + 1, text=normalize_whitespace(text)))
        return pages
    finally:
        doc.close()


def extract_document(path: Path, data: bytes | None = None) -> ExtractedDocument:
    """Extract the pages of a PDF, reading it from disk unless ``data`` is given.

    Open/parse failures propagate; the caller decides whether the file is
    skipped.
    """
    path = Path(path).resolve()
    pages = extract_pages(path.read_bytes() if data is None else data)
    LOGGER.debug("Extracted %d pages from %s", len(pages), path)
    return ExtractedDocument(source=path.name, file_path=str(path), pages=pages)


def page_count(data: bytes) -> int:
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        return len(doc)
    finally:
        doc.close()
