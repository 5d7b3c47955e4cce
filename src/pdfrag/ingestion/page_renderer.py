"""Rasterize PDF pages to a content-addressed PNG cache."""

from __future__ import annotations

import asyncio
import base64
import logging
import shutil
from pathlib import Path
from typing import Callable, Optional

import fitz  # PyMuPDF

from pdfrag.ingestion.pdf_loader import page_count

LOGGER = logging.getLogger(__name__)

ProgressCallback = Optional[Callable[[int, int], None]]


def render_page_png(data: bytes, page_index: int, scale: float) -> bytes:
    """Render one zero-based page of a PDF buffer to PNG bytes.

    Each call opens its own document so pages can render on separate threads.
    """
    doc = fitz.open(stream=data, filetype="pdf")
    try:
        pixmap = doc[page_index].get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
        return pixmap.tobytes("png")
    finally:
        doc.close()


class PageRenderer:
    """Writes ``<images_dir>/<hash_prefix>/page-<n>.png`` for every page."""

    def __init__(self, images_dir: Path, *, scale: float = 1.5, concurrency: int = 3) -> None:
        self.images_dir = Path(images_dir)
        self.scale = scale
        self.concurrency = max(1, concurrency)

    def page_path(self, hash_prefix: str, page_number: int) -> Path:
        return self.images_dir / hash_prefix / f"page-{page_number}.png"

    async def render(
        self, file_path: Path, hash_prefix: str, on_progress: ProgressCallback = None
    ) -> int:
        """Render all pages that are not cached yet; returns the page count.

        Pages are rendered in batches of ``concurrency`` worker threads.
        """
        data = await asyncio.to_thread(Path(file_path).read_bytes)
        total = await asyncio.to_thread(page_count, data)
        out_dir = self.images_dir / hash_prefix
        out_dir.mkdir(parents=True, exist_ok=True)

        done = 0

        async def render_one(page_number: int) -> None:
            nonlocal done
            target = self.page_path(hash_prefix, page_number)
            if not target.exists():
                png = await asyncio.to_thread(render_page_png, data, page_number - 1, self.scale)
                await asyncio.to_thread(target.write_bytes, png)
            done += 1
            if on_progress is not None:
                on_progress(done, total)

        display_errors = fitz.TOOLS.mupdf_display_errors()
        fitz.TOOLS.mupdf_display_errors(False)
        try:
            for start in range(1, total + 1, self.concurrency):
                batch = range(start, min(start + self.concurrency, total + 1))
                await asyncio.gather(*(render_one(page) for page in batch))
        finally:
            fitz.TOOLS.mupdf_display_errors(display_errors)
        return total

    def load_as_data_url(self, hash_prefix: str, page_number: int) -> str | None:
        """Return the cached page as a PNG data URL, or None if it is missing."""
        try:
            payload = self.page_path(hash_prefix, page_number).read_bytes()
        except OSError:
            return None
        return "data:image/png;base64," + base64.b64encode(payload).decode("ascii")

    def remove(self, hash_prefix: str) -> None:
        if not hash_prefix:
            return
        shutil.rmtree(self.images_dir / hash_prefix, ignore_errors=True)
