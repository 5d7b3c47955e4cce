"""Turn retrieved chunks into a citation-annotated context block."""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence, Set, Tuple

from pdfrag.index.manifest import ManifestStore
from pdfrag.ingestion.page_renderer import PageRenderer
from pdfrag.models import PageImage, RagContext, RetrievedChunk, SourceRef

LOGGER = logging.getLogger(__name__)

CONTEXT_HEADER = (
    "\n\n--- Retrieved Context ---\n"
    "Use the following document excerpts to answer the user's question. "
    "Cite your sources using the [Source: file, Page N] labels when referencing "
    "specific information.\n\n"
)


def citation(source: str, page: int) -> str:
    return f"[Source: {source}, Page {page}]"


def build_context(chunks: Sequence[RetrievedChunk]) -> RagContext | None:
    """Format chunks for the downstream model; None when there is nothing to add."""
    if not chunks:
        return None

    parts = [f"{citation(c.metadata.source, c.metadata.page)}\n{c.text}" for c in chunks]
    text_block = CONTEXT_HEADER + "\n\n".join(parts)

    # Insertion order keeps sources ranked by their best chunk.
    grouped: Dict[str, Tuple[Set[int], str]] = {}
    for chunk in chunks:
        pages, _ = grouped.setdefault(chunk.metadata.source, (set(), chunk.metadata.file_path))
        pages.add(chunk.metadata.page)

    sources = [
        SourceRef(source=source, pages=sorted(pages), file_path=file_path)
        for source, (pages, file_path) in grouped.items()
    ]
    return RagContext(text_block=text_block, sources=sources)


def load_page_images(
    sources: Sequence[SourceRef],
    manifest: ManifestStore,
    renderer: PageRenderer,
    *,
    max_images: int = 4,
) -> List[PageImage]:
    """Resolve cached page renders for cited pages, up to ``max_images``."""
    images: List[PageImage] = []
    seen: Set[Tuple[str, int]] = set()

    for ref in sources:
        if len(images) >= max_images:
            break
        entry = manifest.get(ref.file_path)
        if entry is None or not entry.image_hash_prefix:
            continue

        for page in ref.pages:
            key = (ref.file_path, page)
            if key in seen:
                continue
            seen.add(key)
            if len(images) >= max_images:
                break

            data_url = renderer.load_as_data_url(entry.image_hash_prefix, page)
            if data_url is None:
                LOGGER.debug("No cached image for %s page %d", ref.source, page)
                continue
            images.append(PageImage(source=ref.source, page=page, data_url=data_url))

    return images


def format_sources(sources: Sequence[SourceRef]) -> str:
    """One-line summary, e.g. ``a.pdf p.1, p.3 | b.pdf p.2``."""
    return " | ".join(
        f"{ref.source} " + ", ".join(f"p.{page}" for page in ref.pages) for ref in sources
    )
