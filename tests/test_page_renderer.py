"""Tests for the page-image cache."""

from __future__ import annotations

import base64
from pathlib import Path
from unittest.mock import patch

import pytest

from pdfrag.ingestion import page_renderer
from pdfrag.ingestion.page_renderer import PageRenderer

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


@pytest.fixture
def renderer(tmp_path: Path) -> PageRenderer:
    return PageRenderer(tmp_path / "images", scale=0.5, concurrency=2)


class TestRender:
    """Test PageRenderer.render."""

    async def test_renders_every_page(self, tmp_path: Path, renderer: PageRenderer, make_pdf) -> None:
        """Test a PNG is written for every page."""
        pdf = make_pdf("doc.pdf", ["one", "two", "three"])
        progress: list[tuple[int, int]] = []

        total = await renderer.render(pdf, "abc123", on_progress=lambda d, t: progress.append((d, t)))

        assert total == 3
        for page in (1, 2, 3):
            path = renderer.page_path("abc123", page)
            assert path == tmp_path / "images" / "abc123" / f"page-{page}.png"
            assert path.read_bytes().startswith(PNG_MAGIC)
        assert progress[-1] == (3, 3)
        assert [done for done, _ in progress] == [1, 2, 3]

    async def test_existing_pages_skipped(self, tmp_path: Path, renderer: PageRenderer, make_pdf) -> None:
        """Test cached pages are not rendered again."""
        pdf = make_pdf("doc.pdf", ["one", "two"])
        existing = renderer.page_path("key", 1)
        existing.parent.mkdir(parents=True)
        existing.write_bytes(b"cached")

        with patch.object(
            page_renderer, "render_page_png", wraps=page_renderer.render_page_png
        ) as mock_render:
            await renderer.render(pdf, "key")

        assert existing.read_bytes() == b"cached"
        assert mock_render.call_count == 1
        assert mock_render.call_args[0][1] == 1
        assert renderer.page_path("key", 2).exists()

    async def test_second_render_is_noop(self, tmp_path: Path, renderer: PageRenderer, make_pdf) -> None:
        """Test rendering twice leaves files unchanged."""
        pdf = make_pdf("doc.pdf", ["one"])
        await renderer.render(pdf, "key")

        with patch.object(page_renderer, "render_page_png") as mock_render:
            await renderer.render(pdf, "key")

        mock_render.assert_not_called()

    async def test_invalid_pdf_raises(self, tmp_path: Path, renderer: PageRenderer) -> None:
        """Test rendering an invalid PDF raises."""
        bad = tmp_path / "bad.pdf"
        bad.write_bytes(b"nope")

        with pytest.raises(Exception):
            await renderer.render(bad, "key")


class TestLoadAsDataUrl:
    """Test PageRenderer.load_as_data_url."""

    def test_missing_image_is_none(self, renderer: PageRenderer) -> None:
        """Test missing images return None."""
        assert renderer.load_as_data_url("missing", 1) is None

    def test_encodes_png(self, renderer: PageRenderer) -> None:
        """Test images are returned as PNG data URLs."""
        path = renderer.page_path("key", 2)
        path.parent.mkdir(parents=True)
        path.write_bytes(PNG_MAGIC + b"data")

        url = renderer.load_as_data_url("key", 2)

        assert url is not None
        assert url.startswith("data:image/png;base64,")
        assert base64.b64decode(url.split(",", 1)[1]) == PNG_MAGIC + b"data"


class TestRemove:
    """Test PageRenderer.remove."""

    def test_removes_directory(self, renderer: PageRenderer) -> None:
        """Test removing a rendered document."""
        path = renderer.page_path("key", 1)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"x")

        renderer.remove("key")

        assert not path.parent.exists()

    def test_empty_key_is_ignored(self, renderer: PageRenderer) -> None:
        """Test an empty key removes nothing."""
        renderer.images_dir.mkdir(parents=True)
        renderer.remove("")
        assert renderer.images_dir.exists()
