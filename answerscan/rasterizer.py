"""
Page Rasterizer
===============
Renders PDF pages to image files using PyMuPDF (fitz), one page at a time.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".tif", ".tiff"}


def is_image_file(path: str) -> bool:
    return Path(path).suffix.lower() in IMAGE_SUFFIXES


class PdfRasterizer:
    """Page count and per-page rendering for PDF documents (1-indexed)."""

    def __init__(self, dpi: int = 200, image_format: str = "png"):
        self.dpi = dpi
        self.image_format = image_format

    def page_count(self, pdf_path: str) -> int:
        """
        Get total number of pages in the PDF.

        Raises:
            FileNotFoundError: If the PDF doesn't exist.
            RuntimeError: If the PDF cannot be opened or has no pages.
        """
        if not os.path.exists(pdf_path):
            raise FileNotFoundError(f"PDF not found: {pdf_path}")

        try:
            with fitz.open(pdf_path) as doc:
                count = doc.page_count
        except RuntimeError as e:
            raise RuntimeError(f"Cannot open PDF {pdf_path}: {e}") from e

        if count < 1:
            raise RuntimeError(f"PDF has no pages: {pdf_path}")
        return count

    def rasterize_page(self, pdf_path: str, page_number: int, output_path: Path) -> Path:
        """Render one page to `output_path` and return it."""
        if page_number < 1:
            raise ValueError(f"Page numbers are 1-indexed, got {page_number}")

        with fitz.open(pdf_path) as doc:
            if page_number > doc.page_count:
                raise IndexError(
                    f"Page {page_number} out of range (document has "
                    f"{doc.page_count} pages)"
                )
            pixmap = doc[page_number - 1].get_pixmap(dpi=self.dpi)
            pixmap.save(str(output_path))

        logger.debug(
            f"Rendered page {page_number} at {self.dpi} dpi: {output_path}"
        )
        return Path(output_path)
