"""
Text Extraction
===============

Turns the bytes of a downloaded paper into plain text for classification.

Only the leading pages are read: title, authors and abstract live there, and
it keeps LLM prompts small. `PdfTextExtractor` reads the PDF text layer with
PyPDF2. `OcrFallbackExtractor` wraps it and, for scanned papers without a
text layer, rasterises the same pages with pdf2image and transcribes them
with a vision model.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from io import BytesIO

import structlog
from pdf2image import convert_from_bytes
from PyPDF2 import PdfReader
from PyPDF2.errors import PyPdfError

from .config import Settings
from .ocr import OcrProvider, OpenAIVisionProvider

log = structlog.get_logger(__name__)

DEFAULT_MAX_PAGES = 5


class ExtractionError(Exception):
    """The paper could not be turned into text."""


class TextExtractor(ABC):
    @abstractmethod
    def extract(self, content: bytes) -> str:
        raise NotImplementedError


class PdfTextExtractor(TextExtractor):
    """Extract the text layer of the first ``max_pages`` pages of a PDF."""

    def __init__(self, max_pages: int = DEFAULT_MAX_PAGES):
        self.max_pages = max(1, max_pages)

    def extract(self, content: bytes) -> str:
        try:
            reader = PdfReader(BytesIO(content))
            pages = reader.pages[: self.max_pages]
            parts = []
            for index, page in enumerate(pages, 1):
                try:
                    page_text = page.extract_text() or ""
                except (PyPdfError, KeyError, ValueError) as e:
                    log.warning("Failed to extract page text", page_num=index, error=str(e))
                    continue
                parts.append(page_text)
        except (PyPdfError, ValueError, OSError) as e:
            raise ExtractionError(f"Unreadable PDF: {e}") from e
        return "\n".join(parts).strip()


class OcrFallbackExtractor(TextExtractor):
    """
    Use ``primary`` first and fall back to OCR when it finds no text.
    """

    def __init__(
        self,
        primary: TextExtractor,
        ocr_provider: OcrProvider,
        max_pages: int = DEFAULT_MAX_PAGES,
        dpi: int = 200,
    ):
        self.primary = primary
        self.ocr_provider = ocr_provider
        self.max_pages = max(1, max_pages)
        self.dpi = dpi

    def extract(self, content: bytes) -> str:
        text = self.primary.extract(content)
        if text.strip():
            return text

        log.info("No text layer found; falling back to OCR", max_pages=self.max_pages)
        try:
            images = convert_from_bytes(
                content, dpi=self.dpi, first_page=1, last_page=self.max_pages
            )
        except Exception as e:
            raise ExtractionError(f"Failed to rasterise PDF: {e}") from e

        parts = []
        try:
            for page_num, image in enumerate(images, 1):
                page_text = self.ocr_provider.transcribe_image(image, page_num=page_num)
                if page_text.strip():
                    parts.append(page_text)
        finally:
            for image in images:
                image.close()
        return "\n".join(parts).strip()


def build_extractor(settings: Settings, ocr_provider: OcrProvider | None = None) -> TextExtractor:
    """Build the extractor described by ``settings``."""
    extractor: TextExtractor = PdfTextExtractor(max_pages=settings.MAX_PAGES)
    if settings.OCR_FALLBACK:
        if ocr_provider is None:
            ocr_provider = OpenAIVisionProvider(settings)
        extractor = OcrFallbackExtractor(
            extractor, ocr_provider, max_pages=settings.MAX_PAGES, dpi=settings.OCR_DPI
        )
    return extractor
