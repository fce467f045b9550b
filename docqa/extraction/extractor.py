"""
Text Extractor
---------------
Turns the raw bytes of one uploaded file into plain text, dispatching on the
detected DocumentType:

  pdf    -- pypdf, page by page.  Each page is prefixed with "Page <n>:" so the
            chunker can recover page boundaries.  A page that fails to parse is
            replaced by a placeholder and extraction carries on.
  docx   -- docx2txt raw text, no page concept.
  image  -- Tesseract OCR (pytesseract + Pillow), frame by frame, with a progress
            update before and after each frame.
  text   -- bytes decoded as UTF-8.

All parsing libraries are synchronous; they run in the default thread-pool
executor so the event loop keeps serving other tasks.
"""
from __future__ import annotations

import asyncio
import io
import math
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional

import docx2txt
import pytesseract
from loguru import logger
from PIL import Image, ImageSequence
from pypdf import PdfReader

from docqa.schemas import DocumentType, ProgressCallback, ProgressStatus


# ── Constants ─────────────────────────────────────────────────────────────────

PAGE_ERROR_PLACEHOLDER = "[Error extracting text from this page]"
NO_PDF_TEXT_SENTINEL = (
    "[No text could be extracted from this PDF. "
    "It may be scanned or contain only images.]"
)
DEFAULT_OCR_LANGUAGE = "eng"

PDF_PROGRESS_SPAN = 40       # PDF pages report 0..40
OCR_PROGRESS_START = 20      # OCR reports 20..40
OCR_PROGRESS_SPAN = 20

_EXTENSION_TYPES: dict[str, DocumentType] = {
    ".pdf": DocumentType.PDF,
    ".docx": DocumentType.DOCX,
    ".doc": DocumentType.DOCX,
    ".jpg": DocumentType.IMAGE,
    ".jpeg": DocumentType.IMAGE,
    ".png": DocumentType.IMAGE,
    ".gif": DocumentType.IMAGE,
    ".bmp": DocumentType.IMAGE,
    ".tiff": DocumentType.IMAGE,
    ".tif": DocumentType.IMAGE,
}


class ExtractionError(Exception):
    """Unrecoverable failure for one file (corrupt PDF, unreadable archive, OCR crash)."""


@dataclass
class ExtractedText:
    content: str        # Text handed to the chunker (page markers kept for PDFs)
    raw_content: str    # Plain text without markers


def detect_document_type(filename: str) -> DocumentType:
    """Map a filename to a DocumentType by extension; unknown extensions are text."""
    return _EXTENSION_TYPES.get(PurePath(filename).suffix.lower(), DocumentType.TEXT)


class TextExtractor:
    """
    Extracts text from uploaded file bytes and reports progress milestones.

    Usage:
        extractor = TextExtractor(progress=print)
        result = await extractor.extract(data, DocumentType.PDF, name="report.pdf")
    """

    def __init__(
        self,
        ocr_language: str = DEFAULT_OCR_LANGUAGE,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.ocr_language = ocr_language
        self.progress = progress

    async def extract(self, data: bytes, kind: DocumentType, name: str = "") -> ExtractedText:
        """
        Extract text from one file.

        Raises:
            ExtractionError: the file cannot be read at all.
        """
        logger.debug(f"[Extractor] {name or '<unnamed>'} | {kind.value} | {len(data):,} bytes")

        if kind == DocumentType.PDF:
            return await self._extract_pdf(data, name)
        if kind == DocumentType.DOCX:
            text = await self._extract_docx(data, name)
        elif kind == DocumentType.IMAGE:
            text = await self._extract_image(data, name)
        else:
            text = data.decode("utf-8", errors="replace")
        return ExtractedText(content=text, raw_content=text)

    # --- PDF ------------------------------------------------------------------

    async def _extract_pdf(self, data: bytes, name: str) -> ExtractedText:
        loop = asyncio.get_running_loop()
        try:
            reader = await loop.run_in_executor(None, lambda: PdfReader(io.BytesIO(data)))
            total = len(reader.pages)
        except Exception as exc:
            raise ExtractionError(f"Could not open PDF {name}: {exc}") from exc

        page_blocks: list[str] = []
        raw_pages: list[str] = []
        pages_with_text = 0

        for number in range(1, total + 1):
            self._report(
                math.floor(number / total * PDF_PROGRESS_SPAN),
                f"Extracting text from PDF page {number} of {total}...",
            )
            try:
                raw = await loop.run_in_executor(None, reader.pages[number - 1].extract_text)
            except Exception as exc:
                logger.warning(f"[Extractor] {name} page {number} failed: {exc}")
                page_blocks.append(f"Page {number}:\n{PAGE_ERROR_PLACEHOLDER}\n\n")
                continue

            page_text = " ".join((raw or "").split())
            if page_text:
                pages_with_text += 1
            page_blocks.append(f"Page {number}:\n{page_text}\n\n")
            raw_pages.append(page_text)

        if pages_with_text == 0:
            logger.warning(f"[Extractor] {name}: no extractable text in {total} page(s)")
            return ExtractedText(content=NO_PDF_TEXT_SENTINEL, raw_content="")

        logger.info(f"[Extractor] {name}: {pages_with_text}/{total} page(s) with text")
        return ExtractedText(content="".join(page_blocks), raw_content="\n".join(raw_pages))

    # --- DOCX -----------------------------------------------------------------

    async def _extract_docx(self, data: bytes, name: str) -> str:
        loop = asyncio.get_running_loop()
        try:
            text = await loop.run_in_executor(None, docx2txt.process, io.BytesIO(data))
        except Exception as exc:
            raise ExtractionError(f"Could not read Word document {name}: {exc}") from exc
        return text or ""

    # --- Image (OCR) ----------------------------------------------------------

    async def _extract_image(self, data: bytes, name: str) -> str:
        self._report(OCR_PROGRESS_START, f"Performing OCR on image {name}...")
        loop = asyncio.get_running_loop()

        try:
            image = Image.open(io.BytesIO(data))
            frames = [frame.copy() for frame in ImageSequence.Iterator(image)]
        except Exception as exc:
            raise ExtractionError(f"Could not decode image {name}: {exc}") from exc

        texts: list[str] = []
        for index, frame in enumerate(frames, start=1):
            self._report(
                OCR_PROGRESS_START + math.floor((index - 0.5) / len(frames) * OCR_PROGRESS_SPAN),
                f"Recognizing text in frame {index} of {len(frames)}...",
            )
            try:
                text = await loop.run_in_executor(
                    None,
                    lambda f=frame: pytesseract.image_to_string(f, lang=self.ocr_language),
                )
            except Exception as exc:
                raise ExtractionError(f"OCR failed for {name}: {exc}") from exc
            texts.append(text.strip())

            fraction = index / len(frames)
            self._report(
                OCR_PROGRESS_START + math.floor(fraction * OCR_PROGRESS_SPAN),
                f"OCR progress: {math.floor(fraction * 100)}%",
            )

        return "\n\n".join(t for t in texts if t)

    # --- Progress -------------------------------------------------------------

    def _report(self, progress: int, message: str) -> None:
        if self.progress is not None:
            self.progress(ProgressStatus(is_processing=True, progress=progress, message=message))
