"""Turn uploaded documents into plain text.

One extractor per format, picked from a dispatch table by MIME type or file
extension. Extraction is all-or-nothing: any parser failure raises
ExtractionError and no partial text is returned.
"""
import asyncio
import io
import logging
import os
from typing import Optional, Protocol

import docx
import fitz  # PyMuPDF
from pptx import Presentation
from pptx.oxml.ns import qn

from study_helper.exceptions import ExtractionError, UnsupportedFormatError

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PPTX_MIME = "application/vnd.openxmlformats-officedocument.presentationml.presentation"


class TextExtractor(Protocol):
    def extract(self, data: bytes) -> str:
        ...


class PlainTextExtractor:
    """UTF-8 text, with or without a byte order mark."""

    def extract(self, data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise UnsupportedFormatError("File is not UTF-8 text") from e


class PdfExtractor:
    """Text of every page, one page per line block."""

    def extract(self, data: bytes) -> str:
        parts = []
        with fitz.open(stream=data, filetype="pdf") as doc:
            for page in doc:
                parts.append((page.get_text("text") or "").strip() + "\n")
        return "".join(parts)


class DocxExtractor:
    """Raw paragraph text of a Word document."""

    def extract(self, data: bytes) -> str:
        document = docx.Document(io.BytesIO(data))
        return "\n".join(p.text for p in document.paragraphs)


class PptxExtractor:
    """Text nodes of each slide's XML, slides in presentation order."""

    def extract(self, data: bytes) -> str:
        presentation = Presentation(io.BytesIO(data))
        parts = []
        for slide in presentation.slides:
            slide_text = " ".join(node.text or "" for node in slide.element.iter(qn("a:t")))
            if slide_text.strip():
                parts.append(f"--- Slide ---\n{slide_text.strip()}\n\n")
        return "".join(parts)


_PLAIN = PlainTextExtractor()

EXTRACTORS_BY_MIME: dict[str, TextExtractor] = {
    PDF_MIME: PdfExtractor(),
    DOCX_MIME: DocxExtractor(),
    PPTX_MIME: PptxExtractor(),
}

EXTRACTORS_BY_EXTENSION: dict[str, TextExtractor] = {
    ".pdf": EXTRACTORS_BY_MIME[PDF_MIME],
    ".docx": EXTRACTORS_BY_MIME[DOCX_MIME],
    ".pptx": EXTRACTORS_BY_MIME[PPTX_MIME],
    ".txt": _PLAIN,
    ".md": _PLAIN,
    ".csv": _PLAIN,
}


def select_extractor(filename: Optional[str], mime_type: Optional[str]) -> TextExtractor:
    """Pick an extractor by MIME type first, then by extension; plain text otherwise."""
    if mime_type in EXTRACTORS_BY_MIME:
        return EXTRACTORS_BY_MIME[mime_type]
    ext = os.path.splitext(filename or "")[1].lower()
    return EXTRACTORS_BY_EXTENSION.get(ext, _PLAIN)


def extract_text_sync(data: bytes, filename: Optional[str] = None, mime_type: Optional[str] = None) -> str:
    extractor = select_extractor(filename, mime_type)
    try:
        return extractor.extract(data)
    except ExtractionError:
        raise
    except Exception as e:
        logger.error("Failed to parse %s (%s): %s", filename, mime_type, e)
        raise ExtractionError(f"Failed to parse document: {e}") from e


async def extract_text(data: bytes, filename: Optional[str] = None, mime_type: Optional[str] = None) -> str:
    """Extract text without blocking the event loop.

    Raises:
        UnsupportedFormatError: Unknown format that is not UTF-8 text
        ExtractionError: Parser failed on the document
    """
    return await asyncio.to_thread(extract_text_sync, data, filename, mime_type)
