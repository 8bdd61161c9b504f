"""
Plain-text extraction for uploaded curriculum documents.

Supports PDF (PyPDF2), DOCX (python-docx) and plain text. Every decoding
failure surfaces as MalformedDocumentError; unknown media types surface as
UnsupportedTypeError before any decoder runs.
"""

from __future__ import annotations

import io
import logging
import re
from typing import Callable, Dict, List

import PyPDF2
from docx import Document

from alignment_api.errors import MalformedDocumentError, UnsupportedTypeError

logger = logging.getLogger(__name__)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PLAIN_TEXT = "text/plain"
MARKDOWN = "text/markdown"


def normalize_media_type(media_type: str) -> str:
    """Strip parameters such as ``; charset=utf-8`` and lowercase."""
    return (media_type or "").split(";", 1)[0].strip().lower()


def _normalize_pdf_text(text: str) -> str:
    lines: List[str] = []
    for line in text.splitlines():
        cleaned = " ".join(line.split())
        if cleaned:
            lines.append(cleaned)
    return "\n".join(lines)


def _decode_pdf(data: bytes) -> str:
    reader = PyPDF2.PdfReader(io.BytesIO(data))
    pages: List[str] = []
    for page in reader.pages:
        normalized = _normalize_pdf_text(page.extract_text() or "")
        if normalized:
            pages.append(normalized)
    return "\n\n".join(pages)


def _decode_docx(data: bytes) -> str:
    doc = Document(io.BytesIO(data))
    sections: List[str] = []
    for paragraph in doc.paragraphs:
        text = paragraph.text.strip()
        if text:
            sections.append(text)

    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                sections.append(" | ".join(cells))

    return "\n".join(sections)


def _decode_plain_text(data: bytes) -> str:
    text = data.decode("utf-8-sig", errors="replace")
    return re.sub(r"\n{3,}", "\n\n", text.replace("\r\n", "\n")).strip()


DECODERS: Dict[str, Callable[[bytes], str]] = {
    PDF: _decode_pdf,
    DOCX: _decode_docx,
    PLAIN_TEXT: _decode_plain_text,
    MARKDOWN: _decode_plain_text,
}


def is_supported(media_type: str) -> bool:
    return normalize_media_type(media_type) in DECODERS


def extract_text(data: bytes, media_type: str) -> str:
    """Convert a raw document buffer to plain text."""
    normalized = normalize_media_type(media_type)
    decoder = DECODERS.get(normalized)
    if decoder is None:
        raise UnsupportedTypeError(media_type)

    if not data:
        return ""

    try:
        text = decoder(data)
    except Exception as exc:
        logger.warning("Decoder for %s failed: %s", normalized, exc)
        raise MalformedDocumentError(normalized, str(exc)) from exc

    logger.info("Extracted %d characters from %s document (%d bytes)", len(text), normalized, len(data))
    return text
