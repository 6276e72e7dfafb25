"""
Knowledge feature: File format detection and text extraction.
"""

import io
import logging
import re

import docx

from kb_assistant.core.exceptions import UnsupportedFormatError

logger = logging.getLogger(__name__)

GOOGLE_DOC_MIME = "application/vnd.google-apps.document"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

SUPPORTED_MIME_TYPES = {
    GOOGLE_DOC_MIME,
    DOCX_MIME,
    "text/plain",
    "text/markdown",
}
SUPPORTED_EXTENSIONS = (".txt", ".md", ".markdown", ".docx")

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_NAME_EXTENSION = re.compile(r"\.(txt|md|markdown|doc|docx|pdf|gdoc)$", re.IGNORECASE)


def is_supported_file(mime_type: str, file_name: str) -> bool:
    """Classify by MIME type first, then by file extension."""
    if mime_type in SUPPORTED_MIME_TYPES:
        return True
    return file_name.lower().endswith(SUPPORTED_EXTENSIONS)


def is_docx(mime_type: str, file_name: str) -> bool:
    return mime_type == DOCX_MIME or file_name.lower().endswith(".docx")


def sanitize_text(text: str) -> str:
    """Normalize line endings, strip a leading BOM and drop control characters.

    Tabs and newlines are kept.
    """
    text = text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    return _CONTROL_CHARS.sub("", text)


def extract_docx_text(file_bytes: bytes) -> str:
    """Extract paragraph and table text from a .docx file."""
    try:
        document = docx.Document(io.BytesIO(file_bytes))
    except Exception as e:
        logger.error(f"❌ Could not parse DOCX: {e}")
        raise ValueError(f"Invalid DOCX file: {e}") from e

    parts = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))
    return sanitize_text("\n\n".join(parts))


def decode_text(file_bytes: bytes) -> str:
    return sanitize_text(file_bytes.decode("utf-8", errors="replace"))


def extract_text_from_bytes(file_bytes: bytes, file_name: str, mime_type: str = "") -> str:
    """Turn downloaded file bytes into plain text.

    Raises:
        UnsupportedFormatError: The format has no text extractor.
    """
    if is_docx(mime_type, file_name):
        return extract_docx_text(file_bytes)
    if is_supported_file(mime_type, file_name):
        return decode_text(file_bytes)
    raise UnsupportedFormatError(file_name, mime_type)


def metadata_from_file_name(file_name: str) -> dict:
    """Parse the "Subject - Grade - Topic.ext" naming convention.

    "Математика - 5 класс - Дроби.docx" -> title "Дроби", subject
    "Математика", grade "5 класс". A bare name becomes just the title.
    """
    parts = [p.strip() for p in _NAME_EXTENSION.sub("", file_name).split(" - ")]
    return {
        "title": parts[-1] or file_name,
        "subject": parts[0] if len(parts) > 1 else None,
        "grade": parts[1] if len(parts) > 2 else None,
    }


def part_title(title: str | None, index: int, total: int) -> str | None:
    """Suffix a chunk title with "(часть i/n)" (part i of n) for multi-chunk documents."""
    if not title or total <= 1:
        return title
    return f"{title} (часть {index + 1}/{total})"
