"""Unit tests for format detection, text extraction and file-name metadata."""
import io

import docx
import pytest

from kb_assistant.core.exceptions import UnsupportedFormatError
from kb_assistant.features.knowledge.chunker import TextChunker
from kb_assistant.features.knowledge.extraction import (
    DOCX_MIME,
    GOOGLE_DOC_MIME,
    extract_docx_text,
    extract_text_from_bytes,
    is_supported_file,
    metadata_from_file_name,
    part_title,
    sanitize_text,
)


def _docx_bytes() -> bytes:
    document = docx.Document()
    document.add_paragraph("Тема: Дроби")
    document.add_paragraph("")
    document.add_paragraph("Сравнение дробей с разными знаменателями.")
    table = document.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Урок 1"
    table.rows[0].cells[1].text = "Понятие дроби"
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.mark.parametrize("mime_type, name, expected", [
    (GOOGLE_DOC_MIME, "План", True),
    (DOCX_MIME, "plan", True),
    ("text/plain", "notes", True),
    ("text/markdown", "notes", True),
    ("application/octet-stream", "notes.MD", True),
    ("", "program.markdown", True),
    ("application/pdf", "book.pdf", False),
    ("image/png", "scheme.png", False),
])
def test_is_supported_file(mime_type, name, expected):
    assert is_supported_file(mime_type, name) is expected


def test_docx_paragraphs_and_tables_are_extracted():
    text = extract_text_from_bytes(_docx_bytes(), "Урок.docx")

    assert "Тема: Дроби" in text
    assert "Сравнение дробей с разными знаменателями." in text
    assert "Урок 1 | Понятие дроби" in text
    assert "\n\n\n\n" not in text, "Empty paragraphs are skipped"


def test_invalid_docx_raises_value_error():
    with pytest.raises(ValueError):
        extract_docx_text(b"not a zip archive")


def test_plain_text_is_decoded_without_bom_and_control_chars():
    raw = "\ufeffПлан урока\x00\x07\nЦели".encode("utf-8")

    assert extract_text_from_bytes(raw, "plan.txt", "text/plain") == "План урока\nЦели"


def test_unsupported_format_raises():
    with pytest.raises(UnsupportedFormatError) as exc:
        extract_text_from_bytes(b"%PDF-1.4", "book.pdf", "application/pdf")
    assert exc.value.file_name == "book.pdf"


def test_sanitize_keeps_tabs_and_newlines():
    assert sanitize_text("a\tb\nc\x0bd") == "a\tb\ncd"


@pytest.mark.parametrize("name, expected", [
    ("Математика - 5 класс - Дроби.docx",
     {"title": "Дроби", "subject": "Математика", "grade": "5 класс"}),
    ("История - Древний Египет.md",
     {"title": "Древний Египет", "subject": "История", "grade": None}),
    ("Заметки учителя.txt",
     {"title": "Заметки учителя", "subject": None, "grade": None}),
    ("Физика - 7 класс - Сила",
     {"title": "Сила", "subject": "Физика", "grade": "7 класс"}),
])
def test_metadata_from_file_name(name, expected):
    assert metadata_from_file_name(name) == expected


def test_part_title_only_for_multi_chunk_documents():
    assert part_title("Дроби", 0, 1) == "Дроби"
    assert part_title("Дроби", 1, 3) == "Дроби (часть 2/3)"
    assert part_title(None, 0, 3) is None


def test_crlf_text_keeps_its_heading_structure():
    lesson = (
        "Цели урока:\n"
        "Научиться сравнивать дроби с разными знаменателями.\n"
        "\n"
        "Ход урока:\n"
        "Повторение, объяснение нового материала, самостоятельная работа.\n"
    )
    crlf = ("\ufeff" + lesson.replace("\n", "\r\n")).encode("utf-8")
    chunker = TextChunker(max_size=3000, overlap=300, min_size=10)

    text = extract_text_from_bytes(crlf, "plan.txt", "text/plain")

    assert "\r" not in text and not text.startswith("\ufeff")
    assert text == lesson
    assert chunker.split_sections(text) == chunker.split_sections(lesson)
    assert len(chunker.split_sections(text)) == 2


def test_sanitize_normalizes_lone_carriage_returns():
    assert sanitize_text("\ufeffa\rb\r\n\r\nc") == "a\nb\n\nc"
