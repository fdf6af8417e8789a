from __future__ import annotations

import io

import docx
import fitz  # PyMuPDF
import pytest

from ingestion.errors import ExtractionError
from ingestion.text_processing import (
    DocumentExtractor,
    chunk_text,
    clean_text,
    declared_type_for,
    extract_text,
    process_subtitle_content,
)


def _pdf_bytes(text: str) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    _ = page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


def _docx_bytes(*paragraphs: str) -> bytes:
    document = docx.Document()
    for paragraph in paragraphs:
        _ = document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_declared_type_is_lowercase_extension() -> None:
    assert declared_type_for("/docs/Report.PDF") == "pdf"
    assert declared_type_for("/docs/README") == ""


def test_extract_plain_text_and_markdown() -> None:
    assert extract_text(b"hello   world\r\n", "txt") == "hello world"
    assert extract_text("# Título".encode("utf-8"), "md") == "# Título"


def test_extract_falls_back_to_cp1252() -> None:
    assert extract_text("café".encode("cp1252"), "txt") == "café"


def test_extract_pdf() -> None:
    assert "Hello PDF" in extract_text(_pdf_bytes("Hello PDF"), "pdf")


def test_extract_docx() -> None:
    text = extract_text(_docx_bytes("First paragraph", "Second paragraph"), "docx")
    assert "First paragraph" in text
    assert "Second paragraph" in text


def test_extract_html_strips_scripts() -> None:
    html = b"<html><head><script>var x = 1;</script></head><body><p>Visible</p></body></html>"
    text = extract_text(html, "html")
    assert "Visible" in text
    assert "var x" not in text


def test_extract_csv_joins_fields() -> None:
    text = extract_text(b"name,role\nAda,engineer\n", "csv")
    assert text.splitlines() == ["name | role", "Ada | engineer"]


def test_subtitles_keep_or_drop_timestamps() -> None:
    srt = "1\n00:00:01,000 --> 00:00:02,000\nHello there\n\n2\n00:00:03,000 --> 00:00:04,000\nGeneral Kenobi\n"

    stripped = process_subtitle_content(srt, "srt", remove_timestamps=True)
    kept = process_subtitle_content(srt, "srt", remove_timestamps=False)

    assert stripped == "Hello there\nGeneral Kenobi"
    assert "-->" in kept


def test_vtt_header_is_dropped() -> None:
    vtt = b"WEBVTT\n\n00:00:01.000 --> 00:00:02.000\nLine one\n"
    text = extract_text(vtt, "vtt", remove_subtitle_timestamps=True)
    assert text == "Line one"


def test_unsupported_type_raises() -> None:
    with pytest.raises(ExtractionError):
        _ = extract_text(b"data", "exe")


def test_corrupt_pdf_raises_extraction_error() -> None:
    with pytest.raises(ExtractionError):
        _ = DocumentExtractor().extract(b"not a pdf at all", "pdf")


def test_clean_text_keeps_paragraph_breaks() -> None:
    assert clean_text("a\t\tb\n\n\n\n\n\nc\x00") == "a b\n\n\nc"


def test_fixed_chunks_cover_text_without_overlap() -> None:
    text = "x" * 1000
    chunks = chunk_text(text, size=100, overlap=0, strategy="fixed")
    assert len(chunks) == 10
    assert "".join(chunks) == text


def test_fixed_chunks_with_overlap_stop_at_end() -> None:
    text = "".join(chr(ord("a") + i % 26) for i in range(250))
    chunks = chunk_text(text, size=100, overlap=20, strategy="fixed")
    assert [len(c) for c in chunks] == [100, 100, 90]
    assert chunks[1][:20] == chunks[0][-20:]


def test_recursive_chunks_respect_size_and_are_deterministic() -> None:
    text = "\n\n".join(f"Paragraph {i}. " + "word " * 40 for i in range(12))
    first = chunk_text(text, size=200, overlap=50, strategy="recursive")
    second = chunk_text(text, size=200, overlap=50, strategy="recursive")
    assert first == second
    assert len(first) > 1
    assert all(len(chunk) <= 200 for chunk in first)


def test_blank_text_yields_no_chunks() -> None:
    assert chunk_text("   \n\t ", size=100, overlap=10, strategy="fixed") == []


@pytest.mark.parametrize(
    ("size", "overlap", "strategy"),
    [(0, 0, "fixed"), (100, 100, "fixed"), (100, -1, "fixed"), (100, 10, "sentences")],
)
def test_invalid_chunk_parameters(size: int, overlap: int, strategy: str) -> None:
    with pytest.raises(ValueError):
        _ = chunk_text("some text", size=size, overlap=overlap, strategy=strategy)
