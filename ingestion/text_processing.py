"""Utilities for extracting and chunking document text ahead of embedding.

The bulk pipeline consumes PDFs first and foremost, plus the office, web and
subtitle formats operators tend to drop into the same folders. Extraction is a
pure function of ``(bytes, declared type)``; chunking is a pure function of
``(text, size, overlap, strategy)``. Chunk boundaries must be reproducible
because vector ids are derived from the chunk position, so nothing in here may
depend on ordering of sets, time, or randomness.
"""

import csv
import io
import logging
import re
from pathlib import Path

import docx
import fitz  # PyMuPDF
from bs4 import BeautifulSoup
from langchain_text_splitters import RecursiveCharacterTextSplitter

import config
from ingestion.errors import ExtractionError

logger = logging.getLogger(__name__)

SUPPORTED_TYPES: frozenset[str] = frozenset(
    {"pdf", "docx", "txt", "md", "csv", "html", "htm", "vtt", "srt"}
)

# Coarse-to-fine so sections, then paragraphs, then sentences stay together.
RECURSIVE_SEPARATORS: list[str] = [
    "\n\n\n",
    "\n\n",
    "\n",
    ". ",
    "! ",
    "? ",
    "; ",
    ", ",
    " ",
    "",
]

_VTT_CUE_TIMING = re.compile(r"^\d{2}:\d{2}:\d{2}\.\d{3}")
_SRT_CUE_TIMING = re.compile(r"^\d{2}:\d{2}:\d{2},\d{3}")
_SEQUENCE_NUMBER = re.compile(r"^\d+$")
_HORIZONTAL_WS = re.compile(r"[ \t\f\v]+")
_EXCESS_NEWLINES = re.compile(r"\n{4,}")


def declared_type_for(path: str) -> str:
    """Map a file path to the declared type handed to the extractor."""
    return Path(path).suffix.lower().lstrip(".")


def clean_text(value: str) -> str:
    """Normalize whitespace without destroying the paragraph structure the splitter relies on."""
    value = value.replace("\x00", "").replace("\r\n", "\n").replace("\r", "\n")
    lines = [_HORIZONTAL_WS.sub(" ", line).strip() for line in value.split("\n")]
    return _EXCESS_NEWLINES.sub("\n\n\n", "\n".join(lines)).strip()


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("Input is not UTF-8, decoding as cp1252")
        return data.decode("cp1252", errors="replace")


def process_subtitle_content(
    content: str, subtitle_type: str, remove_timestamps: bool
) -> str:
    """Flatten VTT/SRT subtitles into text, optionally dropping cue timings."""
    cue_timing = _VTT_CUE_TIMING if subtitle_type == "vtt" else _SRT_CUE_TIMING
    kept: list[str] = []
    for raw_line in content.split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        if subtitle_type == "vtt" and line.startswith("WEBVTT"):
            continue
        if remove_timestamps and (
            "-->" in line
            or _SEQUENCE_NUMBER.match(line)
            or cue_timing.match(line)
        ):
            continue
        kept.append(line)
    return "\n".join(kept)


def _csv_to_text(content: str) -> str:
    """Render CSV rows as ``field | field | field`` lines."""
    rows: list[str] = []
    for fields in csv.reader(io.StringIO(content)):
        cleaned = [field.strip() for field in fields]
        if any(cleaned):
            rows.append(" | ".join(cleaned))
    return "\n".join(rows)


def _html_to_text(data: bytes) -> str:
    """Convert HTML to text, stripping scripts/styles for clean chunks."""
    soup = BeautifulSoup(data, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        _ = tag.extract()
    return soup.get_text(separator="\n")


def _docx_to_text(data: bytes) -> str:
    document = docx.Document(io.BytesIO(data))
    parts = [paragraph.text for paragraph in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                parts.append(" | ".join(cells))
    return "\n".join(parts)


def _pdf_to_text(data: bytes) -> str:
    """Iterate pages and extract text, tolerating per-page failures."""
    pages: list[str] = []
    with fitz.open(stream=data, filetype="pdf") as doc:
        if doc.needs_pass:
            raise ExtractionError("PDF is password protected")
        for page_number, page in enumerate(doc, start=1):
            try:
                pages.append(page.get_text("text") or "")
            except (RuntimeError, ValueError) as exc:
                logger.error(
                    f"⚠️ Error extracting PDF page {page_number}: {type(exc).__name__}: {exc}"
                )
                logger.debug("Full traceback:", exc_info=True)
                continue
    return "\n\n".join(pages)


def extract_text(
    data: bytes,
    declared_type: str,
    *,
    remove_subtitle_timestamps: bool = False,
) -> str:
    """Extract text from raw bytes of a supported document type.

    Raises:
        ExtractionError: for unsupported types and for content the parser rejects.
    """
    kind = declared_type.lower().lstrip(".")
    if kind not in SUPPORTED_TYPES:
        raise ExtractionError(f"Unsupported file type: {declared_type or '<none>'}")

    try:
        if kind == "pdf":
            raw = _pdf_to_text(data)
        elif kind == "docx":
            raw = _docx_to_text(data)
        elif kind in {"html", "htm"}:
            raw = _html_to_text(data)
        elif kind == "csv":
            raw = _csv_to_text(_decode(data))
        elif kind in {"vtt", "srt"}:
            raw = process_subtitle_content(
                _decode(data).replace("\r\n", "\n"), kind, remove_subtitle_timestamps
            )
        else:
            raw = _decode(data)
    except ExtractionError:
        raise
    except Exception as exc:
        # Parser libraries raise a wide variety of types for corrupt input
        # (fitz.FileDataError, zipfile.BadZipFile, KeyError, csv.Error, ...).
        raise ExtractionError(
            f"Cannot parse {kind.upper()} content: {type(exc).__name__}: {exc}"
        ) from exc

    return clean_text(raw)


class DocumentExtractor:
    """High-level text extraction facade handed to the worker pool."""

    def __init__(self, *, remove_subtitle_timestamps: bool | None = None) -> None:
        super().__init__()
        if remove_subtitle_timestamps is None:
            remove_subtitle_timestamps = config.REMOVE_SUBTITLE_TIMESTAMPS
        self._remove_subtitle_timestamps = remove_subtitle_timestamps

    def extract(self, data: bytes, declared_type: str) -> str:
        return extract_text(
            data,
            declared_type,
            remove_subtitle_timestamps=self._remove_subtitle_timestamps,
        )


def _sliding_window(text: str, size: int, overlap: int) -> list[str]:
    chunks: list[str] = []
    step = size - overlap
    for start in range(0, len(text), step):
        chunks.append(text[start : start + size])
        # A further window would only repeat the tail of this one.
        if start + size >= len(text):
            break
    return chunks


def chunk_text(
    text: str,
    *,
    size: int | None = None,
    overlap: int | None = None,
    strategy: str | None = None,
) -> list[str]:
    """Split text into overlapping character windows.

    ``recursive`` prefers natural boundaries (sections, paragraphs, sentences)
    and falls back to characters; ``fixed`` is a plain sliding window. Both are
    deterministic for identical input and parameters.
    """
    if size is None:
        size = config.CHUNK_SIZE
    if overlap is None:
        overlap = config.CHUNK_OVERLAP
    if strategy is None:
        strategy = config.CHUNK_STRATEGY

    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    if overlap < 0 or overlap >= size:
        raise ValueError(
            f"chunk overlap must be in [0, {size}), got {overlap}"
        )

    text = text.strip()
    if not text:
        return []

    if strategy == "fixed":
        return _sliding_window(text, size, overlap)

    if strategy == "recursive":
        splitter = RecursiveCharacterTextSplitter(
            chunk_size=size,
            chunk_overlap=overlap,
            length_function=len,
            separators=RECURSIVE_SEPARATORS,
        )
        return [chunk for chunk in splitter.split_text(text) if chunk.strip()]

    raise ValueError(f"Unknown chunk strategy: {strategy}")


__all__ = [
    "DocumentExtractor",
    "RECURSIVE_SEPARATORS",
    "SUPPORTED_TYPES",
    "chunk_text",
    "clean_text",
    "declared_type_for",
    "extract_text",
    "process_subtitle_content",
]
