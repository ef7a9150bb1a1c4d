from __future__ import annotations

from io import BytesIO
import re
from pathlib import PurePosixPath

from bulk_grader.domain.dto import ExtractionResult
from bulk_grader.domain.errors import ExtractionParseError, UnsupportedFormatError

SUPPORTED_FORMATS: tuple[str, ...] = (".txt", ".md", ".docx", ".pdf")


def extension_from_filename(*, filename: str) -> str:
    suffix = PurePosixPath(filename).suffix.lower()
    if suffix in SUPPORTED_FORMATS:
        return suffix
    raise UnsupportedFormatError(f"unsupported extension: {suffix or '<none>'}")


def parse_payload_to_text(*, extension: str, payload: bytes) -> str:
    try:
        if extension in (".txt", ".md"):
            return _parse_text(payload)
        if extension == ".docx":
            return _parse_docx(payload)
        if extension == ".pdf":
            return _parse_pdf(payload)
    except UnsupportedFormatError:
        raise
    except Exception as exc:
        raise ExtractionParseError(str(exc)) from exc

    raise UnsupportedFormatError(f"unsupported extension: {extension}")


def clean_text(*, text: str) -> str:
    cleaned = text.replace("\x00", " ")
    cleaned = re.sub(r"\r\n?", "\n", cleaned)
    cleaned = re.sub(r"[ \t]+", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def count_words(text: str) -> int:
    return len(text.split())


class DocumentTextExtractor:
    """Text extraction for course materials (txt, md, docx, pdf)."""

    def extract(self, *, file_bytes: bytes, filename: str) -> ExtractionResult:
        extension = extension_from_filename(filename=filename)
        text = clean_text(text=parse_payload_to_text(extension=extension, payload=file_bytes))
        return ExtractionResult(text=text, word_count=count_words(text))


def _parse_text(payload: bytes) -> str:
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return payload.decode("latin-1", errors="replace")


def _parse_docx(payload: bytes) -> str:
    from docx import Document

    doc = Document(BytesIO(payload))
    parts: list[str] = []
    for paragraph in doc.paragraphs:
        value = paragraph.text.strip()
        if value:
            parts.append(value)

    for table in doc.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                parts.append(" | ".join(cells))

    return "\n".join(parts)


def _parse_pdf(payload: bytes) -> str:
    import pdfplumber

    pages: list[str] = []
    with pdfplumber.open(BytesIO(payload)) as pdf:
        for page in pdf.pages:
            value = (page.extract_text() or "").strip()
            if value:
                pages.append(value)
    return "\n\n".join(pages)
