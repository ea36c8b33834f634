"""
pdf_parser.py — Pull plain text out of an uploaded PDF
======================================================

What the rest of the pipeline needs:
  One long string. The chunker slices it by character count and the ranker
  matches whitespace-separated words, so layout doesn't survive anyway.
  What DOES matter is that words stay separated and intact:

  - Line breaks inside a page become single spaces
  - "algo-\\nrithm" gets re-joined to "algorithm" before that happens
  - Ligatures (ﬁ, ﬂ) are expanded, otherwise "ﬁnd" never matches "find"
  - Pages are joined with a space so the last word of page 3 doesn't
    fuse with the first word of page 4

Upload surface:
  Only application/pdf is accepted. The check lives here (not in the UI)
  so every front end gets the same rule.

Usage:
  from docqa.pdf_parser import UploadedFile, parse_pdf
  upload = UploadedFile.from_path("paper.pdf")
  doc = parse_pdf(upload.data, filename=upload.name)
  print(doc.raw_text[:200])
"""

import logging
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path

import fitz  # PyMuPDF

from docqa.errors import UploadError


logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


# ==================== DATA STRUCTURES ====================

@dataclass(frozen=True)
class UploadedFile:
    """A file handed to the session: picked, dropped, or read from disk."""
    name: str
    data: bytes
    mime_type: str

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME_TYPE

    @classmethod
    def from_path(cls, path: str | Path) -> "UploadedFile":
        path = Path(path)
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            data=path.read_bytes(),
            mime_type=mime_type or "application/octet-stream",
        )

    def __repr__(self):
        return f"UploadedFile(name={self.name!r}, mime_type={self.mime_type!r}, bytes={len(self.data)})"


@dataclass
class ParsedDocument:
    """Extracted text plus the little metadata we keep."""
    filename: str
    total_pages: int
    raw_text: str

    def __repr__(self):
        preview = self.raw_text[:60]
        return f"ParsedDocument(filename={self.filename!r}, pages={self.total_pages}, chars={len(self.raw_text)}, preview={preview!r}...)"


# ==================== CLEANING ====================

LIGATURES = {
    'ﬁ': 'fi', 'ﬂ': 'fl', 'ﬀ': 'ff', 'ﬃ': 'ffi', 'ﬄ': 'ffl',
}


def _page_text(text: str) -> str:
    """Flatten one page: re-join hyphenated breaks, then lines -> spaces."""
    text = re.sub(r'(\w)-\n(\w)', r'\1\2', text)
    for old, new in LIGATURES.items():
        text = text.replace(old, new)
    runs = [line.strip() for line in text.splitlines()]
    return " ".join(run for run in runs if run)


# ==================== MAIN PARSER ====================

def parse_pdf(source: bytes | str | Path, filename: str | None = None) -> ParsedDocument:
    """
    Extract text from a PDF given as raw bytes or a path.

    Raises UploadError if PyMuPDF can't open or read it.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise UploadError(f"PDF not found: {path}")
        filename = filename or path.name
        source = path.read_bytes()
    filename = filename or "document.pdf"

    try:
        doc = fitz.open(stream=source, filetype="pdf")
    except Exception as e:
        raise UploadError(f"Could not open {filename!r} as a PDF: {e}") from e

    if doc.page_count == 0:
        doc.close()
        raise UploadError(f"{filename!r} has no pages")

    try:
        page_texts = [_page_text(page.get_text("text")) for page in doc]
    except Exception as e:
        raise UploadError(f"Could not extract text from {filename!r}: {e}") from e
    finally:
        doc.close()

    raw_text = " ".join(t for t in page_texts if t)
    logger.info("Extracted %d chars from %d pages of %s", len(raw_text), len(page_texts), filename)

    return ParsedDocument(
        filename=filename,
        total_pages=len(page_texts),
        raw_text=raw_text,
    )


def extract_text(upload: UploadedFile) -> str:
    """Upload surface entry point: reject non-PDFs, return the full text."""
    if not upload.is_pdf:
        raise UploadError(f"Only PDF files are supported, got {upload.mime_type!r} for {upload.name!r}")
    return parse_pdf(upload.data, filename=upload.name).raw_text
