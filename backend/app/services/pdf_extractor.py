"""
PDF text extraction for bank statements.

Only text-based PDFs are supported. Scanned (image-only) statements fail with
ScannedDocumentError instead of falling back to OCR.
"""
import logging
import re
from dataclasses import dataclass
from io import BytesIO
from typing import List

import pdfplumber

from app.errors import PDFParseError, ScannedDocumentError

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 50
MIN_DIGIT_DENSITY = 0.02
MIN_SECTION_LENGTH = 50

DATE_LIKE_PATTERNS = (
    re.compile(r"\d{1,2}[./-]\d{1,2}[./-]\d{2,4}"),
    re.compile(r"\d{1,2}\s+[A-Za-zăâîșțĂÂÎȘȚ]{3,10}\.?\s+\d{2,4}"),
)
AMOUNT_LIKE_PATTERN = re.compile(r"\d+[.,]\d{2}(?!\d)")

SECTION_HEADERS = (
    "tranzactii",
    "tranzacții",
    "lista operatiuni",
    "miscari cont",
    "detalii tranzactii",
    "operatiuni efectuate",
    "transactions",
    "transaction details",
    "account activity",
)


@dataclass
class ExtractionResult:
    text: str
    page_count: int
    method: str = "text"


def is_text_meaningful(text: str) -> bool:
    """
    Decide whether extracted text looks like a real statement.

    Requires a minimum length, a minimum share of digits, at least one
    date-like substring and at least one two-decimal amount.
    """
    stripped = (text or "").strip()
    if len(stripped) < MIN_TEXT_LENGTH:
        return False

    digits = sum(1 for ch in stripped if ch.isdigit())
    if digits / len(stripped) < MIN_DIGIT_DENSITY:
        return False

    if not any(pattern.search(stripped) for pattern in DATE_LIKE_PATTERNS):
        return False

    return bool(AMOUNT_LIKE_PATTERN.search(stripped))


def clean_text(text: str) -> str:
    """
    Normalize whitespace line by line and drop blank lines.

    Column gaps (tabs or 3+ spaces) become a single tab so table layouts survive.
    """
    lines = []
    for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        line = line.replace("\u00a0", " ")
        columns = [re.sub(r"\s+", " ", col).strip() for col in re.split(r"\t| {3,}", line)]
        line = "\t".join(col for col in columns if col)
        if line:
            lines.append(line)
    return "\n".join(lines)


def split_into_sections(text: str) -> List[str]:
    """
    Split statement text into transaction sections.

    Splits on known section headers; statements without any header are split on
    large blank gaps instead. Short fragments are dropped.
    """
    header_pattern = re.compile(
        r"^\s*(?:" + "|".join(re.escape(h) for h in SECTION_HEADERS) + r")\b.*$",
        re.IGNORECASE | re.MULTILINE,
    )
    starts = [m.start() for m in header_pattern.finditer(text)]

    if starts:
        bounds = starts + [len(text)]
        chunks = [text[:starts[0]]] + [text[bounds[i]:bounds[i + 1]] for i in range(len(starts))]
    else:
        chunks = re.split(r"\n\s*\n\s*\n", text)

    sections = [chunk.strip() for chunk in chunks if len(chunk.strip()) >= MIN_SECTION_LENGTH]
    return sections or ([text.strip()] if text.strip() else [])


class PDFTextExtractor:
    """Extracts plain text from PDF bytes with pdfplumber."""

    def extract(self, content: bytes) -> ExtractionResult:
        try:
            with pdfplumber.open(BytesIO(content)) as pdf:
                page_count = len(pdf.pages)
                page_texts = [page.extract_text() or "" for page in pdf.pages]
        except Exception as e:
            logger.warning(f"[PDF_EXTRACTOR] Could not parse PDF: {type(e).__name__}: {e}")
            raise PDFParseError("Could not parse the PDF file", str(e)) from e

        text = "\n".join(page_texts)
        logger.info(f"[PDF_EXTRACTOR] Extracted {len(text)} chars from {page_count} page(s)")

        if not is_text_meaningful(text):
            logger.info("[PDF_EXTRACTOR] Extracted text failed the meaningfulness check")
            raise ScannedDocumentError()

        return ExtractionResult(text=text, page_count=page_count, method="text")
