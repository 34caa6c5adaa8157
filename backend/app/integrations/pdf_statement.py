"""
PDF bank statement adapter: text extraction followed by multi-strategy parsing.
"""
import logging
from typing import List, Optional

from app.errors import NoTransactionsError
from app.integrations.base import StatementAdapter, TransactionData
from app.services.pdf_extractor import ExtractionResult, PDFTextExtractor, clean_text, split_into_sections
from app.services.transaction_parser import TransactionParser

logger = logging.getLogger(__name__)


class PdfStatementAdapter(StatementAdapter):
    """Adapter for text-based PDF statements."""

    def __init__(
        self,
        content: bytes,
        parser: Optional[TransactionParser] = None,
        extractor: Optional[PDFTextExtractor] = None,
    ):
        self.content = content
        self.parser = parser or TransactionParser()
        self.extractor = extractor or PDFTextExtractor()
        self.extraction: Optional[ExtractionResult] = None

    def extract(self) -> ExtractionResult:
        """Extract text once; raises PDFParseError or ScannedDocumentError."""
        if self.extraction is None:
            self.extraction = self.extractor.extract(self.content)
            self.extraction_method = self.extraction.method
            self.page_count = self.extraction.page_count
        return self.extraction

    def normalize_transaction(self, raw: dict) -> Optional[TransactionData]:
        # Rows come straight out of the text parser already in canonical form
        try:
            return TransactionData(**raw)
        except (TypeError, ValueError):
            return None

    def sections(self) -> List[str]:
        return split_into_sections(clean_text(self.extract().text))

    def fetch_transactions(self) -> List[TransactionData]:
        extraction = self.extract()
        transactions = self.parser.parse_many(self.sections())
        logger.info(
            f"[PDF_STATEMENT] {len(transactions)} transactions from {extraction.page_count} page(s)"
        )
        if not transactions:
            raise NoTransactionsError(
                "No transactions found in the PDF statement",
                "The document was readable but no dated amounts with a merchant could be identified.",
            )
        return transactions
