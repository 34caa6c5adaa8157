"""
Error taxonomy for statement analysis.

Services raise these; the HTTP layer, the SSE stream and the background task
turn them into responses or terminal events carrying `code` and a readable message.
"""
from typing import Optional


class AnalysisError(Exception):
    """Base class for every terminal analysis failure."""

    code = "analysis_failed"
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InputValidationError(AnalysisError):
    """Missing file, wrong type, oversized or undecodable upload."""

    code = "invalid_input"
    status_code = 400


class ExtractionError(AnalysisError):
    """The document could not be turned into usable text."""

    code = "extraction_failed"
    status_code = 422


class PDFParseError(ExtractionError):
    code = "pdf_unparsable"


class ScannedDocumentError(ExtractionError):
    code = "pdf_not_text"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        super().__init__(
            message or "The PDF does not contain readable transaction text",
            details or "The PDF appears to be a scanned document. Please upload a text-based PDF statement.",
        )


class NoTransactionsError(AnalysisError):
    code = "no_transactions"
    status_code = 422


class ValidationCallError(Exception):
    """
    A candidate validation batch failed (network, status, malformed or off-schema output).

    Never terminal: the validator catches it and falls back to local conversion.
    """
