"""
Statement analysis pipeline: extract -> parse -> group -> detect -> validate -> merge.

One pipeline instance serves one request or job. Progress is reported through an
optional callback as `chunking -> processing -> merging -> complete` stages; a
failing callback is logged and ignored so it can never change the outcome.
"""
import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, List, Optional

from app.config import Settings, get_settings
from app.errors import InputValidationError
from app.integrations.base import StatementAdapter, TransactionData
from app.integrations.csv_statement import CsvStatementAdapter
from app.integrations.pdf_statement import PdfStatementAdapter
from app.schemas import AnalysisMetadata, AnalysisProgress, AnalysisResponse, DetectedSubscription
from app.services.merchant_normalizer import get_normalizer
from app.services.subscription_deduplicator import SubscriptionDeduplicator
from app.services.subscription_detector import (
    CSV_POLICY,
    STATEMENT_POLICY,
    DetectionPolicy,
    SubscriptionDetector,
)
from app.services.subscription_validator import SubscriptionValidator
from app.services.transaction_parser import ParseOptions, TransactionParser

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[AnalysisProgress], Any]
ValidatorFactory = Callable[[SubscriptionDetector], Optional[SubscriptionValidator]]


@dataclass
class AnalysisResult:
    subscriptions: List[DetectedSubscription]
    total_transactions: int
    processing_time_ms: int
    extraction_method: str
    page_count: Optional[int] = None
    date_range_start: Optional[date] = None
    date_range_end: Optional[date] = None
    candidates_found: int = 0
    validation_used: bool = False

    def to_response(self) -> AnalysisResponse:
        return AnalysisResponse(
            subscriptions=self.subscriptions,
            total_subscriptions=len(self.subscriptions),
            total_transactions=self.total_transactions,
            processing_time=self.processing_time_ms,
            analysis_metadata=AnalysisMetadata(
                processing_time=self.processing_time_ms,
                extraction_method=self.extraction_method,
                pdf_pages=self.page_count,
                date_range_start=self.date_range_start,
                date_range_end=self.date_range_end,
                candidates_found=self.candidates_found,
                validation_used=self.validation_used,
            ),
        )


def parse_options_from_settings(settings: Settings) -> ParseOptions:
    return ParseOptions(
        reporting_currency=settings.reporting_currency,
        foreign_currency_multiplier=settings.foreign_currency_multiplier,
        sweep_tokens=get_normalizer().vocabulary.sweep_tokens,
    )


class AnalysisPipeline:
    """Runs one statement analysis end to end."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        progress: Optional[ProgressCallback] = None,
        validator_factory: Optional[ValidatorFactory] = None,
    ):
        self.settings = settings or get_settings()
        self.progress = progress
        self.validator_factory = validator_factory or (
            lambda detector: SubscriptionValidator.from_settings(self.settings, detector)
        )
        self.options = parse_options_from_settings(self.settings)

    async def _emit(self, stage: str, current: int, total: int, message: str) -> None:
        if self.progress is None:
            return
        event = AnalysisProgress(stage=stage, current_chunk=current, total_chunks=total, message=message)
        try:
            result = self.progress(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"[PIPELINE] Progress callback failed at stage '{stage}': {type(e).__name__}: {e}")

    async def analyze_pdf(self, content: bytes) -> AnalysisResult:
        if not content:
            raise InputValidationError("No PDF file provided", "Upload a PDF bank statement.")
        started = time.perf_counter()
        adapter = PdfStatementAdapter(content, parser=TransactionParser(self.options))

        await self._emit("chunking", 1, 4, "Extracting text from PDF")
        extraction = await asyncio.to_thread(adapter.extract)

        await self._emit("chunking", 2, 4, f"Extracted text from {extraction.page_count} page(s)")
        sections = await asyncio.to_thread(adapter.sections)

        await self._emit("processing", 3, 4, f"Parsing transactions from {len(sections)} section(s)")
        transactions = await asyncio.to_thread(adapter.fetch_transactions)

        await self._emit("processing", 4, 4, f"Found {len(transactions)} transactions, detecting patterns")
        return await self._detect(adapter, transactions, STATEMENT_POLICY, self.settings.statement_min_confidence, started)

    async def analyze_csv(self, content: bytes) -> AnalysisResult:
        if not content:
            raise InputValidationError("No CSV file provided", "Upload a CSV bank statement export.")
        started = time.perf_counter()
        adapter = CsvStatementAdapter.from_bytes(content, self.options)

        await self._emit("chunking", 1, 2, "Reading CSV rows")
        transactions = adapter.fetch_transactions()

        await self._emit("processing", 2, 2, f"Found {len(transactions)} transactions, detecting patterns")
        return await self._detect(adapter, transactions, CSV_POLICY, self.settings.csv_min_confidence, started)

    async def _detect(
        self,
        adapter: StatementAdapter,
        transactions: List[TransactionData],
        policy: DetectionPolicy,
        min_confidence: int,
        started: float,
    ) -> AnalysisResult:
        detector = SubscriptionDetector(policy, min_confidence=min_confidence)
        candidates = detector.detect(transactions)

        validator = self.validator_factory(detector) if candidates else None
        validation_used = False
        if validator is not None:
            async def batch_progress(current: int, total: int) -> None:
                await self._emit("processing", current, total, f"Validating batch {current} of {total}")

            outcome = await validator.validate(candidates, progress=batch_progress)
            subscriptions = outcome.subscriptions
            validation_used = outcome.validated_batches > 0
        else:
            subscriptions = [detector.to_subscription(c) for c in candidates]

        await self._emit("merging", 1, 1, f"Merging {len(subscriptions)} detected subscriptions")
        subscriptions = SubscriptionDeduplicator().deduplicate(subscriptions)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        await self._emit("complete", 1, 1, f"Found {len(subscriptions)} subscriptions")

        dates = [t.date for t in transactions]
        logger.info(
            f"[PIPELINE] {adapter.extraction_method}: {len(transactions)} transactions, "
            f"{len(candidates)} candidates, {len(subscriptions)} subscriptions in {elapsed_ms}ms"
        )
        return AnalysisResult(
            subscriptions=subscriptions,
            total_transactions=len(transactions),
            processing_time_ms=elapsed_ms,
            extraction_method=adapter.extraction_method,
            page_count=adapter.page_count,
            date_range_start=min(dates) if dates else None,
            date_range_end=max(dates) if dates else None,
            candidates_found=len(candidates),
            validation_used=validation_used,
        )
