"""
LLM validation of subscription candidates.

Candidates are sent in batches to a chat completion model with a strict JSON schema.
A batch that fails for any reason (network, HTTP status, malformed or off-schema
output) falls back to local conversion, so validation can only refine results.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable, List, Optional

from pydantic import ValidationError

from app.config import Settings
from app.errors import ValidationCallError
from app.schemas import DetectedSubscription, ValidatedSubscription, ValidationBatchResponse
from app.services.merchant_normalizer import MerchantNormalizer, get_normalizer
from app.services.subscription_detector import (
    SubscriptionCandidate,
    SubscriptionDetector,
    annual_total,
    clamp_confidence,
)

logger = logging.getLogger(__name__)

MAX_TRANSACTIONS_IN_PROMPT = 12
MAX_RESPONSE_TOKENS = 2000

RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {
        "subscriptions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "merchant_name": {"type": "string"},
                    "category": {"type": "string"},
                    "average_amount": {"type": "number"},
                    "currency": {"type": "string"},
                    "frequency": {"type": "string"},
                    "confidence": {"type": "integer", "minimum": 0, "maximum": 100},
                },
                "required": ["merchant_name", "category", "average_amount", "currency", "frequency", "confidence"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["subscriptions"],
    "additionalProperties": False,
}

SYSTEM_PROMPT = (
    "You are a financial analyst who identifies recurring subscription payments in bank "
    "statements. Respond only with JSON matching the provided schema."
)

BatchProgress = Callable[[int, int], Awaitable[None]]


@dataclass
class ValidationOutcome:
    subscriptions: List[DetectedSubscription]
    validated_batches: int = 0
    fallback_batches: int = 0


def _diagnose(error: Exception, model: str, batch_size: int) -> None:
    """Log a best-guess cause for a failed validation call."""
    cause = error.__cause__ or error
    message = f"{type(cause).__name__}: {cause}"
    lowered = message.lower()
    if "401" in message or "authentication" in lowered or "api key" in lowered:
        logger.error("[VALIDATOR] DIAGNOSIS: Authentication error - API key may be invalid, expired, or missing")
    elif "429" in message or "rate limit" in lowered:
        logger.error("[VALIDATOR] DIAGNOSIS: Rate limit exceeded - consider a longer batch delay")
    elif "timeout" in lowered or "timed out" in lowered:
        logger.error(f"[VALIDATOR] DIAGNOSIS: Request timeout (batch of {batch_size} candidates)")
    elif "connection" in lowered or "network" in lowered or "dns" in lowered:
        logger.error("[VALIDATOR] DIAGNOSIS: Network connectivity issue")
    elif "model" in lowered and ("invalid" in lowered or "not found" in lowered):
        logger.error(f"[VALIDATOR] DIAGNOSIS: Invalid model - check that {model} is available")
    elif isinstance(cause, (ValidationError, json.JSONDecodeError)):
        logger.error("[VALIDATOR] DIAGNOSIS: Model output did not match the response schema")
    else:
        logger.error("[VALIDATOR] DIAGNOSIS: Unknown error type")


class SubscriptionValidator:
    """Validates candidates with an OpenAI model, falling back per batch to local statistics."""

    def __init__(
        self,
        client,
        detector: SubscriptionDetector,
        model: str = "gpt-4o-mini",
        batch_size: int = 10,
        batch_delay_seconds: float = 20.0,
        timeout_seconds: float = 30.0,
        seed: int = 42,
        normalizer: Optional[MerchantNormalizer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.detector = detector
        self.model = model
        self.batch_size = max(1, batch_size)
        self.batch_delay_seconds = batch_delay_seconds
        self.timeout_seconds = timeout_seconds
        self.seed = seed
        self.normalizer = normalizer or get_normalizer()
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, detector: SubscriptionDetector) -> Optional["SubscriptionValidator"]:
        """Build a validator backed by AsyncOpenAI, or None when validation is not configured."""
        if not settings.validation_available:
            logger.info("[VALIDATOR] OPENAI_API_KEY not set or validation disabled; using local statistics only")
            return None

        from openai import AsyncOpenAI

        client = AsyncOpenAI(api_key=settings.openai_api_key)
        return cls(
            client,
            detector,
            model=settings.subscription_validation_model,
            batch_size=settings.validation_batch_size,
            batch_delay_seconds=settings.validation_batch_delay_seconds,
            timeout_seconds=settings.validation_timeout_seconds,
            seed=settings.validation_seed,
        )

    def _build_prompt(self, batch: List[SubscriptionCandidate]) -> str:
        blocks = []
        for index, candidate in enumerate(batch):
            txn_lines = [
                f"    {t.date.isoformat()} | {t.amount} {t.currency} | {t.beneficiary}"
                for t in candidate.group.transactions[-MAX_TRANSACTIONS_IN_PROMPT:]
            ]
            blocks.append(
                f"{index + 1}. Merchant: {candidate.merchant}\n"
                f"   Raw names: {', '.join(candidate.group.raw_merchants[:5])}\n"
                f"   Transactions: {candidate.transaction_count}, amount: {candidate.average_amount} "
                f"{candidate.currency}, mean interval: {candidate.average_interval_days:.1f} days, "
                f"confidence: {candidate.confidence}\n" + "\n".join(txn_lines)
            )

        return (
            "Review these recurring payment candidates found in a bank statement.\n\n"
            + "\n\n".join(blocks)
            + "\n\nInstructions:\n"
            "1. Keep only real subscriptions (streaming, software, AI tools, hosting, memberships)\n"
            "2. Drop utilities, telecom, transfers, cash withdrawals and bank fees\n"
            "3. Use the well-known brand name for merchant_name (e.g. 'Netflix', 'OpenAI')\n"
            "4. average_amount is the most recent plan price; keep the given currency\n"
            "5. frequency is one of weekly, monthly, bimonthly, quarterly\n"
            "6. confidence is 0-100"
        )

    async def _call_model(self, batch: List[SubscriptionCandidate]) -> ValidationBatchResponse:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": self._build_prompt(batch)},
                ],
                temperature=0,
                seed=self.seed,
                max_tokens=MAX_RESPONSE_TOKENS,
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "subscription_validation",
                        "strict": True,
                        "schema": RESPONSE_SCHEMA,
                    },
                },
                timeout=self.timeout_seconds,
            )
            content = response.choices[0].message.content
            if not content:
                raise ValueError("empty response content")
            return ValidationBatchResponse.model_validate_json(content)
        except Exception as e:
            raise ValidationCallError(f"{type(e).__name__}: {e}") from e

    def _match_candidate(
        self,
        item: ValidatedSubscription,
        batch: List[SubscriptionCandidate],
        used: set,
    ) -> Optional[SubscriptionCandidate]:
        for index, candidate in enumerate(batch):
            if index in used:
                continue
            names = [candidate.merchant] + candidate.group.raw_merchants
            if any(self.normalizer.are_same_merchant(item.merchant_name, name) for name in names):
                used.add(index)
                return candidate
        return None

    def _merge(
        self,
        batch: List[SubscriptionCandidate],
        response: ValidationBatchResponse,
    ) -> List[DetectedSubscription]:
        """Combine model output with candidate statistics; unmatched model items are dropped."""
        merged = []
        used: set = set()
        for item in response.subscriptions:
            candidate = self._match_candidate(item, batch, used)
            if candidate is None:
                logger.warning(f"[VALIDATOR] Model returned '{item.merchant_name}' which matches no candidate; dropped")
                continue

            local = self.detector.to_subscription(candidate)
            try:
                amount = Decimal(str(item.average_amount)).quantize(Decimal("0.01"))
            except InvalidOperation:
                amount = local.average_amount
            if amount <= 0:
                amount = local.average_amount

            merged.append(local.model_copy(update={
                "beneficiary": item.merchant_name.strip() or local.beneficiary,
                "average_amount": amount,
                "currency": (item.currency or local.currency).strip().upper(),
                "confidence": clamp_confidence(item.confidence) / 100,
                "category": item.category.strip().lower() or local.category,
                "total_paid_amount": annual_total(amount, local.frequency),
            }))
        return merged

    async def validate(
        self,
        candidates: List[SubscriptionCandidate],
        progress: Optional[BatchProgress] = None,
    ) -> ValidationOutcome:
        outcome = ValidationOutcome(subscriptions=[])
        batches = [candidates[i:i + self.batch_size] for i in range(0, len(candidates), self.batch_size)]

        for number, batch in enumerate(batches, start=1):
            if number > 1 and self.batch_delay_seconds > 0:
                await self._sleep(self.batch_delay_seconds)
            if progress is not None:
                await progress(number, len(batches))

            logger.info(f"[VALIDATOR] Validating batch {number}/{len(batches)} ({len(batch)} candidates)")
            try:
                response = await self._call_model(batch)
            except ValidationCallError as e:
                logger.error(f"[VALIDATOR] Batch {number} failed: {e}")
                _diagnose(e, self.model, len(batch))
                outcome.subscriptions.extend(self.detector.to_subscription(c) for c in batch)
                outcome.fallback_batches += 1
                continue

            merged = self._merge(batch, response)
            logger.info(f"[VALIDATOR] Batch {number}: {len(merged)} of {len(batch)} candidates confirmed")
            outcome.subscriptions.extend(merged)
            outcome.validated_batches += 1

        return outcome
