"""
Subscription pattern detection: recurring payments from parsed statement transactions.

Core approach: group transactions by fuzzy merchant identity, then score each group's
payment cadence and amount stability.

Both policies reject groups whose amounts swing beyond the tolerance. Two
scoring policies exist because the inputs differ in quality:
- STATEMENT_POLICY (PDF text): noisy extraction, so it is permissive. Binary
  weekly/monthly labels, +-15 day interval tolerance, acceptance at 40.
- CSV_POLICY (structured exports): clean dates and amounts, so it is strict. Banded
  weekly/monthly/bimonthly/quarterly labels, interval variance <= 10, acceptance at 50.

Usage:
    detector = SubscriptionDetector(CSV_POLICY)
    candidates = detector.detect(transactions)
    subscriptions = [detector.to_subscription(c) for c in candidates]
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from app.config import Settings
from app.integrations.base import TransactionData
from app.schemas import DetectedSubscription
from app.services.merchant_normalizer import MerchantNormalizer, get_normalizer

logger = logging.getLogger(__name__)

MIN_TRANSACTIONS = 2

# Acceptance thresholds default to the configured values
_SETTINGS_FIELDS = Settings.model_fields

# Amount variation tolerated relative to the max amount
AMOUNT_TOLERANCE = 0.95
LENIENT_AMOUNT_TOLERANCE = 1.0

STATEMENT_INTERVAL_TOLERANCE_DAYS = 15
CSV_MAX_INTERVAL_VARIANCE = 10.0

ANNUAL_MULTIPLIERS: Dict[str, int] = {
    "weekly": 52,
    "monthly": 12,
    "bimonthly": 6,
    "quarterly": 4,
}

# Named frequency bands for the CSV path: (min_days, max_days, ideal_days)
FREQUENCY_BANDS: Dict[str, Tuple[int, int, int]] = {
    "weekly": (6, 8, 7),
    "monthly": (28, 35, 30),
    "bimonthly": (55, 65, 60),
    "quarterly": (85, 95, 90),
}


@dataclass
class MerchantGroup:
    """Transactions believed to belong to one merchant."""
    normalized_merchant: str
    transactions: List[TransactionData] = field(default_factory=list)
    raw_merchants: List[str] = field(default_factory=list)
    excluded: bool = False

    def add(self, txn: TransactionData) -> None:
        self.transactions.append(txn)
        if txn.beneficiary not in self.raw_merchants:
            self.raw_merchants.append(txn.beneficiary)


@dataclass
class GroupStats:
    count: int
    intervals: List[int]
    mean_interval: float
    amounts: List[Decimal]
    max_amount: Decimal
    amount_variation: float  # (max - min) / max
    amount_cv: float
    interval_variance: float
    lenient: bool

    @property
    def amount_consistent(self) -> bool:
        tolerance = LENIENT_AMOUNT_TOLERANCE if self.lenient else AMOUNT_TOLERANCE
        return self.amount_variation <= tolerance


@dataclass
class SubscriptionCandidate:
    """A group that passed detection, with the statistics that justified it."""
    group: MerchantGroup
    average_amount: Decimal
    average_interval_days: float
    confidence: int  # 0-100
    frequency: str
    currency: str
    last_transaction_date: date

    @property
    def merchant(self) -> str:
        return self.group.normalized_merchant

    @property
    def transaction_count(self) -> int:
        return len(self.group.transactions)


@dataclass(frozen=True)
class DetectionPolicy:
    name: str
    min_confidence: int
    classify: Callable[[GroupStats], Optional[str]]
    score: Callable[[GroupStats, str], int]


def clamp_confidence(value: float) -> int:
    return int(max(0, min(100, round(value))))


def compute_group_stats(transactions: List[TransactionData], lenient: bool) -> GroupStats:
    ordered = sorted(transactions, key=lambda t: t.date)
    intervals = [(ordered[i].date - ordered[i - 1].date).days for i in range(1, len(ordered))]
    mean_interval = sum(intervals) / len(intervals) if intervals else 0.0
    interval_variance = (
        sum((i - mean_interval) ** 2 for i in intervals) / len(intervals) if intervals else 0.0
    )

    amounts = [t.amount for t in ordered]
    max_amount = max(amounts)
    min_amount = min(amounts)
    variation = float((max_amount - min_amount) / max_amount) if max_amount > 0 else 0.0

    mean_amount = sum(float(a) for a in amounts) / len(amounts)
    amount_variance = sum((float(a) - mean_amount) ** 2 for a in amounts) / len(amounts)
    amount_cv = (amount_variance ** 0.5) / mean_amount if mean_amount > 0 else 1.0

    return GroupStats(
        count=len(ordered),
        intervals=intervals,
        mean_interval=mean_interval,
        amounts=amounts,
        max_amount=max_amount,
        amount_variation=variation,
        amount_cv=amount_cv,
        interval_variance=interval_variance,
        lenient=lenient,
    )


# Statement (PDF) policy

def classify_binary(stats: GroupStats) -> Optional[str]:
    """<= 14 days between payments is weekly, anything longer is monthly."""
    return "weekly" if stats.mean_interval <= 14 else "monthly"


def score_statement_candidate(stats: GroupStats, frequency: str) -> int:
    """
    Additive confidence for PDF statement groups.

    30 base, +25 amounts within tolerance, +25 every interval within 15 days of the
    mean, a cadence bonus (20-40 days +15, 50-70 days +10, 5-9 days +15) and
    +5 per transaction (max 20).
    """
    confidence = 30

    if stats.amount_consistent:
        confidence += 25

    if all(abs(i - stats.mean_interval) <= STATEMENT_INTERVAL_TOLERANCE_DAYS for i in stats.intervals):
        confidence += 25

    mean = stats.mean_interval
    if 20 <= mean <= 40:
        confidence += 15
    elif 50 <= mean <= 70:
        confidence += 10
    elif 5 <= mean <= 9:
        confidence += 15

    confidence += min(stats.count * 5, 20)
    return clamp_confidence(confidence)


# CSV policy

def classify_banded(stats: GroupStats) -> Optional[str]:
    """Band label for the mean interval; None outside every band or when intervals are erratic."""
    if stats.interval_variance > CSV_MAX_INTERVAL_VARIANCE:
        return None
    for label, (low, high, _ideal) in FREQUENCY_BANDS.items():
        if low <= stats.mean_interval <= high:
            return label
    return None


def score_csv_candidate(stats: GroupStats, frequency: str) -> int:
    """
    Additive confidence for CSV groups.

    Count (0-40), closeness of the mean interval to the band's ideal (0-30),
    amount stability by coefficient of variation (0-20) and interval regularity (0-10).
    """
    ideal = FREQUENCY_BANDS[frequency][2]
    confidence = min(stats.count * 10, 40)
    confidence += 30 * (1 - abs(stats.mean_interval - ideal) / ideal)
    confidence += 20 * (1 - min(stats.amount_cv, 1.0))
    confidence += 10 * (1 - min(stats.interval_variance / 100, 1.0))
    return clamp_confidence(confidence)


STATEMENT_POLICY = DetectionPolicy(
    name="statement",
    min_confidence=_SETTINGS_FIELDS["statement_min_confidence"].default,
    classify=classify_binary,
    score=score_statement_candidate,
)

CSV_POLICY = DetectionPolicy(
    name="csv",
    min_confidence=_SETTINGS_FIELDS["csv_min_confidence"].default,
    classify=classify_banded,
    score=score_csv_candidate,
)


class SubscriptionDetector:
    """
    Detects recurring payment patterns from transactions.

    Core Algorithm:
    1. Partition transactions into merchant groups (fuzzy merchant identity)
    2. Skip excluded merchants, groups with fewer than 2 payments and groups whose
       amounts vary by more than 95% of the maximum (100% for lenient brands)
    3. Classify cadence and score each group under the active policy
    4. Keep groups at or above the policy's acceptance threshold

    The representative amount of a group is its maximum observed amount, so the
    most expensive plan a user is currently paying is what gets surfaced.
    """

    def __init__(
        self,
        policy: DetectionPolicy = STATEMENT_POLICY,
        normalizer: Optional[MerchantNormalizer] = None,
        min_confidence: Optional[int] = None,
    ):
        self.policy = policy
        self.normalizer = normalizer or get_normalizer()
        self.min_confidence = policy.min_confidence if min_confidence is None else min_confidence

    def group_transactions(self, transactions: List[TransactionData]) -> List[MerchantGroup]:
        """
        Partition transactions into merchant groups.

        Every transaction lands in exactly one group. Excluded merchants get their own
        groups keyed by the raw name and are never scored.
        """
        groups: List[MerchantGroup] = []
        excluded: Dict[str, MerchantGroup] = {}

        for txn in transactions:
            normalized = self.normalizer.normalize(txn.beneficiary)
            if not normalized:
                key = txn.beneficiary.strip().upper()
                group = excluded.get(key)
                if group is None:
                    group = MerchantGroup(normalized_merchant=key, excluded=True)
                    excluded[key] = group
                    groups.append(group)
                group.add(txn)
                continue

            target = None
            for group in groups:
                if not group.excluded and self.normalizer.are_same_merchant(group.normalized_merchant, normalized):
                    target = group
                    break
            if target is None:
                target = MerchantGroup(normalized_merchant=normalized)
                groups.append(target)
            target.add(txn)

        for group in groups:
            group.transactions.sort(key=lambda t: t.date)
        return groups

    def analyze_group(self, group: MerchantGroup) -> Optional[SubscriptionCandidate]:
        """Score one group; None when it cannot be a subscription under the active policy."""
        if group.excluded or len(group.transactions) < MIN_TRANSACTIONS:
            return None

        stats = compute_group_stats(
            group.transactions,
            lenient=self.normalizer.is_lenient_brand(group.normalized_merchant),
        )
        # Same-day repeats carry no cadence
        if stats.mean_interval <= 0:
            return None
        if not stats.amount_consistent:
            logger.debug(
                f"[SUBSCRIPTION_DETECTOR] {group.normalized_merchant}: amounts vary by "
                f"{stats.amount_variation:.0%} of the maximum"
            )
            return None

        frequency = self.policy.classify(stats)
        if frequency is None:
            logger.debug(
                f"[SUBSCRIPTION_DETECTOR] {group.normalized_merchant}: no cadence "
                f"(mean {stats.mean_interval:.1f}d, variance {stats.interval_variance:.1f})"
            )
            return None

        confidence = self.policy.score(stats, frequency)
        if confidence < self.min_confidence:
            logger.debug(
                f"[SUBSCRIPTION_DETECTOR] {group.normalized_merchant}: confidence {confidence} "
                f"below {self.min_confidence}"
            )
            return None

        last = group.transactions[-1]
        return SubscriptionCandidate(
            group=group,
            average_amount=stats.max_amount,
            average_interval_days=stats.mean_interval,
            confidence=confidence,
            frequency=frequency,
            currency=last.currency,
            last_transaction_date=last.date,
        )

    def detect(self, transactions: List[TransactionData]) -> List[SubscriptionCandidate]:
        groups = self.group_transactions(transactions)
        candidates = [c for c in (self.analyze_group(g) for g in groups) if c is not None]
        candidates.sort(key=lambda c: c.confidence, reverse=True)
        logger.info(
            f"[SUBSCRIPTION_DETECTOR] {self.policy.name}: {len(transactions)} transactions, "
            f"{len(groups)} groups, {len(candidates)} candidates"
        )
        return candidates

    def to_subscription(self, candidate: SubscriptionCandidate) -> DetectedSubscription:
        """Convert a candidate using local statistics only."""
        step = max(1, round(candidate.average_interval_days))
        amount = candidate.average_amount.quantize(Decimal("0.01"))
        return DetectedSubscription(
            beneficiary=candidate.merchant,
            average_amount=amount,
            currency=candidate.currency,
            frequency=candidate.frequency,
            confidence=clamp_confidence(candidate.confidence) / 100,
            transactions=list(candidate.group.transactions),
            next_estimated_payment=candidate.last_transaction_date + timedelta(days=step),
            total_paid_amount=annual_total(amount, candidate.frequency),
            category=self.normalizer.categorize(candidate.merchant),
            last_transaction_date=candidate.last_transaction_date,
        )


def annual_total(amount: Decimal, frequency: str) -> Decimal:
    """Annual-equivalent spend for a recurring amount."""
    return (amount * ANNUAL_MULTIPLIERS.get(frequency, 12)).quantize(Decimal("0.01"))
