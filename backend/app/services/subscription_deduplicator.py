"""
Collapses detected subscriptions that represent the same real-world service.
"""
import logging
from typing import Dict, List, Optional

from app.schemas import DetectedSubscription
from app.services.merchant_normalizer import MerchantNormalizer, get_normalizer

logger = logging.getLogger(__name__)


class SubscriptionDeduplicator:
    """
    One entry per known service.

    Subscriptions whose names fall into the same service bucket are merged: the entry
    with the highest average amount wins and takes the bucket's canonical name.
    Unknown services and single-entry buckets pass through untouched.
    """

    def __init__(self, normalizer: Optional[MerchantNormalizer] = None):
        self.normalizer = normalizer or get_normalizer()

    def deduplicate(self, subscriptions: List[DetectedSubscription]) -> List[DetectedSubscription]:
        buckets: Dict[str, List[int]] = {}
        for index, subscription in enumerate(subscriptions):
            bucket = self.normalizer.service_bucket(subscription.beneficiary)
            if bucket:
                buckets.setdefault(bucket, []).append(index)

        dropped = set()
        replacements: Dict[int, DetectedSubscription] = {}
        for bucket, indexes in buckets.items():
            if len(indexes) < 2:
                continue
            winner = max(indexes, key=lambda i: subscriptions[i].average_amount)
            canonical = self.normalizer.canonical_bucket_name(bucket) or subscriptions[winner].beneficiary
            # The merged entry keeps the bucket's first position
            replacements[indexes[0]] = subscriptions[winner].model_copy(update={"beneficiary": canonical})
            dropped.update(indexes[1:])
            logger.info(
                f"[DEDUP] Merged {len(indexes)} entries into '{canonical}' "
                f"({subscriptions[winner].average_amount} {subscriptions[winner].currency})"
            )

        return [
            replacements.get(index, subscription)
            for index, subscription in enumerate(subscriptions)
            if index not in dropped
        ]
