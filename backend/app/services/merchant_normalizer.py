"""
Merchant name normalization and fuzzy merchant matching.
"""
import logging
import re
from typing import List, Optional, Pattern, Tuple

from rapidfuzz.distance import Levenshtein

from app.services.merchant_vocabulary import DEFAULT_VOCABULARY, MerchantVocabulary

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.85
MIN_SUBSTRING_LENGTH = 4


def _token_pattern(token: str, allow_tail: bool = False) -> Pattern:
    """Compile a token (with optional * wildcards) into a boundary-aware regex."""
    parts = [re.escape(p) for p in token.split("*")]
    body = ".*".join(parts)
    tail = "" if allow_tail or token.endswith("*") else r"(?![A-Z0-9])"
    return re.compile(r"(?<![A-Z0-9])" + body + tail)


class MerchantNormalizer:
    """
    Maps raw statement merchant strings to stable display names.

    Rules, in order:
    1. a known service variant maps to its canonical name
    2. an excluded merchant (telecom, utilities, cash, fees) maps to ""
    3. anything else is stripped of corporate/location suffixes and noise, then title-cased

    normalize() is idempotent: normalize(normalize(x)) == normalize(x).
    """

    def __init__(self, vocabulary: MerchantVocabulary = DEFAULT_VOCABULARY):
        self.vocabulary = vocabulary
        # Longest literal first so "YOUTUBE*PREMIUM" wins over shorter tokens
        variants = sorted(
            vocabulary.service_variants.items(),
            key=lambda item: len(item[0].replace("*", "")),
            reverse=True,
        )
        self._variant_patterns: List[Tuple[Pattern, str]] = [
            (_token_pattern(token), canonical) for token, canonical in variants
        ]
        self._exclusion_patterns: List[Pattern] = [_token_pattern(t) for t in vocabulary.exclusions]
        self._suffixes = {s.replace(".", "") for s in vocabulary.corporate_suffixes + vocabulary.location_suffixes}
        self._bucket_patterns: List[Tuple[str, Pattern]] = [
            (bucket, re.compile(r"(?<![a-z0-9])" + re.escape(token)))
            for bucket, tokens in vocabulary.service_buckets.items()
            for token in tokens
        ]
        self._category_patterns: List[Tuple[str, Pattern]] = [
            (category, re.compile(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])"))
            for category, keywords in vocabulary.category_keywords.items()
            for keyword in keywords
        ]

    def _match_variant(self, upper: str) -> Optional[str]:
        for pattern, canonical in self._variant_patterns:
            if pattern.search(upper):
                return canonical
        return None

    def _is_excluded_upper(self, upper: str) -> bool:
        return any(pattern.search(upper) for pattern in self._exclusion_patterns)

    def _clean_tokens(self, upper: str) -> List[str]:
        text = re.sub(r"[^A-Z0-9&+\s]", " ", upper)
        tokens = []
        for token in text.split():
            if any(ch.isdigit() for ch in token):
                continue
            if token in self._suffixes:
                continue
            tokens.append(token)
        return tokens

    def normalize(self, raw: Optional[str]) -> str:
        if not raw:
            return ""
        upper = re.sub(r"\s+", " ", raw.upper()).strip()

        canonical = self._match_variant(upper)
        if canonical:
            return canonical
        if self._is_excluded_upper(upper):
            return ""

        cleaned = " ".join(self._clean_tokens(upper))
        if not cleaned:
            return ""
        # Cleanup can expose a variant or exclusion hidden behind noise
        canonical = self._match_variant(cleaned)
        if canonical:
            return canonical
        if self._is_excluded_upper(cleaned):
            return ""

        return " ".join(token.capitalize() for token in cleaned.split(" "))

    def is_excluded(self, raw: Optional[str]) -> bool:
        return bool(raw) and self.normalize(raw) == ""

    def service_bucket(self, name: Optional[str]) -> Optional[str]:
        """Return the dedup bucket key for a known service, or None."""
        if not name:
            return None
        lowered = name.lower()
        for bucket, pattern in self._bucket_patterns:
            if pattern.search(lowered):
                return bucket
        return None

    def _comparison_key(self, name: str) -> str:
        bucket = self.service_bucket(name)
        if bucket:
            return bucket
        return re.sub(r"[^a-z0-9]", "", name.lower())

    def are_same_merchant(self, a: Optional[str], b: Optional[str]) -> bool:
        """
        Fuzzy merchant equality.

        True when the comparison keys are identical, one contains the other and both
        are at least 4 characters, or their normalized Levenshtein similarity >= 0.85.
        """
        if not a or not b:
            return False
        key_a = self._comparison_key(a)
        key_b = self._comparison_key(b)
        if not key_a or not key_b:
            return False
        if key_a == key_b:
            return True
        if len(key_a) >= MIN_SUBSTRING_LENGTH and len(key_b) >= MIN_SUBSTRING_LENGTH:
            if key_a in key_b or key_b in key_a:
                return True
        return Levenshtein.normalized_similarity(key_a, key_b) >= SIMILARITY_THRESHOLD

    def categorize(self, name: Optional[str]) -> str:
        if not name:
            return "other"
        lowered = name.lower()
        for category, pattern in self._category_patterns:
            if pattern.search(lowered):
                return category
        return "other"

    def is_lenient_brand(self, name: Optional[str]) -> bool:
        """True when the name contains a lenient brand, so "Microsoft 365" counts as Microsoft."""
        if not name:
            return False
        lowered = name.lower()
        return any(brand.lower() in lowered for brand in self.vocabulary.lenient_brands)

    def canonical_bucket_name(self, bucket: str) -> Optional[str]:
        return self.vocabulary.bucket_names.get(bucket)


_default_normalizer: Optional[MerchantNormalizer] = None


def get_normalizer() -> MerchantNormalizer:
    global _default_normalizer
    if _default_normalizer is None:
        _default_normalizer = MerchantNormalizer()
    return _default_normalizer


def normalize(raw: Optional[str]) -> str:
    return get_normalizer().normalize(raw)


def are_same_merchant(a: Optional[str], b: Optional[str]) -> bool:
    return get_normalizer().are_same_merchant(a, b)
