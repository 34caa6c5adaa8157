"""
Merchant vocabulary: known subscription services, exclusions, suffixes and categories.

Built once at import time and exposed as an immutable MerchantVocabulary so it can
be shared between requests and injected into the normalizer and deduplicator.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Tuple


@dataclass(frozen=True)
class MerchantVocabulary:
    # Raw statement token (may contain * wildcards) -> canonical service name
    service_variants: Mapping[str, str]
    # Tokens that mark a merchant as non-subscription (telecom, utilities, cash, fees)
    exclusions: Tuple[str, ...]
    corporate_suffixes: Tuple[str, ...]
    location_suffixes: Tuple[str, ...]
    # Canonical names allowed full amount variation (plan upgrades, FX drift)
    lenient_brands: Tuple[str, ...]
    # Dedup bucket key -> tokens that belong to it
    service_buckets: Mapping[str, Tuple[str, ...]]
    # Dedup bucket key -> display name of the merged subscription
    bucket_names: Mapping[str, str]
    # Category -> keywords
    category_keywords: Mapping[str, Tuple[str, ...]]
    # Statement tokens swept for directly in raw text
    sweep_tokens: Tuple[str, ...] = field(default=())


_SERVICE_VARIANTS = {
    "OPENAI*": "OpenAI",
    "OPENAI": "OpenAI",
    "CHATGPT*": "OpenAI",
    "CHATGPT": "OpenAI",
    "SPOTIFY*": "Spotify",
    "SPOTIFY": "Spotify",
    "NETFLIX.COM": "Netflix",
    "NETFLIX*": "Netflix",
    "NETFLIX": "Netflix",
    "YOUTUBE*PREMIUM": "YouTube Premium",
    "YOUTUBE PREMIUM": "YouTube Premium",
    "YOUTUBEPREMIUM": "YouTube Premium",
    "HBO*": "HBO Max",
    "HBO MAX": "HBO Max",
    "HBOMAX": "HBO Max",
    "DISNEY*": "Disney+",
    "DISNEY PLUS": "Disney+",
    "DISNEYPLUS": "Disney+",
    "AMAZON*PRIME": "Amazon Prime",
    "AMAZON PRIME": "Amazon Prime",
    "PRIME VIDEO": "Amazon Prime",
    "APPLE.COM/BILL": "Apple",
    "APPLE.COM": "Apple",
    "APPLE*": "Apple",
    "ITUNES*": "Apple",
    "ITUNES": "Apple",
    "MICROSOFT*OFFICE": "Microsoft 365",
    "OFFICE 365": "Microsoft 365",
    "OFFICE365": "Microsoft 365",
    "MICROSOFT 365": "Microsoft 365",
    "MICROSOFT*": "Microsoft",
    "MSFT*": "Microsoft",
    "MICROSOFT": "Microsoft",
    "GOOGLE*": "Google",
    "GOOGLE": "Google",
    "ADOBE*": "Adobe",
    "ADOBE": "Adobe",
    "CANVA": "Canva",
    "HAWK HOST": "Hawk Host",
    "HAWKHOST": "Hawk Host",
    "SONETEL": "Sonetel",
    "ELEVENLABS": "ElevenLabs",
    "SHOPIFY*": "Shopify",
    "SHOPIFY": "Shopify",
}

_EXCLUSIONS = (
    "DIGI",
    "ORANGE",
    "VODAFONE",
    "TELEKOM",
    "ENEL",
    "ENGIE",
    "E.ON",
    "EON ENERGIE",
    "ELECTRICA",
    "APA NOVA",
    "ATM",
    "TRANSFER",
    "COMISION",
    "DOBANDA",
    "RETRAGERE NUMERAR",
    "CASH WITHDRAWAL",
    "BANK FEE",
    "INTEREST",
)

_CORPORATE_SUFFIXES = (
    "LLC", "SRL", "S.R.L", "SA", "S.A", "PFA", "LTD", "INC", "CORP", "CO",
    "GMBH", "BV", "AG", "PLC", "SERVICES", "SERVICE",
)

_LOCATION_SUFFIXES = (
    "ROMANIA", "RO", "BUCURESTI", "BUCHAREST", "CLUJ", "CLUJ-NAPOCA",
    "TIMISOARA", "IASI", "CONSTANTA", "BRASOV", "IRL", "IE", "NL", "LU", "US", "GB",
)

_LENIENT_BRANDS = (
    "Netflix", "Spotify", "Apple", "OpenAI", "Adobe", "Shopify", "Canva", "Microsoft", "Google",
)

_SERVICE_BUCKETS = {
    "netflix": ("netflix",),
    "spotify": ("spotify",),
    "youtube": ("youtube",),
    "hbo": ("hbo",),
    "disney": ("disney",),
    "amazon": ("amazon", "prime video"),
    "apple": ("apple", "itunes"),
    "microsoft": ("microsoft", "msft", "office 365", "office365"),
    "google": ("google",),
    "adobe": ("adobe",),
    "openai": ("openai", "chatgpt"),
    "shopify": ("shopify",),
    "canva": ("canva",),
    "hawkhost": ("hawk host", "hawkhost"),
    "sonetel": ("sonetel",),
    "elevenlabs": ("elevenlabs", "eleven labs"),
}

_BUCKET_NAMES = {
    "netflix": "Netflix",
    "spotify": "Spotify",
    "youtube": "YouTube Premium",
    "hbo": "HBO Max",
    "disney": "Disney+",
    "amazon": "Amazon Prime",
    "apple": "Apple",
    "microsoft": "Microsoft",
    "google": "Google",
    "adobe": "Adobe",
    "openai": "OpenAI",
    "shopify": "Shopify",
    "canva": "Canva",
    "hawkhost": "Hawk Host",
    "sonetel": "Sonetel",
    "elevenlabs": "ElevenLabs",
}

# Order matters: first matching category wins.
_CATEGORY_KEYWORDS = {
    "streaming": ("netflix", "spotify", "youtube", "hbo", "disney", "amazon prime", "prime video",
                  "apple music", "deezer", "voyo", "twitch"),
    "ai": ("openai", "chatgpt", "anthropic", "elevenlabs", "midjourney"),
    "software": ("adobe", "microsoft", "office 365", "canva", "google", "apple", "github", "dropbox",
                 "notion", "figma", "jetbrains"),
    "hosting": ("hawk host", "shopify", "hosting", "digitalocean", "aws", "heroku", "sonetel"),
    "telecom": ("orange", "vodafone", "telekom", "digi", "rcs", "rds"),
    "utilities": ("enel", "engie", "eon", "e.on", "electrica", "apa nova", "gaz"),
    "fitness": ("gym", "fitness", "sport", "world class", "stay fit"),
    "shopping": ("emag", "altex", "amazon", "ebay"),
    "financial": ("bank", "banca", "insurance", "asigurare", "revolut"),
    "transport": ("uber", "bolt", "stb", "metrorex", "cfr"),
}

_SWEEP_TOKENS = (
    "NETFLIX", "SPOTIFY", "APPLE", "OPENAI", "CHATGPT", "ADOBE", "MICROSOFT", "GOOGLE",
    "YOUTUBE", "AMAZON", "HBO", "DISNEY", "HAWK HOST", "SONETEL", "ELEVENLABS", "SHOPIFY", "CANVA",
)


DEFAULT_VOCABULARY = MerchantVocabulary(
    service_variants=MappingProxyType(dict(_SERVICE_VARIANTS)),
    exclusions=_EXCLUSIONS,
    corporate_suffixes=_CORPORATE_SUFFIXES,
    location_suffixes=_LOCATION_SUFFIXES,
    lenient_brands=_LENIENT_BRANDS,
    service_buckets=MappingProxyType(dict(_SERVICE_BUCKETS)),
    bucket_names=MappingProxyType(dict(_BUCKET_NAMES)),
    category_keywords=MappingProxyType(dict(_CATEGORY_KEYWORDS)),
    sweep_tokens=_SWEEP_TOKENS,
)
