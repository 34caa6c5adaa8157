"""
Multi-strategy transaction parsing for statement text.

Statement layouts vary a lot between banks, so several independent strategies run
over the same text and their results are unioned, then deduplicated on
(date, amount, beneficiary). Each strategy is a pure function of the text and the
parse options, so they can run in any order.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from dateutil import parser as dateutil_parser

from app.integrations.base import TransactionData
from app.services.merchant_normalizer import MerchantNormalizer, get_normalizer

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_FUTURE_YEARS = 5
WINDOW_RADIUS = 200
CONTEXT_RADIUS = 100
BLOCK_MAX_LINES = 4

MONTHS: Dict[str, int] = {
    # Romanian
    "ian": 1, "ianuarie": 1, "feb": 2, "februarie": 2, "mar": 3, "martie": 3, "mart": 3,
    "apr": 4, "aprilie": 4, "mai": 5, "iun": 6, "iunie": 6, "iul": 7, "iulie": 7,
    "aug": 8, "august": 8, "sep": 9, "sept": 9, "septembrie": 9, "oct": 10, "octombrie": 10,
    "nov": 11, "noiembrie": 11, "dec": 12, "decembrie": 12,
    # English
    "jan": 1, "january": 1, "february": 2, "march": 3, "april": 4, "may": 5,
    "jun": 6, "june": 6, "jul": 7, "july": 7, "september": 9, "october": 10,
    "november": 11, "december": 12,
    # Seen on multilingual card statements
    "mayo": 5, "juni": 6, "juli": 7,
}

STOPWORDS = frozenset({
    "and", "or", "the", "of", "in", "on", "at", "to", "for", "with", "by",
    "si", "sau", "de", "la", "cu", "pe", "din", "pentru", "catre",
    "card", "pos", "atm", "transfer", "payment", "transaction", "fee",
    "ron", "lei", "eur", "usd", "gbp", "currency", "amount", "sum", "suma", "valoare",
    "date", "data", "time", "from", "description", "reference", "ref",
    "debit", "credit", "sold", "plata", "cumparare", "tranzactie", "nr",
    "merchant", "comerciant", "beneficiar", "payee", "recipient",
}) | frozenset(MONTHS)

CORPORATE_SUFFIX_PATTERN = re.compile(
    r"\b(?:SRL|SA|PFA|LTD|INC|CORP|LLC|GMBH|SERVICES|SERVICE|ROMANIA|RO)\b\.?", re.IGNORECASE
)
CREDIT_KEYWORDS = re.compile(
    r"\b(?:incasare|alimentare|salariu|received|refund|rambursare|deposit|depunere)\b", re.IGNORECASE
)

_MONTH_WORD = r"(?i:" + "|".join(sorted(MONTHS, key=len, reverse=True)) + r")\.?"
DATE_ISO = r"\d{4}-\d{1,2}-\d{1,2}"
DATE_NUMERIC = r"\d{1,2}[./-]\d{1,2}[./-]\d{2,4}"
DATE_WORD = r"\d{1,2}\s+" + _MONTH_WORD + r"\s+\d{2,4}"
DATE_ANY = rf"(?<!\d)(?:{DATE_ISO}|{DATE_NUMERIC}|{DATE_WORD})(?!\d)"
AMOUNT = r"(?<![\d.,])[-+]?(?:\d{1,3}(?:[.,]\d{3})+|\d+)[.,]\d{2}(?![.,]?\d)"
CURRENCY = r"(?:RON|LEI|EUR|USD|€|\$)"

DATE_RE = re.compile(DATE_ANY)
AMOUNT_RE = re.compile(AMOUNT)
CURRENCY_RE = re.compile(rf"(?<![A-Za-z]){CURRENCY}(?![A-Za-z])", re.IGNORECASE)

FOREIGN_CURRENCIES = {"EUR": "EUR", "USD": "USD", "€": "EUR", "$": "USD"}


@dataclass(frozen=True)
class ParseOptions:
    reporting_currency: str = "RON"
    foreign_currency_multiplier: Decimal = Decimal("5")
    today: date = field(default_factory=date.today)
    sweep_tokens: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------

def _valid_year(year: int, today: date) -> bool:
    return MIN_YEAR <= year <= today.year + MAX_FUTURE_YEARS


def _expand_year(raw: str) -> Optional[int]:
    if len(raw) == 2:
        value = int(raw)
        return 2000 + value if value < 50 else 1900 + value
    if len(raw) == 4:
        return int(raw)
    return None


def parse_date(text: str, today: Optional[date] = None) -> Optional[date]:
    """
    Parse a statement date.

    Accepts DD.MM.YYYY / DD/MM/YYYY / DD-MM-YYYY (2-digit years too), ISO
    YYYY-MM-DD and "DD <month> YYYY" in Romanian or English, then falls back to a
    day-first generic parse. Impossible dates and years outside the sane range
    return None.
    """
    if not text:
        return None
    today = today or date.today()
    value = text.strip()

    try:
        match = re.fullmatch(r"(\d{4})-(\d{1,2})-(\d{1,2})", value)
        if match:
            parsed = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            return parsed if _valid_year(parsed.year, today) else None

        match = re.fullmatch(r"(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})", value)
        if match:
            year = _expand_year(match.group(3))
            if year is None:
                return None
            parsed = date(year, int(match.group(2)), int(match.group(1)))
            return parsed if _valid_year(parsed.year, today) else None

        match = re.fullmatch(r"(\d{1,2})\s+(" + _MONTH_WORD + r")\s+(\d{2,4})", value)
        if match:
            month = MONTHS.get(match.group(2).rstrip(".").lower())
            year = _expand_year(match.group(3))
            if month is None or year is None:
                return None
            parsed = date(year, month, int(match.group(1)))
            return parsed if _valid_year(parsed.year, today) else None
    except ValueError:
        return None

    try:
        parsed = dateutil_parser.parse(value, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None
    return parsed if _valid_year(parsed.year, today) else None


def parse_amount(text: str) -> Optional[Decimal]:
    """
    Parse a signed amount, treating whichever of the last ',' or '.' is rightmost
    as the decimal separator.
    """
    if not text:
        return None
    cleaned = re.sub(r"[^\d,.\-+]", "", text)
    if not cleaned:
        return None

    sign = -1 if cleaned.startswith("-") else 1
    cleaned = cleaned.lstrip("+-").replace("-", "").replace("+", "")

    decimal_pos = max(cleaned.rfind(","), cleaned.rfind("."))
    if decimal_pos >= 0:
        integer_part = re.sub(r"[,.]", "", cleaned[:decimal_pos])
        fraction = re.sub(r"[,.]", "", cleaned[decimal_pos + 1:])
        normalized = f"{integer_part or '0'}.{fraction or '0'}"
    else:
        normalized = cleaned

    try:
        return Decimal(normalized) * sign
    except InvalidOperation:
        return None


def resolve_currency(
    amount: Decimal,
    currency_text: Optional[str],
    options: ParseOptions,
) -> Tuple[Decimal, str]:
    """Convert foreign amounts into the reporting currency at the fixed multiplier."""
    if currency_text:
        key = currency_text.strip().upper()
        if key in FOREIGN_CURRENCIES:
            converted = (amount * options.foreign_currency_multiplier).quantize(Decimal("0.01"))
            return converted, options.reporting_currency
    return amount, options.reporting_currency


# ---------------------------------------------------------------------------
# Beneficiary extraction
# ---------------------------------------------------------------------------

_LABEL_TAIL = r"\s*:?\s*([A-Za-z][A-Za-z0-9&.*'\- ]{1,60}?)(?=\s{2,}|\s+\d|[,;|]|$)"
LABEL_PATTERNS = (
    re.compile(r"(?:plata\s+la|transfer\s+catre|payment\s+to|payee)" + _LABEL_TAIL, re.IGNORECASE | re.MULTILINE),
    re.compile(r"\b(?:card|pos|atm)\s+(?:la|at)" + _LABEL_TAIL, re.IGNORECASE | re.MULTILINE),
    re.compile(r"(?:comerciant|merchant|beneficiar|recipient)" + _LABEL_TAIL, re.IGNORECASE | re.MULTILINE),
)
_CAPS_TOKEN = r"[A-Z][A-Z0-9&.*'\-]*(?![a-z])"
CAPS_RUN = re.compile(rf"\b{_CAPS_TOKEN}(?:[ \t]+{_CAPS_TOKEN})*")
MIXED_RUN = re.compile(r"\b[A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)*\b")
ALPHA_TOKEN = re.compile(r"[A-Za-z]{3,}")


def _strip_stopwords(candidate: str) -> str:
    words = [w for w in candidate.split() if w.lower().strip(".*-") not in STOPWORDS]
    return " ".join(words)


def clean_beneficiary_name(name: str) -> str:
    cleaned = re.sub(r"[^\w\s&.*'+\-/]", " ", name)
    cleaned = CORPORATE_SUFFIX_PATTERN.sub(" ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" .-/")
    return cleaned.upper()


def _accept(candidate: str) -> Optional[str]:
    stripped = _strip_stopwords(candidate)
    if len(re.sub(r"[^A-Za-z]", "", stripped)) < 3:
        return None
    cleaned = clean_beneficiary_name(stripped)
    return cleaned or None


def extract_beneficiary(text: str) -> Optional[str]:
    """
    Pick the most plausible merchant name from a transaction's text.

    Cascade: labelled patterns, ALL-CAPS runs, Capitalized runs, the first
    meaningful words, then any alphabetic token not in the stoplist.
    """
    if not text:
        return None

    for pattern in LABEL_PATTERNS:
        match = pattern.search(text)
        if match:
            accepted = _accept(match.group(1))
            if accepted:
                return accepted

    for match in CAPS_RUN.finditer(text):
        accepted = _accept(match.group(0))
        if accepted:
            return accepted

    for match in MIXED_RUN.finditer(text):
        accepted = _accept(match.group(0))
        if accepted:
            return accepted

    meaningful = [
        word for word in text.split()
        if not any(ch.isdigit() for ch in word)
        and re.fullmatch(r"[A-Za-z][A-Za-z&.*'\-]+", word)
        and word.lower().strip(".*-") not in STOPWORDS
    ]
    if meaningful:
        accepted = _accept(" ".join(meaningful[:2]))
        if accepted:
            return accepted

    for match in ALPHA_TOKEN.finditer(text):
        token = match.group(0)
        if len(token) > 3 and token.lower() not in STOPWORDS:
            return token.upper()

    return None


# ---------------------------------------------------------------------------
# Record building
# ---------------------------------------------------------------------------

def _strip_fields(text: str) -> str:
    without = DATE_RE.sub(" ", text)
    without = AMOUNT_RE.sub(" ", without)
    without = CURRENCY_RE.sub(" ", without)
    return re.sub(r"\s+", " ", without).strip()


def build_transaction(
    date_text: str,
    amount_text: str,
    currency_text: Optional[str],
    context: str,
    options: ParseOptions,
    transaction_type: Optional[str] = None,
    beneficiary: Optional[str] = None,
) -> Optional[TransactionData]:
    """Assemble a TransactionData from matched fields; None when any field is unusable."""
    parsed_date = parse_date(date_text, options.today)
    if parsed_date is None:
        return None
    amount = parse_amount(amount_text)
    if amount is None or amount == 0:
        return None

    if transaction_type is None:
        stripped = amount_text.strip()
        if stripped.startswith("-"):
            transaction_type = "debit"
        elif stripped.startswith("+") or CREDIT_KEYWORDS.search(context):
            transaction_type = "credit"
        else:
            transaction_type = "debit"

    if beneficiary is None:
        beneficiary = extract_beneficiary(_strip_fields(context))
    if not beneficiary:
        return None

    value, currency = resolve_currency(abs(amount), currency_text, options)
    return TransactionData(
        date=parsed_date,
        amount=value,
        currency=currency,
        beneficiary=beneficiary,
        description=re.sub(r"\s+", " ", context).strip()[:200],
        transaction_type=transaction_type,
    )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def parse_table_rows(text: str, options: ParseOptions) -> List[TransactionData]:
    """Column layouts: `date  description  amount [amount]`, separated by tabs or 3+ spaces."""
    results = []
    row_pattern = re.compile(
        rf"^\s*({DATE_ANY})\s+(.+?)\s+({AMOUNT})(?:\s+({AMOUNT}))?\s*({CURRENCY})?\s*$",
        re.IGNORECASE,
    )
    for line in text.splitlines():
        columns = [c.strip() for c in re.split(r"\t|\s{3,}", line) if c.strip()]
        if len(columns) >= 3:
            date_col = next((c for c in columns if DATE_RE.fullmatch(c)), None)
            amount_cols = [c for c in columns if AMOUNT_RE.fullmatch(c)]
            if date_col and amount_cols:
                description = " ".join(c for c in columns if c != date_col and c not in amount_cols)
                txn = _from_amount_columns(date_col, amount_cols, None, description, options)
                if txn:
                    results.append(txn)
                continue

        match = row_pattern.match(line)
        if match:
            amounts = [a for a in (match.group(3), match.group(4)) if a]
            txn = _from_amount_columns(match.group(1), amounts, match.group(5), match.group(2), options)
            if txn:
                results.append(txn)
    return results


def _from_amount_columns(
    date_text: str,
    amounts: List[str],
    currency_text: Optional[str],
    description: str,
    options: ParseOptions,
) -> Optional[TransactionData]:
    first = amounts[0]
    transaction_type = None
    # Two columns read as debit/credit: a zero debit means the credit column holds the value
    if len(amounts) > 1 and not first.strip().startswith(("-", "+")):
        debit = parse_amount(first)
        if debit is not None and debit > 0:
            transaction_type = "debit"
        else:
            first = amounts[1]
            transaction_type = "credit"
    return build_transaction(date_text, first, currency_text, description, options, transaction_type)


def parse_blocks(text: str, options: ParseOptions) -> List[TransactionData]:
    """Multi-line records: a line opening with a date starts a block that runs to the next one."""
    results = []
    opener = re.compile(rf"^\s*({DATE_ANY})")
    amount_with_currency = re.compile(rf"({AMOUNT})\s*({CURRENCY})?", re.IGNORECASE)

    lines = text.splitlines()
    index = 0
    while index < len(lines):
        match = opener.match(lines[index])
        if not match:
            index += 1
            continue

        block = [lines[index][match.end():]]
        cursor = index + 1
        while cursor < len(lines) and len(block) < BLOCK_MAX_LINES and not opener.match(lines[cursor]):
            block.append(lines[cursor])
            cursor += 1

        block_text = "\n".join(block)
        amount_match = amount_with_currency.search(block_text)
        if amount_match:
            txn = build_transaction(
                match.group(1), amount_match.group(1), amount_match.group(2), block_text, options
            )
            if txn:
                results.append(txn)
        index = cursor
    return results


LINE_LAYOUTS = (
    # date amount [currency] description
    re.compile(rf"^\s*(?P<date>{DATE_NUMERIC}|{DATE_ISO})\s+(?P<amount>{AMOUNT})\s*(?P<currency>{CURRENCY})?\s+(?P<desc>.+)$", re.IGNORECASE),
    # DD Month YYYY amount [currency] description
    re.compile(rf"^\s*(?P<date>{DATE_WORD})\s+(?P<amount>{AMOUNT})\s*(?P<currency>{CURRENCY})?\s+(?P<desc>.+)$", re.IGNORECASE),
    # amount [currency] date description
    re.compile(rf"^\s*(?P<amount>{AMOUNT})\s*(?P<currency>{CURRENCY})?\s+(?P<date>{DATE_ANY})\s+(?P<desc>.+)$", re.IGNORECASE),
    # date description amount [currency]
    re.compile(rf"^\s*(?P<date>{DATE_ANY})\s+(?P<desc>.+?)\s+(?P<amount>{AMOUNT})\s*(?P<currency>{CURRENCY})?(?:\s|$)", re.IGNORECASE),
)


def parse_lines(text: str, options: ParseOptions) -> List[TransactionData]:
    """Single-line records in any of the known field orders."""
    results = []
    for line in text.splitlines():
        for layout in LINE_LAYOUTS:
            match = layout.match(line)
            if not match:
                continue
            txn = build_transaction(
                match.group("date"), match.group("amount"), match.group("currency"),
                match.group("desc"), options,
            )
            if txn:
                results.append(txn)
                break
    return results


def _has_words(text: str) -> bool:
    return bool(ALPHA_TOKEN.search(_strip_fields(text)))


def _line_bounds(text: str, position: int) -> Tuple[int, int]:
    start = text.rfind("\n", 0, position) + 1
    end = text.find("\n", position)
    return start, end if end >= 0 else len(text)


def _window_context(text: str, date_match: re.Match, amount_match: re.Match) -> str:
    """Nearest text naming the merchant for a date/amount pair."""
    line_start, line_end = _line_bounds(text, amount_match.start())
    if amount_match.start() >= date_match.end():
        nearest = text[date_match.end():amount_match.start()]
        fallback = text[amount_match.end():line_end]
    else:
        nearest = text[amount_match.end():date_match.start()]
        fallback = text[line_start:amount_match.start()]
    for candidate in (nearest, fallback):
        if _has_words(candidate):
            return candidate
    center = amount_match.start()
    return text[max(0, center - CONTEXT_RADIUS):center + CONTEXT_RADIUS]


def parse_windows(text: str, options: ParseOptions) -> List[TransactionData]:
    """
    Layout-free fallback: every amount within WINDOW_RADIUS of a date is a candidate.

    The window stops at the neighbouring dates, and amounts before a date only
    count when they sit on the date's own line.
    """
    results = []
    dates = list(DATE_RE.finditer(text))
    amounts = list(AMOUNT_RE.finditer(text))
    for position, date_match in enumerate(dates):
        line_start, _ = _line_bounds(text, date_match.start())
        low = max(date_match.start() - WINDOW_RADIUS, line_start)
        if position > 0:
            low = max(low, dates[position - 1].end())
        high = date_match.end() + WINDOW_RADIUS
        if position + 1 < len(dates):
            high = min(high, dates[position + 1].start())

        for amount_match in amounts:
            before = low <= amount_match.start() and amount_match.end() <= date_match.start()
            after = date_match.end() <= amount_match.start() and amount_match.end() <= high
            if not (before or after):
                continue
            currency_match = re.match(rf"\s*({CURRENCY})", text[amount_match.end():], re.IGNORECASE)
            txn = build_transaction(
                date_match.group(0), amount_match.group(0),
                currency_match.group(1) if currency_match else None,
                _window_context(text, date_match, amount_match), options,
            )
            if txn:
                results.append(txn)
    return results


def parse_known_merchants(text: str, options: ParseOptions) -> List[TransactionData]:
    """Sweep for known service tokens laid out as `MERCHANT ... amount [currency] ... date` on one line."""
    results = []
    for token in options.sweep_tokens:
        pattern = re.compile(
            rf"(?<![A-Za-z0-9])(?P<merchant>{re.escape(token)}[^\n]{{0,40}}?)[ \t]+"
            rf"(?P<amount>{AMOUNT})[ \t]*(?P<currency>{CURRENCY})?[^\n]{{0,60}}?(?P<date>{DATE_ANY})",
            re.IGNORECASE,
        )
        for match in pattern.finditer(text):
            merchant = clean_beneficiary_name(_strip_fields(match.group("merchant")))
            if not merchant:
                continue
            txn = build_transaction(
                match.group("date"), match.group("amount"), match.group("currency"),
                match.group(0), options, beneficiary=merchant,
            )
            if txn:
                results.append(txn)
    return results


Strategy = Callable[[str, ParseOptions], List[TransactionData]]

DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (
    parse_table_rows,
    parse_blocks,
    parse_lines,
    parse_windows,
    parse_known_merchants,
)


class TransactionParser:
    """Runs every strategy over the text and returns the deduplicated union."""

    def __init__(
        self,
        options: Optional[ParseOptions] = None,
        strategies: Iterable[Strategy] = DEFAULT_STRATEGIES,
        normalizer: Optional[MerchantNormalizer] = None,
    ):
        self.normalizer = normalizer or get_normalizer()
        self.options = options or ParseOptions(sweep_tokens=self.normalizer.vocabulary.sweep_tokens)
        self.strategies = tuple(strategies)

    def _dedupe_key(self, txn: TransactionData) -> tuple:
        # Strategies read slightly different spans, so compare merchants in normalized form
        merchant = self.normalizer.normalize(txn.beneficiary) or txn.beneficiary
        return (txn.date, txn.amount, merchant)

    def parse(self, text: str) -> List[TransactionData]:
        return self.parse_many([text])

    def parse_many(self, texts: Iterable[str]) -> List[TransactionData]:
        """Parse several text sections with one shared dedup pass."""
        seen = set()
        transactions: List[TransactionData] = []
        for text in texts:
            for strategy in self.strategies:
                try:
                    found = strategy(text, self.options)
                except Exception as e:
                    logger.warning(f"[PARSER] Strategy {strategy.__name__} failed: {type(e).__name__}: {e}")
                    continue
                added = 0
                for txn in found:
                    key = self._dedupe_key(txn)
                    if key in seen:
                        continue
                    seen.add(key)
                    transactions.append(txn)
                    added += 1
                logger.debug(f"[PARSER] {strategy.__name__}: {len(found)} found, {added} new")

        transactions.sort(key=lambda t: t.date)
        logger.info(f"[PARSER] Parsed {len(transactions)} unique transactions")
        return transactions
