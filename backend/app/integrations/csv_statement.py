"""
Generic bank CSV statement adapter.
Maps localized (Romanian/English) column headers onto canonical fields.
"""
import csv
import io
import logging
import re
from datetime import date
from typing import Dict, List, Optional

from app.errors import InputValidationError, NoTransactionsError
from app.integrations.base import StatementAdapter, TransactionData
from app.services.transaction_parser import ParseOptions, parse_amount, parse_date, resolve_currency

logger = logging.getLogger(__name__)

HEADER_MAP: Dict[str, str] = {
    "data": "date",
    "date": "date",
    "data tranzactiei": "date",
    "data tranzacţiei": "date",
    "data tranzacției": "date",
    "transaction date": "date",
    "booking date": "date",
    "data operatiunii": "date",
    "suma": "amount",
    "sumă": "amount",
    "valoare": "amount",
    "suma ron": "amount",
    "amount": "amount",
    "value": "amount",
    "beneficiar": "merchant",
    "merchant": "merchant",
    "comerciant": "merchant",
    "payee": "merchant",
    "beneficiary": "merchant",
    "descriere": "description",
    "detalii": "description",
    "explicatie": "description",
    "explicație": "description",
    "description": "description",
    "details": "description",
    "moneda": "currency",
    "monedă": "currency",
    "valuta": "currency",
    "currency": "currency",
}


def normalize_header(header: Optional[str]) -> Optional[str]:
    if header is None:
        return None
    key = re.sub(r"\s+", " ", header.replace("﻿", "")).strip().lower()
    return HEADER_MAP.get(key)


class CsvStatementAdapter(StatementAdapter):
    """Adapter for CSV exports with a header row."""

    extraction_method = "csv"

    def __init__(self, csv_content: str, options: Optional[ParseOptions] = None):
        """
        Initialize with CSV content.

        Args:
            csv_content: String content of the CSV file
            options: Currency and date bounds used when parsing rows
        """
        self.csv_content = csv_content.replace("\r\n", "\n").replace("\r", "\n")
        self.options = options or ParseOptions()

    @classmethod
    def from_bytes(cls, content: bytes, options: Optional[ParseOptions] = None) -> "CsvStatementAdapter":
        for encoding in ("utf-8-sig", "cp1250", "latin-1"):
            try:
                return cls(content.decode(encoding), options)
            except UnicodeDecodeError:
                continue
        raise InputValidationError("Could not decode the CSV file", "Save the file as UTF-8 and try again.")

    def _detect_delimiter(self) -> str:
        """Detect the delimiter used in the CSV file."""
        first_line = self.csv_content.split("\n", 1)[0]
        counts = {d: first_line.count(d) for d in (";", "\t", ",")}
        best = max(counts, key=counts.get)
        if counts[best] > 0:
            return best

        sample = self.csv_content[:2048]
        try:
            return csv.Sniffer().sniff(sample, delimiters=";\t,").delimiter
        except csv.Error:
            return ","

    def normalize_transaction(self, raw: dict) -> Optional[TransactionData]:
        """Transform one header-normalized row; None when date, amount or merchant is missing."""
        parsed_date: Optional[date] = parse_date(raw.get("date") or "", self.options.today)
        amount = parse_amount(raw.get("amount") or "")
        merchant = (raw.get("merchant") or "").strip() or (raw.get("description") or "").strip()

        if parsed_date is None or amount is None or amount == 0 or not merchant:
            return None

        transaction_type = "debit" if amount < 0 else "credit"
        value, currency = resolve_currency(abs(amount), raw.get("currency"), self.options)
        return TransactionData(
            date=parsed_date,
            amount=value,
            currency=currency,
            beneficiary=merchant,
            description=(raw.get("description") or "").strip(),
            transaction_type=transaction_type,
        )

    def fetch_transactions(self) -> List[TransactionData]:
        delimiter = self._detect_delimiter()
        reader = csv.reader(io.StringIO(self.csv_content), delimiter=delimiter)

        try:
            headers = next(reader)
        except StopIteration:
            raise NoTransactionsError("The CSV file is empty", "Upload a CSV export that contains transactions.")

        fields = [normalize_header(h) for h in headers]
        if "date" not in fields or "amount" not in fields:
            raise NoTransactionsError(
                "No valid transactions found in the CSV file",
                f"Could not find date and amount columns in header: {', '.join(h.strip() for h in headers)}",
            )

        transactions = []
        skipped = 0
        for row in reader:
            if not any(cell.strip() for cell in row):
                continue
            record = {}
            for field_name, value in zip(fields, row):
                if field_name and field_name not in record:
                    record[field_name] = value
            txn = self.normalize_transaction(record)
            if txn is None:
                skipped += 1
                continue
            transactions.append(txn)

        logger.info(f"[CSV_STATEMENT] Parsed {len(transactions)} rows, skipped {skipped}")
        if not transactions:
            raise NoTransactionsError(
                "No valid transactions found in the CSV file",
                "Every row was missing a date, an amount or a merchant.",
            )
        return transactions
