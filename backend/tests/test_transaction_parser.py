"""
Tests for statement text parsing: fields, beneficiaries and the parsing strategies.
"""
import os
import sys
from datetime import date
from decimal import Decimal

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.transaction_parser import (  # noqa: E402
    ParseOptions,
    TransactionParser,
    extract_beneficiary,
    parse_amount,
    parse_blocks,
    parse_date,
    parse_known_merchants,
    parse_lines,
    parse_table_rows,
    parse_windows,
    resolve_currency,
)
from tests.statement_fixtures import STATEMENT_TEXT  # noqa: E402

TODAY = date(2024, 6, 1)
OPTIONS = ParseOptions(today=TODAY)

BLOCK_TEXT = (
    "12.02.2024\n"
    "Cumparare POS\n"
    "SPOTIFY P1234 STOCKHOLM\n"
    "19,99 EUR\n"
)


def test_parse_amount_separators() -> None:
    assert parse_amount("1.234,56") == Decimal("1234.56")
    assert parse_amount("1,234.56") == Decimal("1234.56")
    assert parse_amount("-45,00") == Decimal("-45.00")
    assert parse_amount("+12.5") == Decimal("12.5")
    assert parse_amount("45") == Decimal("45")
    assert parse_amount("abc") is None
    assert parse_amount("") is None
    print("✓ Amounts parse with the rightmost separator as decimal point")


def test_parse_date_formats() -> None:
    expected = date(2024, 3, 5)
    assert parse_date("05.03.2024", TODAY) == expected
    assert parse_date("05/03/2024", TODAY) == expected
    assert parse_date("05-03-2024", TODAY) == expected
    assert parse_date("2024-03-05", TODAY) == expected
    assert parse_date("05.03.24", TODAY) == expected
    assert parse_date("5 martie 2024", TODAY) == expected
    assert parse_date("5 March 2024", TODAY) == expected
    assert parse_date("March 5, 2024", TODAY) == expected
    print("✓ Numeric, ISO, month-name and fallback dates parse")


def test_parse_date_rejects_impossible_values() -> None:
    assert parse_date("31.02.2024", TODAY) is None
    assert parse_date("05.03.1850", TODAY) is None
    assert parse_date("05.03.2999", TODAY) is None
    assert parse_date("not a date", TODAY) is None
    assert parse_date("", TODAY) is None
    print("✓ Impossible dates and out-of-range years are rejected")


def test_resolve_currency_applies_fixed_multiplier() -> None:
    assert resolve_currency(Decimal("10.00"), "EUR", OPTIONS) == (Decimal("50.00"), "RON")
    assert resolve_currency(Decimal("12.50"), "$", OPTIONS) == (Decimal("62.50"), "RON")
    assert resolve_currency(Decimal("45.00"), "RON", OPTIONS) == (Decimal("45.00"), "RON")
    assert resolve_currency(Decimal("45.00"), None, OPTIONS) == (Decimal("45.00"), "RON")
    print("✓ Foreign amounts convert into the reporting currency")


def test_extract_beneficiary_cascade() -> None:
    assert extract_beneficiary("Plata la: ENEL ENERGIE") == "ENEL ENERGIE"
    assert extract_beneficiary("POS 12345 NETFLIX.COM AMSTERDAM") == "NETFLIX.COM AMSTERDAM"
    assert extract_beneficiary("Payment for Bookbeat Subscription") == "BOOKBEAT SUBSCRIPTION"
    assert extract_beneficiary("12345 678") is None
    assert extract_beneficiary("card pos transfer") is None
    assert extract_beneficiary("") is None
    print("✓ Beneficiary cascade: labels, caps runs, capitalized runs")


def test_line_strategy() -> None:
    transactions = parse_lines(STATEMENT_TEXT, OPTIONS)
    assert len(transactions) == 4

    first = transactions[0]
    assert first.date == date(2024, 1, 5)
    assert first.amount == Decimal("45.00")
    assert first.currency == "RON"
    assert first.beneficiary == "NETFLIX.COM AMSTERDAM"
    assert first.transaction_type == "debit"

    mega = transactions[1]
    assert mega.beneficiary == "MEGA IMAGE"
    assert mega.amount == Decimal("120.35")
    print("✓ Single-line records parse")


def test_table_strategy_with_debit_credit_columns() -> None:
    text = (
        "05.01.2024\tNETFLIX.COM\t45,00\t1.250,00\n"
        "06.01.2024\tSALARIU EXEMPLU SRL\t0,00\t5.000,00\n"
    )
    transactions = parse_table_rows(text, OPTIONS)
    assert len(transactions) == 2

    netflix, salary = transactions
    assert netflix.beneficiary == "NETFLIX.COM"
    assert netflix.amount == Decimal("45.00")
    assert netflix.transaction_type == "debit"

    assert salary.beneficiary == "SALARIU EXEMPLU"
    assert salary.amount == Decimal("5000.00")
    assert salary.transaction_type == "credit"
    print("✓ Table rows read debit/credit columns")


def test_block_strategy_multi_line_records() -> None:
    transactions = parse_blocks(BLOCK_TEXT, OPTIONS)
    assert len(transactions) == 1
    txn = transactions[0]
    assert txn.date == date(2024, 2, 12)
    assert txn.beneficiary.startswith("SPOTIFY")
    assert txn.amount == Decimal("99.95")
    assert txn.currency == "RON"

    assert parse_lines(BLOCK_TEXT, OPTIONS) == []
    print("✓ Multi-line blocks parse; EUR converts at the fixed multiplier")


def test_window_strategy_pairs_date_with_next_amount() -> None:
    text = "Data: 03.04.2024 Beneficiar: HAWK HOST INC Suma: 12.50 USD"
    transactions = parse_windows(text, OPTIONS)
    assert len(transactions) == 1
    txn = transactions[0]
    assert txn.date == date(2024, 4, 3)
    assert txn.beneficiary == "HAWK HOST"
    assert txn.amount == Decimal("62.50")
    print("✓ Window strategy pairs a date with the following amount")


def test_window_strategy_emits_every_amount_near_a_date() -> None:
    transactions = parse_windows("05.03.2024 NETFLIX.COM 45.00 RON fee 2.50 RON", OPTIONS)
    assert sorted(t.amount for t in transactions) == [Decimal("2.50"), Decimal("45.00")]
    assert {t.date for t in transactions} == {date(2024, 3, 5)}
    assert {t.beneficiary for t in transactions} == {"NETFLIX.COM"}

    before = parse_windows("NETFLIX.COM 45.00 RON 05.03.2024", OPTIONS)
    assert len(before) == 1
    assert before[0].amount == Decimal("45.00")
    assert before[0].beneficiary == "NETFLIX.COM"

    # Amounts on earlier lines belong to the earlier record
    assert parse_windows("Sold 1.000,00 RON\n05.03.2024 nimic", OPTIONS) == []
    print("✓ Window strategy emits every amount around a date")


def test_known_merchant_sweep() -> None:
    options = ParseOptions(today=TODAY, sweep_tokens=("NETFLIX",))
    text = "NETFLIX.COM 45.00 EUR 15.03.2024 card ****1234"
    transactions = parse_known_merchants(text, options)
    assert len(transactions) == 1
    txn = transactions[0]
    assert txn.beneficiary == "NETFLIX.COM"
    assert txn.date == date(2024, 3, 15)
    assert txn.amount == Decimal("225.00")

    # The date must be on the same line as the merchant
    assert parse_known_merchants("NETFLIX.COM 45.00\n15.03.2024", options) == []
    print("✓ Known merchant sweep reads merchant-amount-date lines")


def test_parser_deduplicates_across_strategies() -> None:
    parser = TransactionParser(ParseOptions(today=TODAY, sweep_tokens=("NETFLIX", "SPOTIFY")))
    transactions = parser.parse(STATEMENT_TEXT)
    assert len(transactions) == 4
    assert [t.date for t in transactions] == sorted(t.date for t in transactions)

    assert len(parser.parse(BLOCK_TEXT)) == 1
    assert len(parser.parse_many([STATEMENT_TEXT, STATEMENT_TEXT])) == 4
    print("✓ Strategy results are unioned and deduplicated")


def test_failing_strategy_does_not_abort_parsing() -> None:
    def broken(text: str, options: ParseOptions):
        raise RuntimeError("layout exploded")

    parser = TransactionParser(OPTIONS, strategies=(broken, parse_lines))
    assert len(parser.parse(STATEMENT_TEXT)) == 4
    print("✓ A failing strategy is skipped")


if __name__ == "__main__":
    test_parse_amount_separators()
    test_parse_date_formats()
    test_parse_date_rejects_impossible_values()
    test_resolve_currency_applies_fixed_multiplier()
    test_extract_beneficiary_cascade()
    test_line_strategy()
    test_table_strategy_with_debit_credit_columns()
    test_block_strategy_multi_line_records()
    test_window_strategy_pairs_date_with_next_amount()
    test_window_strategy_emits_every_amount_near_a_date()
    test_known_merchant_sweep()
    test_parser_deduplicates_across_strategies()
    test_failing_strategy_does_not_abort_parsing()
    print("\nAll transaction parser tests passed.")
