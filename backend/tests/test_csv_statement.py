"""
Tests for the generic CSV statement adapter.
"""
import os
import sys
from datetime import date
from decimal import Decimal

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.errors import NoTransactionsError  # noqa: E402
from app.integrations.csv_statement import CsvStatementAdapter, normalize_header  # noqa: E402
from app.services.transaction_parser import ParseOptions  # noqa: E402
from tests.statement_fixtures import NETFLIX_CSV  # noqa: E402


def _expect_no_transactions(content: str) -> None:
    try:
        CsvStatementAdapter(content).fetch_transactions()
    except NoTransactionsError as e:
        assert e.code == "no_transactions"
    else:
        raise AssertionError("Expected NoTransactionsError")


def test_header_aliases() -> None:
    assert normalize_header("Data tranzactiei") == "date"
    assert normalize_header(" Suma ") == "amount"
    assert normalize_header("Beneficiar") == "merchant"
    assert normalize_header("Transaction Date") == "date"
    assert normalize_header("Balance") is None
    assert normalize_header(None) is None
    print("✓ Romanian and English headers map to canonical fields")


def test_comma_separated_export() -> None:
    transactions = CsvStatementAdapter(NETFLIX_CSV).fetch_transactions()
    assert len(transactions) == 3
    assert [t.date for t in transactions] == [date(2024, 3, 1), date(2024, 4, 1), date(2024, 5, 2)]
    assert all(t.amount == Decimal("45.00") for t in transactions)
    assert all(t.beneficiary == "NETFLIX.COM" for t in transactions)
    assert all(t.currency == "RON" for t in transactions)
    print("✓ Comma-separated export parses")


def test_semicolon_export_skips_invalid_rows() -> None:
    content = (
        "Data tranzactiei;Suma;Comerciant;Descriere\n"
        "05.01.2024;-45,00;NETFLIX.COM;Abonament\n"
        ";-10,00;LIPSA DATA;\n"
        "06.01.2024;abc;SUMA GRESITA;\n"
        "07.01.2024;-20,00;;\n"
        "08.01.2024;-30,00;;Plata MEGA IMAGE\n"
        ";;;\n"
    )
    transactions = CsvStatementAdapter(content).fetch_transactions()
    assert len(transactions) == 2

    netflix, mega = transactions
    assert netflix.amount == Decimal("45.00")
    assert netflix.transaction_type == "debit"
    assert netflix.description == "Abonament"
    assert mega.beneficiary == "Plata MEGA IMAGE"
    print("✓ Semicolon export with comma decimals; invalid rows skipped")


def test_foreign_currency_column_is_converted() -> None:
    content = "date,amount,merchant,currency\n2024-03-01,-10.00,SPOTIFY,EUR\n"
    adapter = CsvStatementAdapter(content, ParseOptions(foreign_currency_multiplier=Decimal("5")))
    transactions = adapter.fetch_transactions()
    assert transactions[0].amount == Decimal("50.00")
    assert transactions[0].currency == "RON"
    print("✓ Foreign currency rows convert at the fixed multiplier")


def test_from_bytes_handles_bom_and_legacy_encodings() -> None:
    utf8 = CsvStatementAdapter.from_bytes(b"\xef\xbb\xbf" + NETFLIX_CSV.encode("utf-8"))
    assert len(utf8.fetch_transactions()) == 3

    legacy = "data;suma;beneficiar\n01.03.2024;-12,00;CAFENEA ŞTEFAN\n".encode("cp1250")
    transactions = CsvStatementAdapter.from_bytes(legacy).fetch_transactions()
    assert transactions[0].beneficiary == "CAFENEA ŞTEFAN"
    print("✓ UTF-8 BOM and cp1250 exports decode")


def test_unusable_files_raise_no_transactions() -> None:
    _expect_no_transactions("")
    _expect_no_transactions("data,suma,beneficiar\n,,\n")
    _expect_no_transactions("foo,bar\n1,2\n")
    _expect_no_transactions("data,suma,beneficiar\nnot-a-date,xx,SHOP\n")
    print("✓ Empty, headerless and all-invalid files raise NoTransactionsError")


if __name__ == "__main__":
    test_header_aliases()
    test_comma_separated_export()
    test_semicolon_export_skips_invalid_rows()
    test_foreign_currency_column_is_converted()
    test_from_bytes_handles_bom_and_legacy_encodings()
    test_unusable_files_raise_no_transactions()
    print("\nAll CSV statement tests passed.")
