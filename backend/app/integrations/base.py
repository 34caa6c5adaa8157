"""
Base adapter interface for statement sources.
"""
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, PlainSerializer, field_validator

# Decimal internally, plain JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class TransactionData(BaseModel):
    """Canonical transaction data model. Amount is always a positive magnitude."""
    model_config = ConfigDict(frozen=True)

    date: date
    amount: Money
    currency: str
    beneficiary: str
    description: str = ""
    transaction_type: str = "debit"  # debit, credit

    @field_validator("amount")
    @classmethod
    def _magnitude(cls, value: Decimal) -> Decimal:
        return abs(value)


class StatementAdapter(ABC):
    """Abstract base class for statement adapters (CSV exports, PDF statements)."""

    extraction_method: str = "text"
    page_count: Optional[int] = None

    @abstractmethod
    def fetch_transactions(self) -> List[TransactionData]:
        """Parse all transactions from the statement."""
        pass

    @abstractmethod
    def normalize_transaction(self, raw: dict) -> Optional[TransactionData]:
        """Convert a source-specific record to the canonical format (None if unusable)."""
        pass
