"""
gainstx/schemas/csv_import.py

Pydantic models for the file importer:
- FileTransactionRow: one validated CSV row (type, sign polarity, decimals)
- CSVParseError: an error or warning found while parsing, with its row number
- CSVImportResponse: result of POST /api/import/file
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, field_validator, model_validator

from gainstx.constants import TX_FEE, TYPE_POLARITY
from gainstx.schemas.transaction import TxType


class FileTransactionRow(BaseModel):
    """
    A single row of an import file. Amounts are signed from the point of
    view of the source account: sends and sells are negative, receives and
    buys positive.
    """
    row_number: int
    date: datetime
    source: str
    currency: str
    type: TxType
    amount: Decimal
    fee: Decimal = Decimal("0")
    fee_rate: Optional[Decimal] = None
    exchange_currency: Optional[str] = None
    exchange_value: Optional[Decimal] = None
    usd_value: Optional[Decimal] = None

    @field_validator("date")
    def force_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("source", "currency")
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("currency", "exchange_currency")
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip().upper() or None

    @field_validator("type", mode="before")
    def lower_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("fee_rate")
    def fee_rate_range(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and not (Decimal("0") <= v < Decimal("1")):
            raise ValueError("fee_rate must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def check_polarity(self):
        polarity = TYPE_POLARITY.get(self.type.value)
        if polarity == 1 and self.amount <= 0:
            raise ValueError(f"{self.type.value} amount must be positive, got {self.amount}")
        if polarity == -1 and self.amount >= 0:
            raise ValueError(f"{self.type.value} amount must be negative, got {self.amount}")
        if self.type.value == TX_FEE and self.amount > 0:
            raise ValueError(f"fee amount must not be positive, got {self.amount}")
        return self


class CSVParseError(BaseModel):
    """An error or warning encountered during parsing."""
    row_number: int
    column: Optional[str] = None
    message: str
    severity: str  # "error" or "warning"


class CSVImportResponse(BaseModel):
    """Response from the import endpoint."""
    success: bool
    sources: List[str]
    imported_count: int
    fee_count: int
    deleted_count: int
    warnings: List[CSVParseError] = []
    message: str
