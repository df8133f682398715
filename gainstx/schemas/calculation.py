"""
gainstx/schemas/calculation.py

Response models for the pipeline endpoints under /api/calculations.
All of them read from the service-layer result dataclasses
(from_attributes), including computed properties such as 'linked' and
'total'.
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class ReconcileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    exact_positive: int
    exact_negative: int
    fuzzy_positive: int
    fuzzy_negative: int
    autodetected: int
    fees_booked: int
    linked: int


class BackfillResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trade_prices: int
    market_prices: int
    unavailable: int


class CurrencyGainsRead(BaseModel):
    """Per-currency walk outcome. 'error' is set when the currency was skipped."""
    model_config = ConfigDict(from_attributes=True)

    currency: str
    opened: Decimal
    disposed: Decimal
    remaining: Decimal
    disposal_count: int
    error: Optional[str] = None


class GainsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    disposal_count: int
    currencies: List[CurrencyGainsRead]
    errors: List[str]


class SummaryLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    currency: str
    short: Decimal
    long: Decimal
    total: Decimal
    disposal_count: int


class YearSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    year: int
    method: Optional[str] = None
    currencies: List[SummaryLineRead]
    total: SummaryLineRead
