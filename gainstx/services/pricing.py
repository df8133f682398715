"""
gainstx/services/pricing.py

Pure helpers for the derived fields of ledger rows:
  - usd_value / usd_price of a Transaction
  - term of a Disposal
plus the rounding policies used when values are persisted.

Two precisions coexist on purpose: USD amounts are rounded half-up to
cents, crypto fee amounts derived from a fee rate are truncated to
8 decimal places.
"""

from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Optional, Tuple

from dateutil.relativedelta import relativedelta

from gainstx.constants import CRYPTO_QUANT, TERM_LONG, TERM_SHORT, USD, USD_QUANT

PRICE_QUANT = Decimal("0.0000000001")


def to_decimal(value) -> Optional[Decimal]:
    """Coerce DB/JSON values (Decimal, int, str, float) to Decimal; None stays None."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_usd(value: Decimal) -> Decimal:
    return to_decimal(value).quantize(USD_QUANT, rounding=ROUND_HALF_UP)


def truncate_crypto(value: Decimal) -> Decimal:
    """Floor a non-negative crypto amount to 8 decimal places."""
    return to_decimal(value).quantize(CRYPTO_QUANT, rounding=ROUND_DOWN)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ------------------------------------------------------------------------------
# Transaction valuation
# ------------------------------------------------------------------------------
def compute_usd_fields(
    amount,
    usd_value=None,
    exchange_value=None,
    exchange_currency: Optional[str] = None,
) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    """
    Return (usd_value, usd_price) for a ledger row.

    When the trade was settled in USD the exchange value is the exact USD
    value and wins over any imported valuation. usd_price is None while the
    value is unknown or the amount is zero.
    """
    amount = to_decimal(amount)
    usd_value = to_decimal(usd_value)

    if exchange_currency == USD and exchange_value is not None:
        usd_value = round_usd(abs(to_decimal(exchange_value)))
    elif usd_value is not None:
        usd_value = round_usd(usd_value)

    if usd_value is None or not amount:
        return usd_value, None

    usd_price = abs(usd_value / amount).quantize(PRICE_QUANT, rounding=ROUND_HALF_UP)
    return usd_value, usd_price


def derive_usd_fields(tx) -> None:
    """Recompute tx.usd_value / tx.usd_price in place from the row's own fields."""
    tx.usd_value, tx.usd_price = compute_usd_fields(
        tx.amount,
        usd_value=tx.usd_value,
        exchange_value=tx.exchange_value,
        exchange_currency=tx.exchange_currency,
    )


# ------------------------------------------------------------------------------
# Holding period
# ------------------------------------------------------------------------------
def long_term_cutoff(disposed_at: datetime) -> datetime:
    """
    Calendar-date subtraction of one year. A Feb 29 disposal maps to Feb 28
    of the previous year.
    """
    return ensure_utc(disposed_at) - relativedelta(years=1)


def is_long_term(acquired_at: datetime, disposed_at: datetime) -> bool:
    return ensure_utc(acquired_at) < long_term_cutoff(disposed_at)


def holding_term(acquired_at: datetime, disposed_at: datetime) -> str:
    return TERM_LONG if is_long_term(acquired_at, disposed_at) else TERM_SHORT
