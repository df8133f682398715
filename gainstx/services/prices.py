"""
gainstx/services/prices.py

Fills USD valuations that importers could not provide.

Two passes run in order:
  1) trade prices: a crypto-to-crypto trade whose other leg has a USD value
     takes that value (the per-unit price is then re-derived for this leg's
     currency, never copied)
  2) market prices: any remaining non-USD row asks a price oracle for the
     daily USD price of its currency on the row's date

A row the oracle has no price for is logged and left alone; the gains walk
reports it as a missing price for that currency.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from gainstx.config import PRICE_API_TIMEOUT, PRICE_API_URL
from gainstx.constants import TX_TRANSFER, USD
from gainstx.errors import BackfillError, PriceLookupError
from gainstx.models.transaction import Transaction
from gainstx.services.ledger import query_transactions, save_transaction
from gainstx.services.pricing import ensure_utc, round_usd, to_decimal

logger = logging.getLogger(__name__)

# Ticker => CoinGecko coin id
COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "LTC": "litecoin",
    "BCH": "bitcoin-cash",
    "ETC": "ethereum-classic",
    "XRP": "ripple",
    "XMR": "monero",
    "ZEC": "zcash",
    "DASH": "dash",
    "DOGE": "dogecoin",
}


# ------------------------------------------------------------------------------
# Price oracle
# ------------------------------------------------------------------------------
class CoinGeckoOracle:
    """
    Daily USD prices from the CoinGecko history endpoint. Answers are cached
    per (currency, date) for the lifetime of the oracle, including misses,
    so one backfill run asks for each day at most once.
    """

    def __init__(
        self,
        base_url: str = PRICE_API_URL,
        client: Optional[httpx.Client] = None,
        coin_ids: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=PRICE_API_TIMEOUT)
        self.coin_ids = coin_ids or COINGECKO_IDS
        self._cache: Dict[Tuple[str, date], Optional[Decimal]] = {}

    def close(self):
        self.client.close()

    def get_price(self, currency: str, day) -> Optional[Decimal]:
        if isinstance(day, datetime):
            day = ensure_utc(day).date()

        key = (currency, day)
        if key in self._cache:
            return self._cache[key]

        coin_id = self.coin_ids.get(currency.upper())
        if coin_id is None:
            logger.warning(f"No price source for currency {currency}")
            self._cache[key] = None
            return None

        price = self._fetch(coin_id, day)
        self._cache[key] = price
        return price

    def _fetch(self, coin_id: str, day: date) -> Optional[Decimal]:
        # CoinGecko requires DD-MM-YYYY
        url = f"{self.base_url}/coins/{coin_id}/history"
        params = {"date": day.strftime("%d-%m-%Y"), "localization": "false"}
        try:
            resp = self.client.get(url, params=params)
        except httpx.HTTPError as e:
            raise PriceLookupError(f"Price lookup for {coin_id} on {day} failed: {e}") from e

        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise PriceLookupError(
                f"Price lookup for {coin_id} on {day} failed: HTTP {resp.status_code}"
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise PriceLookupError(f"Price lookup for {coin_id} on {day} returned invalid JSON") from e

        # history returns the price under market_data.current_price.usd
        market_data = data.get("market_data") or {}
        price = (market_data.get("current_price") or {}).get("usd")
        if price is None:
            return None
        return to_decimal(price)


# ------------------------------------------------------------------------------
# Backfill passes
# ------------------------------------------------------------------------------
def backfill_trade_prices(db: Session) -> int:
    """
    Copy usd_value from the quote leg of a trade onto its base leg.
    Both legs must describe the same trade from opposite sides.
    """
    missing = query_transactions(
        db,
        Transaction.currency != USD,
        Transaction.exchange_reference.isnot(None),
        Transaction.type != TX_TRANSFER,
        Transaction.usd_price.is_(None),
    )

    filled = 0
    for base in missing:
        quote = (
            db.query(Transaction)
            .filter(
                Transaction.exchange_reference == base.exchange_reference,
                Transaction.currency == base.exchange_currency,
            )
            .first()
        )
        if quote is None:
            raise BackfillError(
                f"Trade {base.exchange_reference}: no {base.exchange_currency} leg for transaction {base.id}"
            )

        if to_decimal(quote.amount) != to_decimal(base.exchange_value) or \
                to_decimal(quote.exchange_value) != to_decimal(base.amount):
            raise BackfillError(
                f"Trade {base.exchange_reference}: legs disagree "
                f"({base.amount} {base.currency} for {base.exchange_value} {base.exchange_currency}, "
                f"but quote leg is {quote.amount} {quote.currency} for {quote.exchange_value})"
            )

        if quote.usd_value is not None:
            base.usd_value = quote.usd_value
            save_transaction(db, base)
            filled += 1

    db.commit()
    logger.info(f"Backfilled {filled} of {len(missing)} trade prices")
    return filled


def backfill_market_prices(db: Session, oracle) -> Tuple[int, int]:
    """
    Price every remaining non-USD row through the oracle.
    Returns (filled, still_missing).
    """
    missing = query_transactions(
        db,
        Transaction.currency != USD,
        Transaction.amount != 0,
        Transaction.usd_price.is_(None),
    )

    filled = 0
    unavailable = 0
    for tx in missing:
        price = oracle.get_price(tx.currency, tx.timestamp)
        if price is None:
            logger.warning(f"No market price for {tx.currency} on {tx.timestamp.date()} (id={tx.id})")
            unavailable += 1
            continue

        tx.usd_value = round_usd(abs(to_decimal(price) * to_decimal(tx.amount)))
        save_transaction(db, tx)
        filled += 1

    db.commit()
    logger.info(f"Backfilled {filled} market prices, {unavailable} unavailable")
    return filled, unavailable
