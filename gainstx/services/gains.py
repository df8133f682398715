"""
gainstx/services/gains.py

Realized gains engine.

For each currency independently we walk the non-transfer transactions in
strict chronological order (timestamp, then id):
  - positive amounts open a new Lot
  - negative amounts are disposed of against the open lots, one
    Disposal per lot touched, using the DisposalPolicy of the disposal's
    calendar year

"Scorched earth": the disposals table is truncated before every run and
rebuilt from scratch, so re-running on unchanged data yields the same rows.
Disposals of a currency are collected in memory and only written once its
walk completes; a missing usd_price discards that currency alone.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from gainstx.config import DisposalConfig
from gainstx.constants import TX_TRANSFER, USD
from gainstx.errors import MissingPriceError
from gainstx.models.disposal import Disposal
from gainstx.models.transaction import Transaction
from gainstx.services.ledger import (
    get_currencies,
    query_transactions,
    save_disposals,
    truncate_disposals,
)
from gainstx.services.lots import Lot, LotQueue
from gainstx.services.pricing import round_usd, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class CurrencyGains:
    """Outcome of one currency's walk. opened == disposed + remaining."""
    currency: str
    opened: Decimal = Decimal("0")
    disposed: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")
    disposal_count: int = 0
    error: Optional[str] = None


@dataclass
class GainsResult:
    currencies: List[CurrencyGains] = field(default_factory=list)

    @property
    def disposal_count(self) -> int:
        return sum(c.disposal_count for c in self.currencies)

    @property
    def errors(self) -> List[str]:
        return [c.error for c in self.currencies if c.error]

    def for_currency(self, currency: str) -> Optional[CurrencyGains]:
        for item in self.currencies:
            if item.currency == currency:
                return item
        return None


def build_disposal(currency: str, lot: Lot, tx: Transaction, amount: Decimal) -> Disposal:
    """
    One consumption step. Products are taken at full precision and rounded
    to cents only here, at write time; gain is the difference of the
    rounded values so the stored row always satisfies gain = sale - cost.
    """
    cost_basis = round_usd(amount * lot.usd_price)
    sale_price = round_usd(amount * to_decimal(tx.usd_price))
    return Disposal(
        currency=currency,
        buy_transaction_id=lot.transaction_id,
        sell_transaction_id=tx.id,
        acquired_at=lot.timestamp,
        disposed_at=tx.timestamp,
        amount=amount,
        cost_basis=cost_basis,
        sale_price=sale_price,
        gain=sale_price - cost_basis,
    )


def walk_currency(
    currency: str,
    transactions: Iterable[Transaction],
    config: DisposalConfig,
) -> Tuple[List[Disposal], CurrencyGains]:
    """
    Run the lot walk over already-ordered transactions without touching the
    database. Raises MissingPriceError, MissingLotError or
    DisposalConfigError.
    """
    queue = LotQueue(currency)
    stats = CurrencyGains(currency=currency)
    disposals: List[Disposal] = []

    for tx in transactions:
        amount = to_decimal(tx.amount)
        if not amount:
            continue
        if tx.usd_price is None:
            raise MissingPriceError(
                f"Transaction {tx.id} missing usd_price: {tx.timestamp} {tx.type} "
                f"{tx.amount} {tx.currency}"
            )

        if amount > 0:
            # buy or receive: open a lot
            queue.open(Lot(
                transaction_id=tx.id,
                remaining_amount=amount,
                usd_price=to_decimal(tx.usd_price),
                timestamp=tx.timestamp,
            ))
            stats.opened += amount
            continue

        # sell, send or fee: dispose of open lots
        policy = config.get_policy(tx.timestamp.year)
        disposal_price = to_decimal(tx.usd_price)
        amount_remaining = abs(amount)
        while amount_remaining > 0:
            lot, taken = queue.take(policy, amount_remaining, disposal_price, tx.timestamp)
            disposals.append(build_disposal(currency, lot, tx, taken))
            amount_remaining -= taken
            stats.disposed += taken

    stats.remaining = queue.remaining_total
    return disposals, stats


def calculate_gains_for_currency(db: Session, currency: str, config: DisposalConfig) -> CurrencyGains:
    logger.info(f"Calculating gains ({currency})")
    transactions = query_transactions(
        db,
        Transaction.currency == currency,
        Transaction.type != TX_TRANSFER,
    )

    try:
        disposals, stats = walk_currency(currency, transactions, config)
    except MissingPriceError as e:
        logger.error(f"Skipping {currency}: {e}")
        return CurrencyGains(currency=currency, error=str(e))

    stats.disposal_count = save_disposals(db, disposals)
    logger.info(
        f"{currency}: {stats.disposal_count} disposals, opened={stats.opened} "
        f"disposed={stats.disposed} remaining={stats.remaining}"
    )
    return stats


def calculate_gains(db: Session, config: Optional[DisposalConfig] = None) -> GainsResult:
    """
    Truncate disposals and recompute them for every currency in the ledger.
    Fatal errors (missing lots, bad config) propagate; the current
    currency's pending disposals are rolled back with the session.
    """
    config = config or DisposalConfig.from_env()

    truncate_disposals(db)
    db.commit()

    result = GainsResult()
    for currency in get_currencies(db):
        if currency == USD:
            continue
        try:
            result.currencies.append(calculate_gains_for_currency(db, currency, config))
            db.commit()
        except Exception:
            db.rollback()
            raise
    return result
