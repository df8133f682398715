"""
gainstx/services/lots.py

In-memory tax-lot ledger for one currency.

Every positive-amount transaction in the gains walk opens a Lot; disposals
consume open lots in the order chosen by the year's DisposalPolicy:
  - FIFO     => oldest open lot
  - LIFO     => newest open lot
  - TaxMin   => short-term loss, long-term loss, long-term gain, short-term gain;
                highest acquisition price within a category
  - Estimate => lowest estimated tax per unit disposed

LotQueue keeps lots in open order in a deque: FIFO/LIFO read the two ends,
TaxMin/Estimate scan by index and remove by index. A queue belongs to a
single currency pass of the gains calculator and is discarded afterwards.
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterator, Sequence, Tuple

from gainstx.config import DisposalMethod, DisposalPolicy
from gainstx.errors import MissingLotError
from gainstx.services.pricing import long_term_cutoff, ensure_utc

# TaxMin category ranks (lower is preferred)
SHORT_TERM_LOSS = 0
LONG_TERM_LOSS = 1
LONG_TERM_GAIN = 2
SHORT_TERM_GAIN = 3


@dataclass
class Lot:
    transaction_id: int
    remaining_amount: Decimal
    usd_price: Decimal
    timestamp: datetime


# ------------------------------------------------------------------------------
# Selection strategies (return an index into the open lots)
# ------------------------------------------------------------------------------
def select_fifo(lots: Sequence[Lot]) -> int:
    return 0


def select_lifo(lots: Sequence[Lot]) -> int:
    return len(lots) - 1


def tax_min_category(lot: Lot, disposal_price: Decimal, cutoff: datetime) -> int:
    long_term = ensure_utc(lot.timestamp) < cutoff
    loss = lot.usd_price > disposal_price
    if loss:
        return LONG_TERM_LOSS if long_term else SHORT_TERM_LOSS
    return LONG_TERM_GAIN if long_term else SHORT_TERM_GAIN


def select_tax_min(lots: Sequence[Lot], disposal_price: Decimal, disposed_at: datetime) -> int:
    """
    Pick from the most preferred non-empty category, taking the lot with the
    highest per-unit acquisition price (smallest gain / largest loss).
    Ties keep the earliest-opened lot.
    """
    cutoff = long_term_cutoff(disposed_at)
    best_index = None
    best_key = None
    for index, lot in enumerate(lots):
        key = (tax_min_category(lot, disposal_price, cutoff), -lot.usd_price)
        if best_key is None or key < best_key:
            best_index, best_key = index, key
    return best_index


def estimated_tax_per_unit(
    lot: Lot,
    amount_needed: Decimal,
    disposal_price: Decimal,
    cutoff: datetime,
    short_term_tax_rate: Decimal,
    long_term_tax_rate: Decimal,
) -> Decimal:
    """
    Estimated tax of disposing min(lot.remaining, amount_needed) from this
    lot, divided by that amount so large and small lots compare fairly.
    """
    amount = min(lot.remaining_amount, amount_needed)
    cost_basis = amount * lot.usd_price
    sale_price = amount * disposal_price
    gain = sale_price - cost_basis

    if ensure_utc(lot.timestamp) < cutoff:
        estimated_tax = gain * long_term_tax_rate
    else:
        estimated_tax = gain * short_term_tax_rate
    return estimated_tax / amount


def select_estimate(
    lots: Sequence[Lot],
    amount_needed: Decimal,
    disposal_price: Decimal,
    disposed_at: datetime,
    short_term_tax_rate: Decimal,
    long_term_tax_rate: Decimal,
) -> int:
    cutoff = long_term_cutoff(disposed_at)
    lowest_index = None
    lowest_tax = None
    for index, lot in enumerate(lots):
        tax = estimated_tax_per_unit(
            lot, amount_needed, disposal_price, cutoff,
            short_term_tax_rate, long_term_tax_rate,
        )
        # strict '<' keeps the first-encountered lot on ties
        if lowest_tax is None or tax < lowest_tax:
            lowest_index, lowest_tax = index, tax
    return lowest_index


# ------------------------------------------------------------------------------
# Lot queue
# ------------------------------------------------------------------------------
class LotQueue:
    """Open lots of one currency, in the order they were opened."""

    def __init__(self, currency: str):
        self.currency = currency
        self._lots = deque()

    def __len__(self) -> int:
        return len(self._lots)

    def __iter__(self) -> Iterator[Lot]:
        return iter(self._lots)

    @property
    def remaining_total(self) -> Decimal:
        return sum((lot.remaining_amount for lot in self._lots), Decimal("0"))

    def open(self, lot: Lot) -> Lot:
        self._lots.append(lot)
        return lot

    def select(
        self,
        policy: DisposalPolicy,
        amount_needed: Decimal,
        disposal_price: Decimal,
        disposed_at: datetime,
    ) -> int:
        if not self._lots:
            raise MissingLotError(
                f"Tried to dispose of {amount_needed} {self.currency} at {disposed_at} "
                "with no open lots: probably missing acquisition transactions."
            )

        method = policy.method
        if method == DisposalMethod.FIFO:
            return select_fifo(self._lots)
        if method == DisposalMethod.LIFO:
            return select_lifo(self._lots)
        if method == DisposalMethod.TAX_MIN:
            return select_tax_min(self._lots, disposal_price, disposed_at)
        if method == DisposalMethod.ESTIMATE:
            return select_estimate(
                self._lots, amount_needed, disposal_price, disposed_at,
                policy.short_term_tax_rate, policy.long_term_tax_rate,
            )
        raise ValueError(f"Unknown disposal method: {method}")

    def consume(self, index: int, amount: Decimal) -> Tuple[Lot, Decimal]:
        """
        Take up to 'amount' from the lot at 'index'. Returns the lot and the
        amount actually taken; a lot with nothing left is removed.
        """
        lot = self._lots[index]
        if lot.remaining_amount > amount:
            lot.remaining_amount -= amount
            return lot, amount

        taken = lot.remaining_amount
        lot.remaining_amount = Decimal("0")
        if index == 0:
            self._lots.popleft()
        elif index == len(self._lots) - 1:
            self._lots.pop()
        else:
            del self._lots[index]
        return lot, taken

    def take(
        self,
        policy: DisposalPolicy,
        amount_needed: Decimal,
        disposal_price: Decimal,
        disposed_at: datetime,
    ) -> Tuple[Lot, Decimal]:
        index = self.select(policy, amount_needed, disposal_price, disposed_at)
        return self.consume(index, amount_needed)
