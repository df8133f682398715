"""
gainstx/services/transfers.py

Transfer reconciliation: find the outgoing/incoming rows on different
accounts that are really one movement of funds between the user's own
accounts, and link them so the gains walk ignores them.

Passes run in a fixed order and each one only sees rows left unlinked by
the passes before it:
  1) exact amount, positive 'transfer' rows
  2) exact amount, negative 'transfer' rows
  3) amount within 1%, positive 'transfer' rows
  4) amount within 1%, negative 'transfer' rows
  5) autodetect: identical timestamp and exactly opposite amount, any type
  6) validation: no asymmetric links and no unlinked 'transfer' row

A match is searched within +/- 1 hour, first among 'transfer' rows, then
among send/receive rows (some withdrawals show up as a send on one source
and a transfer on the other); the closest timestamp wins.

Linking a pair whose amounts differ books the difference as a separate fee
row on the sending account. Every linked pair is committed on its own, so
an aborted run leaves only complete pairs behind.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from gainstx.constants import (
    FUZZY_TOLERANCE,
    TRANSFER_WINDOW,
    TX_FEE,
    TX_RECEIVE,
    TX_SEND,
    TX_TRANSFER,
)
from gainstx.errors import ReconciliationError, TransferFeeError
from gainstx.models.transaction import Transaction
from gainstx.services.ledger import find_or_build_transaction, query_transactions, save_transaction
from gainstx.services.pricing import derive_usd_fields, round_usd, to_decimal

logger = logging.getLogger(__name__)

# Counterpart types, in order of preference
COUNTERPART_TYPES = ((TX_TRANSFER,), (TX_SEND, TX_RECEIVE))


@dataclass
class ReconcileResult:
    exact_positive: int = 0
    exact_negative: int = 0
    fuzzy_positive: int = 0
    fuzzy_negative: int = 0
    autodetected: int = 0
    fees_booked: int = 0

    @property
    def linked(self) -> int:
        return (
            self.exact_positive + self.exact_negative
            + self.fuzzy_positive + self.fuzzy_negative
            + self.autodetected
        )


# ------------------------------------------------------------------------------
# Linking
# ------------------------------------------------------------------------------
def associate_transfer(db: Session, tx: Transaction, other: Transaction) -> Optional[Transaction]:
    """
    Link two rows as one transfer. Returns the fee row when the amounts are
    not exact opposites, otherwise None.
    """
    if tx.currency != other.currency:
        raise ReconciliationError(
            f"Cannot link transactions {tx.id} and {other.id}: "
            f"currency {tx.currency} != {other.currency}",
            [tx, other],
        )

    # either side may have been imported as send/receive
    tx.type = TX_TRANSFER
    tx.transfer_transaction_id = other.id
    other.type = TX_TRANSFER
    other.transfer_transaction_id = tx.id

    if tx.usd_value is None and other.usd_value is not None:
        tx.usd_value = other.usd_value
    elif other.usd_value is None and tx.usd_value is not None:
        other.usd_value = tx.usd_value

    fee_tx = None
    amount = to_decimal(tx.amount)
    other_amount = to_decimal(other.amount)
    if -amount != other_amount:
        fee_tx = _book_transfer_fee(db, tx, other, amount + other_amount)

    save_transaction(db, tx)
    save_transaction(db, other)
    return fee_tx


def _book_transfer_fee(db: Session, tx: Transaction, other: Transaction, fee_amount: Decimal) -> Transaction:
    """
    The shortfall between sent and received is a fee paid by the sender.
    The sender's amount is reduced to the received amount and the fee gets
    its own row, keyed on (account, fee amount, timestamp).
    """
    if fee_amount >= 0:
        logger.error(f"Transfer received more than was sent: {tx!r} / {other!r}")
        raise TransferFeeError(
            f"Transfer received more than was sent: transaction {tx.id} ({tx.amount}) "
            f"and {other.id} ({other.amount}) {tx.currency}"
        )

    outgoing = tx if to_decimal(tx.amount) < 0 else other
    # per-unit price of what was actually sent, fee included
    derive_usd_fields(outgoing)
    unit_price = outgoing.usd_price

    outgoing.amount = to_decimal(outgoing.amount) - fee_amount
    save_transaction(db, outgoing)

    fee_tx = find_or_build_transaction(
        db,
        account_id=outgoing.account_id,
        source_amount=fee_amount,
        timestamp=outgoing.timestamp,
        type=TX_FEE,
    )
    fee_tx.amount = fee_amount
    fee_tx.source = outgoing.source
    fee_tx.source_type = "transfer_fee"
    fee_tx.currency = outgoing.currency
    if fee_tx.usd_value is None and unit_price is not None:
        fee_tx.usd_value = round_usd(abs(to_decimal(unit_price) * fee_amount))
    save_transaction(db, fee_tx)

    logger.debug(f"Booked fee {fee_amount} {fee_tx.currency} on account {fee_tx.account_id}")
    return fee_tx


# ------------------------------------------------------------------------------
# Matching passes
# ------------------------------------------------------------------------------
def _unlinked_transactions(db: Session) -> List[Transaction]:
    return query_transactions(db, Transaction.transfer_transaction_id.is_(None))


def _amount_matches(candidate_amount: Decimal, target: Decimal, fuzzy: bool) -> bool:
    if not fuzzy:
        return candidate_amount == target
    low, high = sorted((
        target * (Decimal("1") - FUZZY_TOLERANCE),
        target * (Decimal("1") + FUZZY_TOLERANCE),
    ))
    return low <= candidate_amount <= high


def find_counterpart(
    transfer: Transaction,
    candidates: List[Transaction],
    fuzzy: bool = False,
) -> Optional[Transaction]:
    """
    Closest-in-time unlinked row of the same currency with the opposite
    amount (exact, or within 1% when fuzzy), preferring 'transfer' rows.
    """
    target = -to_decimal(transfer.amount)
    for types in COUNTERPART_TYPES:
        matches = [
            c for c in candidates
            if c.id != transfer.id
            and c.transfer_transaction_id is None
            and c.type in types
            and c.currency == transfer.currency
            and abs(c.timestamp - transfer.timestamp) <= TRANSFER_WINDOW
            and _amount_matches(to_decimal(c.amount), target, fuzzy)
        ]
        if matches:
            return min(matches, key=lambda c: (abs(c.timestamp - transfer.timestamp), c.id))
    return None


def _reconcile_pass(db: Session, positive: bool, fuzzy: bool, result: ReconcileResult) -> int:
    candidates = _unlinked_transactions(db)
    transfers = [
        tx for tx in candidates
        if tx.type == TX_TRANSFER
        and (to_decimal(tx.amount) > 0 if positive else to_decimal(tx.amount) < 0)
    ]

    linked = 0
    for transfer in transfers:
        # may have been taken as a counterpart earlier in this pass
        if transfer.transfer_transaction_id is not None:
            continue
        other = find_counterpart(transfer, candidates, fuzzy=fuzzy)
        if other is None:
            continue
        fee_tx = associate_transfer(db, transfer, other)
        if fee_tx is not None:
            result.fees_booked += 1
        db.commit()
        linked += 1

    logger.info(
        f"Reconciled {linked} {'fuzzy' if fuzzy else 'exact'} "
        f"{'incoming' if positive else 'outgoing'} transfers"
    )
    return linked


def autodetect_transfers(db: Session, result: ReconcileResult) -> int:
    """
    Link remaining rows that share a timestamp and have exactly opposite
    amounts in the same currency, whatever their type. This recovers
    transfers between accounts imported independently of each other.
    """
    candidates = _unlinked_transactions(db)
    by_moment: Dict[tuple, List[Transaction]] = defaultdict(list)
    for tx in candidates:
        by_moment[(tx.timestamp, tx.currency)].append(tx)

    linked = 0
    for t1 in candidates:
        amount = to_decimal(t1.amount)
        if amount >= 0 or t1.transfer_transaction_id is not None:
            continue
        matches = [
            t2 for t2 in by_moment[(t1.timestamp, t1.currency)]
            if t2.id != t1.id
            and t2.transfer_transaction_id is None
            and to_decimal(t2.amount) == -amount
        ]
        if not matches:
            continue
        if associate_transfer(db, t1, min(matches, key=lambda t: t.id)) is not None:
            result.fees_booked += 1
        db.commit()
        linked += 1

    logger.info(f"Autodetected {linked} transfers")
    return linked


# ------------------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------------------
def find_mismatched_transfers(db: Session) -> List[Transaction]:
    """Rows whose linked counterpart is missing or does not link back."""
    linked = query_transactions(db, Transaction.transfer_transaction_id.isnot(None))
    by_id = {tx.id: tx for tx in linked}
    mismatched = []
    for tx in linked:
        partner = by_id.get(tx.transfer_transaction_id)
        if partner is None or partner.transfer_transaction_id != tx.id:
            mismatched.append(tx)
    return mismatched


def find_unreconciled_transfers(db: Session) -> List[Transaction]:
    return query_transactions(
        db,
        Transaction.type == TX_TRANSFER,
        Transaction.transfer_transaction_id.is_(None),
    )


def _raise_for(rows: List[Transaction], label: str) -> None:
    for tx in rows:
        logger.error(f"{label}: {tx.timestamp} {tx.source} {tx.currency} {tx.amount} (id={tx.id})")
    ids = ", ".join(str(tx.id) for tx in rows)
    raise ReconciliationError(f"Found {len(rows)} {label} (ids: {ids})", rows)


def validate_transfers(db: Session) -> None:
    mismatched = find_mismatched_transfers(db)
    if mismatched:
        _raise_for(mismatched, "mismatched transfers")

    unreconciled = find_unreconciled_transfers(db)
    if unreconciled:
        _raise_for(unreconciled, "unreconciled transfers")


def reconcile_transfers(db: Session) -> ReconcileResult:
    """
    Run every matching pass, then validate. Exact passes run before fuzzy
    ones so an exact match is never displaced by an approximate one.
    """
    result = ReconcileResult()
    result.exact_positive = _reconcile_pass(db, positive=True, fuzzy=False, result=result)
    result.exact_negative = _reconcile_pass(db, positive=False, fuzzy=False, result=result)
    result.fuzzy_positive = _reconcile_pass(db, positive=True, fuzzy=True, result=result)
    result.fuzzy_negative = _reconcile_pass(db, positive=False, fuzzy=True, result=result)
    result.autodetected = autodetect_transfers(db, result)

    validate_transfers(db)
    logger.info(f"Reconciliation complete: {result.linked} pairs, {result.fees_booked} fees")
    return result
