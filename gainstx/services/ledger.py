"""
gainstx/services/ledger.py

Read/write contract of the ledger store. Every other service goes through
these helpers instead of touching the session directly, so derived fields
(usd_price on transactions, term on disposals) are recomputed at every
write site.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from gainstx.models.account import Account
from gainstx.models.disposal import Disposal
from gainstx.models.transaction import Transaction
from gainstx.services.pricing import derive_usd_fields, holding_term

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# Accounts
# ------------------------------------------------------------------------------
def get_all_accounts(db: Session) -> List[Account]:
    return db.query(Account).order_by(Account.id.asc()).all()


def get_account_by_id(db: Session, account_id: int) -> Optional[Account]:
    return db.query(Account).filter(Account.id == account_id).first()


def find_or_create_account(
    db: Session,
    source: str,
    external_reference: str,
    currency: str,
    display_name: Optional[str] = None,
) -> Account:
    """
    Return the account keyed by (source, external_reference), creating it
    on first sight. Currency and display name are refreshed on every call.
    """
    account = (
        db.query(Account)
        .filter(Account.source == source, Account.external_reference == external_reference)
        .first()
    )
    if account is None:
        account = Account(source=source, external_reference=external_reference)
        db.add(account)
        logger.debug(f"Created account {source}:{external_reference}")

    account.currency = currency
    account.display_name = display_name
    db.flush()
    return account


# ------------------------------------------------------------------------------
# Transactions
# ------------------------------------------------------------------------------
def query_transactions(db: Session, *criteria, order_by=None) -> List[Transaction]:
    """
    Filtered, ordered transaction listing. Defaults to chronological order
    with id as the tie-breaker so repeated walks see the same sequence.
    """
    query = db.query(Transaction)
    if criteria:
        query = query.filter(*criteria)
    if order_by is None:
        order_by = (Transaction.timestamp.asc(), Transaction.id.asc())
    return query.order_by(*order_by).all()


def get_transaction_by_id(db: Session, transaction_id: int) -> Optional[Transaction]:
    return db.query(Transaction).filter(Transaction.id == transaction_id).first()


def find_or_build_transaction(db: Session, **key) -> Transaction:
    """
    Return the first transaction matching every column in 'key', or a new
    (unsaved) Transaction pre-filled with the key.
    """
    tx = db.query(Transaction).filter_by(**key).first()
    if tx is None:
        tx = Transaction(**key)
    return tx


def save_transaction(db: Session, tx: Transaction) -> Transaction:
    derive_usd_fields(tx)
    db.add(tx)
    db.flush()
    return tx


def get_currencies(db: Session) -> List[str]:
    """Distinct currencies that appear in the ledger, sorted."""
    rows = db.query(Transaction.currency).distinct().order_by(Transaction.currency).all()
    return [row[0] for row in rows]


# ------------------------------------------------------------------------------
# Disposals
# ------------------------------------------------------------------------------
def save_disposal(db: Session, disposal: Disposal) -> Disposal:
    disposal.term = holding_term(disposal.acquired_at, disposal.disposed_at)
    db.add(disposal)
    return disposal


def save_disposals(db: Session, disposals: Iterable[Disposal]) -> int:
    count = 0
    for disposal in disposals:
        save_disposal(db, disposal)
        count += 1
    db.flush()
    return count


def get_all_disposals(db: Session, currency: Optional[str] = None, year: Optional[int] = None):
    query = db.query(Disposal)
    if currency:
        query = query.filter(Disposal.currency == currency)
    rows = query.order_by(Disposal.disposed_at.asc(), Disposal.id.asc()).all()
    if year is not None:
        rows = [d for d in rows if d.disposed_at.year == year]
    return rows


def truncate_disposals(db: Session) -> int:
    deleted = db.query(Disposal).delete(synchronize_session=False)
    db.flush()
    logger.info(f"Truncated disposals ({deleted} rows)")
    return deleted
