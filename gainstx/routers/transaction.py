"""
gainstx/routers/transaction.py

Read endpoints for ledger transactions. Rows are written only by the
importer, the transfer reconciler and the price backfiller, never through
the API.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional
from sqlalchemy.orm import Session

from gainstx.schemas.transaction import TransactionRead
from gainstx.services import ledger
from gainstx.models.transaction import Transaction
from gainstx.database import get_db

router = APIRouter(tags=["transactions"])

@router.get("/", response_model=List[TransactionRead])
def list_transactions(
    currency: Optional[str] = None,
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """
    List transactions, newest first. Optional filters:
      - currency: e.g. "BTC"
      - account_id: rows of one account
    """
    criteria = []
    if currency:
        criteria.append(Transaction.currency == currency.upper())
    if account_id is not None:
        criteria.append(Transaction.account_id == account_id)
    return ledger.query_transactions(
        db, *criteria,
        order_by=(Transaction.timestamp.desc(), Transaction.id.desc()),
    )


@router.get("/{transaction_id}", response_model=TransactionRead)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    """Single transaction, or 404."""
    tx = ledger.get_transaction_by_id(db, transaction_id)
    if not tx:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return tx
