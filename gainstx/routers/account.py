"""
gainstx/routers/account.py

Read-only Account endpoints. Accounts are created by importers
(find-or-create on source + external_reference) and never deleted.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import List
from sqlalchemy.orm import Session

from gainstx.schemas.account import AccountRead
from gainstx.services import ledger
from gainstx.database import get_db

router = APIRouter(tags=["accounts"])

@router.get("/", response_model=List[AccountRead])
def list_accounts(db: Session = Depends(get_db)):
    """Retrieve all Accounts in id order."""
    return ledger.get_all_accounts(db)

@router.get("/{account_id}", response_model=AccountRead)
def get_account(account_id: int, db: Session = Depends(get_db)):
    """
    Retrieve a specific Account by its ID, or return 404 if not found.
    """
    account = ledger.get_account_by_id(db, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found.")
    return account
