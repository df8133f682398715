"""
gainstx/routers/calculation.py

Endpoints that run the pipeline phases and read their output:
  - POST /reconcile  link transfers between the user's own accounts
  - POST /backfill   fill missing USD prices (trade legs, then market)
  - POST /gains      truncate and recompute every Disposal
  - GET  /disposals  list Disposals, optionally by currency/year
  - GET  /summary    gains per year, currency and term

Each phase runs inside one request with one session. Pipeline errors are
answered with their GainsTxError.status_code and message.
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional
from sqlalchemy.orm import Session

from gainstx.config import DisposalConfig
from gainstx.database import get_db
from gainstx.errors import GainsTxError
from gainstx.schemas.calculation import (
    BackfillResponse,
    GainsResponse,
    ReconcileResponse,
    YearSummaryRead,
)
from gainstx.schemas.disposal import DisposalRead
from gainstx.services.gains import calculate_gains
from gainstx.services.ledger import get_all_disposals
from gainstx.services.pipeline import run_backfill
from gainstx.services.summary import summarize_disposals
from gainstx.services.transfers import reconcile_transfers

# main.py sets the final prefix ("/api/calculations") and tags.
router = APIRouter(tags=["calculations"])


def get_disposal_config() -> DisposalConfig:
    """Disposal-method map from the environment; overridable in tests."""
    try:
        return DisposalConfig.from_env()
    except GainsTxError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


def get_price_oracle():
    """None => run_backfill opens (and closes) a CoinGecko client."""
    return None


@router.post("/reconcile", response_model=ReconcileResponse)
def api_reconcile(db: Session = Depends(get_db)):
    try:
        return ReconcileResponse.model_validate(reconcile_transfers(db))
    except GainsTxError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/backfill", response_model=BackfillResponse)
def api_backfill(db: Session = Depends(get_db), oracle=Depends(get_price_oracle)):
    try:
        return BackfillResponse.model_validate(run_backfill(db, oracle))
    except GainsTxError as e:
        db.rollback()
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/gains", response_model=GainsResponse)
def api_gains(
    db: Session = Depends(get_db),
    config: DisposalConfig = Depends(get_disposal_config),
):
    """
    Scorched earth: the Disposal table is rebuilt from scratch. Currencies
    with a missing price come back with 'error' set and no disposals.
    """
    try:
        return GainsResponse.model_validate(calculate_gains(db, config))
    except GainsTxError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get("/disposals", response_model=List[DisposalRead])
def api_disposals(
    currency: Optional[str] = None,
    year: Optional[int] = None,
    db: Session = Depends(get_db),
):
    return get_all_disposals(db, currency=currency.upper() if currency else None, year=year)


@router.get("/summary", response_model=List[YearSummaryRead])
def api_summary(
    db: Session = Depends(get_db),
    config: DisposalConfig = Depends(get_disposal_config),
):
    try:
        return [YearSummaryRead.model_validate(year) for year in summarize_disposals(db, config)]
    except GainsTxError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
