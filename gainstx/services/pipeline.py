"""
gainstx/services/pipeline.py

Runs the phases in their fixed order; each phase's output is the next
one's input:
  1) import files
  2) reconcile transfers
  3) backfill prices
  4) compute gains
  5) summarize

Any GainsTxError other than a per-currency missing price stops the run.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from gainstx.config import DisposalConfig
from gainstx.services.csv_import import AccountCache, ImportResult, import_file
from gainstx.services.gains import GainsResult, calculate_gains
from gainstx.services.prices import CoinGeckoOracle, backfill_market_prices, backfill_trade_prices
from gainstx.services.summary import YearSummary, summarize_disposals
from gainstx.services.transfers import ReconcileResult, reconcile_transfers

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    trade_prices: int = 0
    market_prices: int = 0
    unavailable: int = 0


@dataclass
class PipelineResult:
    imports: List[ImportResult] = field(default_factory=list)
    reconcile: Optional[ReconcileResult] = None
    backfill: Optional[BackfillResult] = None
    gains: Optional[GainsResult] = None
    summary: List[YearSummary] = field(default_factory=list)


def run_backfill(db: Session, oracle=None) -> BackfillResult:
    """
    Trade prices first (they are exact), then market prices for what is
    left. An oracle created here is closed afterwards.
    """
    result = BackfillResult()
    result.trade_prices = backfill_trade_prices(db)

    owns_oracle = oracle is None
    oracle = oracle or CoinGeckoOracle()
    try:
        result.market_prices, result.unavailable = backfill_market_prices(db, oracle)
    finally:
        if owns_oracle:
            oracle.close()
    return result


def run_pipeline(
    db: Session,
    files: Iterable[bytes] = (),
    backfill: bool = True,
    oracle=None,
    config: Optional[DisposalConfig] = None,
) -> PipelineResult:
    config = config or DisposalConfig.from_env()
    result = PipelineResult()

    cache = AccountCache()
    for content in files:
        result.imports.append(import_file(db, content, cache))

    logger.info("Reconciling transfers")
    result.reconcile = reconcile_transfers(db)

    if backfill:
        logger.info("Backfilling prices")
        result.backfill = run_backfill(db, oracle)

    logger.info("Calculating gains")
    result.gains = calculate_gains(db, config)
    for error in result.gains.errors:
        logger.warning(f"Gains incomplete: {error}")

    result.summary = summarize_disposals(db, config)
    return result
