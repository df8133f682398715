#!/usr/bin/env python3
"""
gainstx/cli.py

Command-line driver for the pipeline.

Usage:
  - Import one or more files:
      python -m gainstx.cli import ledger.csv paper.csv

  - Run a single phase:
      python -m gainstx.cli reconcile
      python -m gainstx.cli backfill
      python -m gainstx.cli gains
      python -m gainstx.cli summary

  - Run everything (import, reconcile, backfill, gains, summary):
      python -m gainstx.cli run --file ledger.csv --no-backfill

Any pipeline error is logged and exits with status 1.
"""

import argparse
import logging
import sys

from rich.console import Console

from gainstx.config import DisposalConfig
from gainstx.database import SessionLocal, create_tables
from gainstx.errors import GainsTxError
from gainstx.services.csv_import import AccountCache, import_file
from gainstx.services.gains import calculate_gains
from gainstx.services.pipeline import run_backfill, run_pipeline
from gainstx.services.summary import summarize_disposals, summary_table
from gainstx.services.transfers import reconcile_transfers

logger = logging.getLogger("gainstx")
console = Console()


def read_file(path):
    with open(path, "rb") as fh:
        return fh.read()


def build_parser():
    parser = argparse.ArgumentParser(
        prog="gainstx",
        description="Crypto ledger: import, reconcile transfers and compute realized gains.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Import CSV transaction files")
    p_import.add_argument("files", nargs="+", help="CSV files to import")

    sub.add_parser("reconcile", help="Link transfers between your own accounts")
    sub.add_parser("backfill", help="Fill in missing USD prices")
    sub.add_parser("gains", help="Recompute disposals and realized gains")
    sub.add_parser("summary", help="Print gains per year, currency and term")

    p_run = sub.add_parser("run", help="Run every phase in order")
    p_run.add_argument("--file", dest="files", action="append", default=[], help="CSV file to import first (repeatable)")
    p_run.add_argument("--no-backfill", action="store_true", help="Skip the price backfill phase")
    return parser


def dispatch(args, db) -> None:
    if args.command == "import":
        cache = AccountCache()
        for path in args.files:
            result = import_file(db, read_file(path), cache)
            print(f"{path}: imported {result.imported_count} transactions, {result.fee_count} fees")

    elif args.command == "reconcile":
        result = reconcile_transfers(db)
        print(f"Linked {result.linked} transfers ({result.fees_booked} fees)")

    elif args.command == "backfill":
        result = run_backfill(db)
        print(
            f"Filled {result.trade_prices} trade prices and {result.market_prices} market prices; "
            f"{result.unavailable} unavailable"
        )

    elif args.command == "gains":
        result = calculate_gains(db, DisposalConfig.from_env())
        print(f"Wrote {result.disposal_count} disposals")
        for error in result.errors:
            print(f"WARNING: {error}")

    elif args.command == "summary":
        console.print(summary_table(summarize_disposals(db, DisposalConfig.from_env())))

    elif args.command == "run":
        files = [read_file(path) for path in args.files]
        result = run_pipeline(db, files=files, backfill=not args.no_backfill)
        for error in result.gains.errors:
            print(f"WARNING: {error}")
        console.print(summary_table(result.summary))


def main(argv=None, session_factory=SessionLocal) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if session_factory is SessionLocal:
        create_tables()

    db = session_factory()
    try:
        dispatch(args, db)
    except GainsTxError as e:
        db.rollback()
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.error(f"Cannot read file: {e}")
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
