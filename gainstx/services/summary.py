"""
gainstx/services/summary.py

Realized gains aggregated from the Disposal table only, grouped by
(year of disposal, currency, term). Each year also gets a TOTAL line
across currencies.

Currencies whose short and long gains net to zero for a year are left out
of the per-currency lines but still count towards the year's total.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from rich.table import Table
from sqlalchemy.orm import Session

from gainstx.config import DisposalConfig
from gainstx.constants import TERM_LONG
from gainstx.services.ledger import get_all_disposals

logger = logging.getLogger(__name__)

TOTAL = "TOTAL"


@dataclass
class SummaryLine:
    year: int
    currency: str
    short: Decimal = Decimal("0")
    long: Decimal = Decimal("0")
    disposal_count: int = 0

    @property
    def total(self) -> Decimal:
        return self.short + self.long

    def add(self, term: str, gain: Decimal):
        if term == TERM_LONG:
            self.long += gain
        else:
            self.short += gain
        self.disposal_count += 1


@dataclass
class YearSummary:
    year: int
    method: Optional[str] = None
    currencies: List[SummaryLine] = field(default_factory=list)
    total: Optional[SummaryLine] = None


def summarize_disposals(db: Session, config: Optional[DisposalConfig] = None) -> List[YearSummary]:
    """
    Sum disposal gains per year, currency and term. When a config is given,
    each year carries the name of the disposal method applied to it.
    """
    lines: Dict[int, "OrderedDict[str, SummaryLine]"] = {}
    for disposal in get_all_disposals(db):
        year = disposal.disposed_at.year
        by_currency = lines.setdefault(year, OrderedDict())
        line = by_currency.get(disposal.currency)
        if line is None:
            line = by_currency[disposal.currency] = SummaryLine(year=year, currency=disposal.currency)
        line.add(disposal.term, disposal.gain)

    summary = []
    for year in sorted(lines):
        total = SummaryLine(year=year, currency=TOTAL)
        currencies = []
        for currency in sorted(lines[year]):
            line = lines[year][currency]
            total.short += line.short
            total.long += line.long
            total.disposal_count += line.disposal_count
            if line.total != 0:
                currencies.append(line)

        method = config.get_disposal_method(year) if config is not None else None
        summary.append(YearSummary(year=year, method=method, currencies=currencies, total=total))

    logger.debug(f"Summarized disposals for {len(summary)} years")
    return summary


def summary_table(summary: List[YearSummary]) -> Table:
    """Console table of a summary, one section per year ending in its TOTAL line."""
    table = Table(title="Realized gains (USD)")
    table.add_column("Year")
    table.add_column("Currency")
    table.add_column("Method")
    table.add_column("Short", justify="right")
    table.add_column("Long", justify="right")
    table.add_column("Total", justify="right")
    for year in summary:
        for line in year.currencies + [year.total]:
            table.add_row(
                str(year.year),
                line.currency,
                year.method or "-",
                f"{line.short:.2f}",
                f"{line.long:.2f}",
                f"{line.total:.2f}",
                end_section=line is year.total,
            )
    return table
