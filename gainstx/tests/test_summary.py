"""
Gains summary: grouping of the Disposal table by year, currency and term,
and the console table printed by the CLI.
"""

import io
from decimal import Decimal

import pytest
from rich.console import Console

from conftest import ts
from gainstx.config import DisposalConfig
from gainstx.models.disposal import Disposal
from gainstx.services.ledger import save_disposals
from gainstx.services.summary import summarize_disposals, summary_table


def disposal(currency, acquired_at, disposed_at, gain):
    gain = Decimal(gain)
    return Disposal(
        currency=currency,
        buy_transaction_id=1,
        sell_transaction_id=2,
        acquired_at=acquired_at,
        disposed_at=disposed_at,
        amount=Decimal("1"),
        cost_basis=Decimal("100"),
        sale_price=Decimal("100") + gain,
        gain=gain,
    )


@pytest.fixture
def two_years(test_db):
    save_disposals(test_db, [
        disposal("BTC", ts(2017, 1, 1), ts(2017, 6, 1), "150.25"),     # short
        disposal("BTC", ts(2015, 1, 1), ts(2017, 7, 1), "-20.00"),     # long
        disposal("ETH", ts(2017, 2, 1), ts(2017, 8, 1), "10.00"),      # short
        disposal("ETH", ts(2017, 3, 1), ts(2018, 1, 5), "5.00"),       # short
        disposal("ETH", ts(2017, 3, 1), ts(2018, 2, 5), "-5.00"),      # short
        disposal("BTC", ts(2016, 1, 1), ts(2018, 3, 1), "40.00"),      # long
    ])
    test_db.commit()


class TestSummarize:

    def test_grouped_by_year_currency_term(self, test_db, two_years):
        summary = summarize_disposals(test_db)

        assert [year.year for year in summary] == [2017, 2018]
        y2017 = summary[0]
        assert [(l.currency, l.short, l.long) for l in y2017.currencies] == [
            ("BTC", Decimal("150.25"), Decimal("-20.00")),
            ("ETH", Decimal("10.00"), Decimal("0")),
        ]
        assert y2017.total.currency == "TOTAL"
        assert y2017.total.short == Decimal("160.25")
        assert y2017.total.long == Decimal("-20.00")
        assert y2017.total.total == Decimal("140.25")
        assert y2017.total.disposal_count == 3

    def test_currency_netting_to_zero_is_omitted(self, test_db, two_years):
        y2018 = summarize_disposals(test_db)[1]
        # ETH: +5 and -5 in 2018
        assert [l.currency for l in y2018.currencies] == ["BTC"]
        # but its disposals still count in the total line
        assert y2018.total.disposal_count == 3
        assert y2018.total.total == Decimal("40.00")

    def test_method_per_year(self, test_db, two_years):
        config = DisposalConfig({"default": "FIFO", "2018": "TaxMin"})
        summary = summarize_disposals(test_db, config)
        assert [year.method for year in summary] == ["FIFO", "TaxMin"]

    def test_no_method_without_config(self, test_db, two_years):
        assert summarize_disposals(test_db)[0].method is None

    def test_empty(self, test_db):
        assert summarize_disposals(test_db) == []


def render(table):
    console = Console(file=io.StringIO(), width=120)
    console.print(table)
    return console.file.getvalue().splitlines()


class TestTable:

    def test_columns(self):
        table = summary_table([])
        assert [c.header for c in table.columns] == ["Year", "Currency", "Method", "Short", "Long", "Total"]
        assert [c.justify for c in table.columns[3:]] == ["right", "right", "right"]
        assert table.row_count == 0

    def test_rows_per_year(self, test_db, two_years):
        table = summary_table(summarize_disposals(test_db, DisposalConfig({"default": "FIFO"})))
        # 2017: BTC, ETH, TOTAL; 2018: BTC, TOTAL
        assert table.row_count == 5
        assert list(table.columns[1].cells) == ["BTC", "ETH", "TOTAL", "BTC", "TOTAL"]
        assert list(table.columns[5].cells) == ["130.25", "10.00", "140.25", "40.00", "40.00"]
        assert [row.end_section for row in table.rows] == [False, False, True, False, True]

    def test_rendered_lines(self, test_db, two_years):
        lines = render(summary_table(summarize_disposals(test_db, DisposalConfig({"default": "FIFO"}))))

        btc_2017 = next(line for line in lines if "2017" in line and "BTC" in line)
        assert "FIFO" in btc_2017
        assert "150.25" in btc_2017
        assert "-20.00" in btc_2017
        assert "130.25" in btc_2017
        total_2018 = next(line for line in lines if "2018" in line and "TOTAL" in line)
        assert total_2018.rstrip(" │").endswith("40.00")

    def test_no_method_shown_as_dash(self, test_db, two_years):
        table = summary_table(summarize_disposals(test_db))
        assert set(table.columns[2].cells) == {"-"}
