"""
Price backfill: the CoinGecko oracle over a mocked transport, copying USD
values between the legs of a trade, and market prices for what is left.
"""

from datetime import date
from decimal import Decimal

import httpx
import pytest

from conftest import FakeOracle, ts
from gainstx.errors import BackfillError, PriceLookupError
from gainstx.models.transaction import Transaction
from gainstx.services.pipeline import run_backfill
from gainstx.services.prices import (
    CoinGeckoOracle,
    backfill_market_prices,
    backfill_trade_prices,
)

BASE_URL = "https://prices.test/api/v3"


def reload(db, tx):
    db.expire_all()
    return db.get(Transaction, tx.id)


def history_payload(usd):
    return {"id": "bitcoin", "market_data": {"current_price": {"usd": usd, "eur": 1}}}


@pytest.fixture
def requests_seen():
    return []


@pytest.fixture
def make_oracle(requests_seen):
    """CoinGeckoOracle whose HTTP client answers through `handler`."""

    def _make(handler):
        def record(request):
            requests_seen.append(request)
            return handler(request)

        client = httpx.Client(transport=httpx.MockTransport(record))
        return CoinGeckoOracle(base_url=BASE_URL, client=client)

    return _make


# =============================================================================
# CoinGecko oracle
# =============================================================================

class TestCoinGeckoOracle:

    def test_price_from_history_endpoint(self, make_oracle, requests_seen):
        oracle = make_oracle(lambda request: httpx.Response(200, json=history_payload(1234.5)))

        price = oracle.get_price("BTC", date(2017, 3, 5))

        assert price == Decimal("1234.5")
        (request,) = requests_seen
        assert request.url.path == "/api/v3/coins/bitcoin/history"
        assert request.url.params["date"] == "05-03-2017"
        assert request.url.params["localization"] == "false"

    def test_datetime_is_reduced_to_utc_day(self, make_oracle, requests_seen):
        oracle = make_oracle(lambda request: httpx.Response(200, json=history_payload(10)))
        oracle.get_price("ETH", ts(2018, 12, 31, 23, 59))
        assert requests_seen[0].url.params["date"] == "31-12-2018"
        assert "/coins/ethereum/" in requests_seen[0].url.path

    def test_answers_are_cached_per_day(self, make_oracle, requests_seen):
        oracle = make_oracle(lambda request: httpx.Response(200, json=history_payload(10)))
        oracle.get_price("BTC", ts(2017, 1, 1, 8))
        oracle.get_price("BTC", ts(2017, 1, 1, 20))
        oracle.get_price("BTC", date(2017, 1, 2))
        assert len(requests_seen) == 2

    def test_not_found_is_no_price(self, make_oracle, requests_seen):
        oracle = make_oracle(lambda request: httpx.Response(404, json={"error": "not found"}))
        assert oracle.get_price("BTC", date(2009, 1, 1)) is None
        # misses are cached too
        assert oracle.get_price("BTC", date(2009, 1, 1)) is None
        assert len(requests_seen) == 1

    def test_day_without_market_data(self, make_oracle):
        oracle = make_oracle(lambda request: httpx.Response(200, json={"id": "bitcoin"}))
        assert oracle.get_price("BTC", date(2010, 1, 1)) is None

    def test_unknown_currency_makes_no_request(self, make_oracle, requests_seen):
        oracle = make_oracle(lambda request: httpx.Response(200, json=history_payload(1)))
        assert oracle.get_price("NOPE", date(2017, 1, 1)) is None
        assert requests_seen == []

    def test_server_error_raises(self, make_oracle):
        oracle = make_oracle(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(PriceLookupError, match="HTTP 500"):
            oracle.get_price("BTC", date(2017, 1, 1))

    def test_transport_error_raises(self, make_oracle):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        oracle = make_oracle(handler)
        with pytest.raises(PriceLookupError):
            oracle.get_price("BTC", date(2017, 1, 1))

    def test_invalid_json_raises(self, make_oracle):
        oracle = make_oracle(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(PriceLookupError, match="invalid JSON"):
            oracle.get_price("BTC", date(2017, 1, 1))


# =============================================================================
# Trade legs
# =============================================================================

@pytest.fixture
def btc_eth_trade(make_tx):
    """Bought 0.5 BTC for 5 ETH; only the ETH leg has a USD value."""
    base = make_tx(
        ts(2017, 6, 1), "0.5", "buy", currency="BTC", source="exchange",
        exchange_reference="T-1", exchange_currency="ETH", exchange_value=Decimal("-5"),
    )
    quote = make_tx(
        ts(2017, 6, 1), "-5", "sell", currency="ETH", source="exchange", usd_value="1500",
        exchange_reference="T-1", exchange_currency="BTC", exchange_value=Decimal("0.5"),
    )
    return base, quote


class TestTradePrices:

    def test_usd_value_copied_from_quote_leg(self, test_db, btc_eth_trade):
        base, _ = btc_eth_trade

        filled = backfill_trade_prices(test_db)

        base = reload(test_db, base)
        assert filled == 1
        assert base.usd_value == Decimal("1500")
        # price is re-derived for BTC, not copied from ETH
        assert base.usd_price == Decimal("3000")

    def test_disagreeing_legs_raise(self, test_db, make_tx):
        make_tx(
            ts(2017, 6, 1), "0.5", "buy", currency="BTC", source="exchange",
            exchange_reference="T-2", exchange_currency="ETH", exchange_value=Decimal("-5"),
        )
        make_tx(
            ts(2017, 6, 1), "-4", "sell", currency="ETH", source="exchange", usd_value="1200",
            exchange_reference="T-2", exchange_currency="BTC", exchange_value=Decimal("0.5"),
        )
        with pytest.raises(BackfillError, match="legs disagree"):
            backfill_trade_prices(test_db)

    def test_missing_quote_leg_raises(self, test_db, make_tx):
        make_tx(
            ts(2017, 6, 1), "0.5", "buy", currency="BTC", source="exchange",
            exchange_reference="T-3", exchange_currency="ETH", exchange_value=Decimal("-5"),
        )
        with pytest.raises(BackfillError, match="no ETH leg"):
            backfill_trade_prices(test_db)

    def test_unpriced_quote_leg_is_left_for_market_pass(self, test_db, make_tx):
        base = make_tx(
            ts(2017, 6, 1), "0.5", "buy", currency="BTC", source="exchange",
            exchange_reference="T-4", exchange_currency="ETH", exchange_value=Decimal("-5"),
        )
        make_tx(
            ts(2017, 6, 1), "-5", "sell", currency="ETH", source="exchange",
            exchange_reference="T-4", exchange_currency="BTC", exchange_value=Decimal("0.5"),
        )
        assert backfill_trade_prices(test_db) == 0
        assert reload(test_db, base).usd_price is None


# =============================================================================
# Market prices
# =============================================================================

class TestMarketPrices:

    def test_fills_from_oracle(self, test_db, make_tx):
        tx = make_tx(ts(2017, 1, 1, 15), "2", source="wallet")
        oracle = FakeOracle({("BTC", date(2017, 1, 1)): "997.69"})

        filled, unavailable = backfill_market_prices(test_db, oracle)

        tx = reload(test_db, tx)
        assert (filled, unavailable) == (1, 0)
        assert tx.usd_value == Decimal("1995.38")
        assert tx.usd_price == Decimal("997.69")

    def test_negative_amount_gets_positive_value(self, test_db, make_tx):
        make_tx(ts(2017, 1, 1), "1", usd_value="900")
        tx = make_tx(ts(2017, 1, 2), "-0.25", "sell")
        oracle = FakeOracle({("BTC", date(2017, 1, 2)): "1000"})
        backfill_market_prices(test_db, oracle)
        assert reload(test_db, tx).usd_value == Decimal("250.00")

    def test_gap_is_left_in_place(self, test_db, make_tx):
        tx = make_tx(ts(2017, 1, 1), "10", currency="ETH")
        filled, unavailable = backfill_market_prices(test_db, FakeOracle())
        assert (filled, unavailable) == (0, 1)
        assert reload(test_db, tx).usd_value is None

    def test_priced_usd_and_zero_rows_are_skipped(self, test_db, make_tx):
        make_tx(ts(2017, 1, 1), "1", usd_value="900")
        make_tx(ts(2017, 1, 1), "-100", "send", currency="USD")
        make_tx(ts(2017, 1, 1), "0", "transfer")
        oracle = FakeOracle()
        assert backfill_market_prices(test_db, oracle) == (0, 0)
        assert oracle.calls == []

    def test_run_backfill_does_trades_first(self, test_db, btc_eth_trade, oracle):
        result = run_backfill(test_db, oracle)
        assert result.trade_prices == 1
        assert result.market_prices == 0
        # the BTC leg was already priced by its trade
        assert oracle.calls == []
