"""Tests for running positions and the dashboard snapshot."""

import asyncio

import pytest

from trade_ledger.core.errors import AuthenticationError
from trade_ledger.core.models import OpenOrder, OpenPosition, Side, Venue
from trade_ledger.pipelines.dashboard import fetch_dashboard_data
from trade_ledger.portfolio.running import open_orders_as_positions, project_running_positions
from trade_ledger.tests.fake_venue import FakeResponse, bybit_ok, make_client

ACCOUNT = {"balances": [{"asset": "USDT", "free": "500", "locked": "0"}]}
TICKERS = [{"symbol": "BTCUSDT", "price": "50000"}, {"symbol": "ETHUSDT", "price": "3000"}]
OPEN_ORDERS = [{"symbol": "ETHUSDT", "side": "BUY", "price": "2900", "origQty": "2"}]


class TestProjectRunningPositions:
    def test_venue_pnl_wins(self):
        running = project_running_positions([
            OpenPosition("BTCUSDT", entry_price=100, mark_price=110, size=1, direction=1, unrealized_pnl=7.5),
        ])
        assert running[0].unrealized_pnl == 7.5

    def test_estimate_for_short(self):
        running = project_running_positions([
            OpenPosition("BTCUSDT", entry_price=100, mark_price=90, size=2, direction=-1),
        ])
        assert running[0].unrealized_pnl == pytest.approx(20)

    def test_flat_positions_are_dropped(self):
        assert project_running_positions([OpenPosition("BTCUSDT", 100, 100, 0, 1)]) == []

    def test_open_orders_marked_at_last_price(self):
        positions = open_orders_as_positions(
            [OpenOrder("ETHUSDT", Side.SELL, 3100, 1), OpenOrder("NEWUSDT", Side.BUY, 2, 10)],
            {"ETHUSDT": 3000.0},
        )
        running = project_running_positions(positions)
        assert running[0].mark_price == 3000
        assert running[0].unrealized_pnl == pytest.approx(100)
        assert running[1].mark_price == 2
        assert running[1].unrealized_pnl == 0


class TestFetchDashboardData:
    """Test the dashboard request kind against a stub venue."""

    def test_binance_futures_positions(self):
        client, _ = make_client(Venue.BINANCE, {
            "/api/v3/account": ACCOUNT,
            "/api/v3/openOrders": OPEN_ORDERS,
            "/api/v3/ticker/price": TICKERS,
            "/fapi/v2/account": {"totalWalletBalance": "100"},
            "/fapi/v2/positionRisk": [
                {"symbol": "BTCUSDT", "positionAmt": "-0.5", "entryPrice": "52000",
                 "markPrice": "50000", "unRealizedProfit": "1000"},
                {"symbol": "ETHUSDT", "positionAmt": "0", "entryPrice": "0", "markPrice": "3000"},
            ],
        })

        data = asyncio.run(fetch_dashboard_data(client))

        assert data.balance.total == pytest.approx(600)
        assert len(data.running) == 1
        assert data.running[0].symbol == "BTCUSDT"
        assert data.running[0].size == 0.5
        assert data.running[0].unrealized_pnl == 1000

    def test_binance_falls_back_to_open_orders(self):
        client, _ = make_client(Venue.BINANCE, {
            "/api/v3/account": ACCOUNT,
            "/api/v3/openOrders": OPEN_ORDERS,
            "/api/v3/ticker/price": TICKERS,
            "/fapi/v2/account": FakeResponse(403, {"code": -2015, "msg": "no futures permission"}),
        })

        data = asyncio.run(fetch_dashboard_data(client))

        assert data.balance.derivatives_available is False
        assert [p.symbol for p in data.running] == ["ETHUSDT"]
        assert data.running[0].unrealized_pnl == pytest.approx(200)

    def test_bybit(self):
        client, session = make_client(Venue.BYBIT, {
            "/v5/account/wallet-balance": bybit_ok([{"totalWalletBalance": "2000", "coin": [{"usdValue": "1500"}]}]),
            "/v5/position/list": bybit_ok([
                {"symbol": "SOLUSDT", "side": "Sell", "size": "3", "avgPrice": "100",
                 "markPrice": "95", "unrealisedPnl": ""},
            ]),
        })

        data = asyncio.run(fetch_dashboard_data(client))

        assert data.balance.derivatives_value == pytest.approx(500)
        assert data.running[0].unrealized_pnl == pytest.approx(15)
        assert session.calls_to("/v5/position/list")[0].params["category"] == "linear"

    def test_failed_account_request_cancels_the_others(self):
        routes = {
            "/api/v3/account": FakeResponse(401, {"code": -2015, "msg": "Invalid API-key"}),
            "/api/v3/openOrders": FakeResponse(200, OPEN_ORDERS, delay=0.05),
            "/api/v3/ticker/price": FakeResponse(200, TICKERS, delay=0.05),
        }
        client, _ = make_client(Venue.BINANCE, routes)

        async def run():
            with pytest.raises(AuthenticationError):
                await fetch_dashboard_data(client)
            return [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]

        assert asyncio.run(run()) == []
        assert not routes["/api/v3/openOrders"].finished
        assert not routes["/api/v3/ticker/price"].finished
