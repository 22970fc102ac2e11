"""
Dashboard snapshot: account balance plus live running positions.

Binance / Binance.US
    account, open orders and the ticker table are fetched together (none of
    them may fail); the futures wallet and futures positions are optional.
    When no futures position is open (or futures are unavailable) the spot
    open orders stand in as running positions.

Bybit
    the unified wallet and the linear position list are fetched together.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from trade_ledger.core.cancel import CancelToken
from trade_ledger.core.errors import Cancelled, TradeLedgerError
from trade_ledger.core.models import DashboardData, RunningPosition, Venue
from trade_ledger.exchanges import binance, bybit
from trade_ledger.exchanges.client import SignedClient
from trade_ledger.helpers.tasks import gather_or_cancel
from trade_ledger.portfolio.balance import (
    PREFERRED_QUOTE,
    aggregate_spot_value,
    bybit_snapshot,
    combine_snapshot,
    fetch_derivatives_equity,
)
from trade_ledger.portfolio.running import open_orders_as_positions, project_running_positions

logger = logging.getLogger(__name__)


async def fetch_dashboard_data(client: SignedClient, cancel: Optional[CancelToken] = None) -> DashboardData:
    if client.venue is Venue.BYBIT:
        return await _bybit_dashboard(client, cancel)
    return await _binance_dashboard(client, cancel)


async def _bybit_dashboard(client: SignedClient, cancel: Optional[CancelToken]) -> DashboardData:
    wallet, positions = await gather_or_cancel(
        client.signed_request(bybit.ENDPOINTS["wallet_balance"], {"accountType": "UNIFIED"}, cancel=cancel),
        client.signed_request(
            bybit.ENDPOINTS["position_list"], {"category": "linear", "settleCoin": "USDT"}, cancel=cancel
        ),
    )
    return DashboardData(
        balance=bybit_snapshot(wallet),
        running=project_running_positions(bybit.parse_positions(positions)),
    )


async def _binance_dashboard(client: SignedClient, cancel: Optional[CancelToken]) -> DashboardData:
    account, open_orders, tickers = await gather_or_cancel(
        client.signed_request(binance.ENDPOINTS["account"], cancel=cancel),
        client.signed_request(binance.ENDPOINTS["open_orders"], cancel=cancel),
        client.public_get(binance.ENDPOINTS["ticker_price"], cancel=cancel),
    )
    prices = binance.parse_ticker_prices(tickers)
    spot_value = aggregate_spot_value(
        binance.parse_balances(account), prices, PREFERRED_QUOTE[client.venue]
    )
    balance = combine_snapshot(spot_value, await fetch_derivatives_equity(client, cancel))

    running: List[RunningPosition] = []
    if balance.derivatives_available:
        running = await _futures_running_positions(client, cancel)
    if not running:
        running = project_running_positions(
            open_orders_as_positions(binance.parse_open_orders(open_orders), prices)
        )
    return DashboardData(balance=balance, running=running)


async def _futures_running_positions(client: SignedClient, cancel: Optional[CancelToken]) -> List[RunningPosition]:
    try:
        rows = await client.signed_request(
            binance.ENDPOINTS["futures_position_risk"],
            base_url=binance.FUTURES_BASE_URL,
            cancel=cancel,
        )
    except Cancelled:
        raise
    except TradeLedgerError as exc:
        logger.warning(f"Futures positions unavailable, using spot open orders: {exc}")
        return []
    return project_running_positions(binance.parse_position_risk(rows))
