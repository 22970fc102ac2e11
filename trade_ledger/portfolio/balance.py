"""
Account valuation in a single quote currency.

The spot leg values every held asset through the public ticker table; an
asset that cannot be priced contributes zero instead of failing the
snapshot. The derivatives leg is one account-equity call that is allowed to
fail (missing futures permission, unsupported market, network error): the
snapshot then reports spot only with ``derivatives_available=False``.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Mapping, Optional, Sequence, Tuple

from trade_ledger.core.cancel import CancelToken
from trade_ledger.core.errors import Cancelled, TradeLedgerError
from trade_ledger.core.models import BalanceSnapshot, Venue
from trade_ledger.exchanges import binance, bybit
from trade_ledger.exchanges.client import SignedClient
from trade_ledger.helpers.tasks import gather_or_cancel

logger = logging.getLogger(__name__)

STABLE_ASSETS = frozenset({"USD", "USDT", "USDC", "FDUSD", "TUSD", "BUSD"})

PREFERRED_QUOTE: Dict[Venue, str] = {
    Venue.BINANCE: "USDT",
    Venue.BINANCE_US: "USD",
    Venue.BYBIT: "USDT",
}

# Secondary quotes tried, in order, when an asset has no pair against the preferred quote.
BRIDGE_ASSETS: Tuple[str, ...] = ("USDT", "BTC", "ETH", "BNB")


def _pair_rate(base: str, quote: str, prices: Mapping[str, float]) -> Optional[float]:
    """Units of *quote* per unit of *base*, from the direct or the inverse pair."""
    direct = prices.get(f"{base}{quote}")
    if direct:
        return direct
    inverse = prices.get(f"{quote}{base}")
    if inverse:
        return 1.0 / inverse
    return None


def to_quote_value(
    asset: str,
    amount: float,
    prices: Mapping[str, float],
    quote: str,
    bridges: Sequence[str] = BRIDGE_ASSETS,
) -> float:
    """Value *amount* of *asset* in *quote*; 0.0 when no conversion path exists.

    Resolution order: identity for stable/quote assets, direct pair, inverse
    pair, then each bridge asset (direct or inverse leg to the bridge, times
    the bridge's own value in *quote*).
    """
    if not math.isfinite(amount) or amount <= 0:
        return 0.0
    if asset == quote or asset in STABLE_ASSETS:
        return amount

    rate = _pair_rate(asset, quote, prices)
    if rate:
        return amount * rate

    for bridge in bridges:
        if bridge in (asset, quote):
            continue
        leg = _pair_rate(asset, bridge, prices)
        if not leg:
            continue
        bridge_value = 1.0 if bridge in STABLE_ASSETS else _pair_rate(bridge, quote, prices)
        if bridge_value:
            return amount * leg * bridge_value

    logger.warning(f"No price path for {asset} → {quote}; valued at 0")
    return 0.0


def aggregate_spot_value(balances: Mapping[str, float], prices: Mapping[str, float], quote: str) -> float:
    return sum(to_quote_value(asset, amount, prices, quote) for asset, amount in balances.items())


async def fetch_derivatives_equity(
    client: SignedClient,
    cancel: Optional[CancelToken] = None,
) -> Optional[float]:
    """Futures wallet balance, or None when the venue/key cannot provide it."""
    if client.venue is not Venue.BINANCE:
        return None
    try:
        account = await client.signed_request(
            binance.ENDPOINTS["futures_account"],
            base_url=binance.FUTURES_BASE_URL,
            cancel=cancel,
        )
        return binance.parse_futures_wallet(account)
    except Cancelled:
        raise
    except TradeLedgerError as exc:
        client.logger.warning(f"Derivatives balance unavailable: {exc}")
        return None


def combine_snapshot(spot_value: float, derivatives_value: Optional[float]) -> BalanceSnapshot:
    available = derivatives_value is not None
    derivatives_value = derivatives_value if available else 0.0
    return BalanceSnapshot(
        spot_value=spot_value,
        derivatives_value=derivatives_value,
        total=spot_value + derivatives_value,
        derivatives_available=available,
    )


async def fetch_balance_snapshot(
    client: SignedClient,
    cancel: Optional[CancelToken] = None,
) -> BalanceSnapshot:
    """Value the account behind *client*'s credential."""
    if client.venue is Venue.BYBIT:
        wallet = await client.signed_request(
            bybit.ENDPOINTS["wallet_balance"], {"accountType": "UNIFIED"}, cancel=cancel
        )
        return bybit_snapshot(wallet)

    account, tickers = await _fetch_spot_inputs(client, cancel)
    spot_value = aggregate_spot_value(
        binance.parse_balances(account),
        binance.parse_ticker_prices(tickers),
        PREFERRED_QUOTE[client.venue],
    )
    return combine_snapshot(spot_value, await fetch_derivatives_equity(client, cancel))


def bybit_snapshot(wallet: dict) -> BalanceSnapshot:
    """Unified account: coin values are the spot leg, the rest of the wallet is margin/PnL."""
    coin_value, total = bybit.parse_wallet(wallet)
    return BalanceSnapshot(
        spot_value=coin_value,
        derivatives_value=total - coin_value,
        total=total,
        derivatives_available=True,
    )


async def _fetch_spot_inputs(client: SignedClient, cancel: Optional[CancelToken]):
    return await gather_or_cancel(
        client.signed_request(binance.ENDPOINTS["account"], cancel=cancel),
        client.public_get(binance.ENDPOINTS["ticker_price"], cancel=cancel),
    )
