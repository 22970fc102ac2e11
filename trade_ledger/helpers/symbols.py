"""Candidate-symbol discovery for spot history imports.

Spot fill history can only be queried per symbol, so the import has to
guess which symbols the account has traded: everything with an open order,
plus every tradeable pair formed from an asset currently held and a
prioritised list of quote assets.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from trade_ledger.core.models import Venue

logger = logging.getLogger(__name__)

# Most candidate symbols queried per spot import.
SYMBOL_CAP = 60

QUOTE_PRIORITY: Dict[Venue, List[str]] = {
    Venue.BINANCE: ["USDT", "FDUSD", "USDC", "BUSD", "BTC", "ETH", "BNB"],
    Venue.BINANCE_US: ["USD", "USDT", "USDC", "BTC", "ETH", "BNB"],
}


def discover_symbols(
    open_order_symbols: Iterable[str],
    held_assets: Iterable[str],
    tradeable: Iterable[str],
    quote_priority: Sequence[str],
    cap: Optional[int] = SYMBOL_CAP,
) -> List[str]:
    """Return the deduplicated, capped candidate list in discovery order.

    Open-order symbols come first, then for each held asset and each quote
    in priority order the ``ASSETQUOTE`` and ``QUOTEASSET`` pairs that exist
    in *tradeable*. ``cap=None`` disables the cap.
    """
    tradeable_set = set(tradeable)
    candidates: Dict[str, None] = dict.fromkeys(open_order_symbols)

    for asset in held_assets:
        for quote in quote_priority:
            if asset == quote:
                continue
            for pair in (f"{asset}{quote}", f"{quote}{asset}"):
                if pair in tradeable_set:
                    candidates.setdefault(pair)

    symbols = list(candidates)
    if cap is None:
        return symbols
    if len(symbols) > cap:
        logger.warning(f"{len(symbols)} candidate symbols, querying the first {cap} only")
    return symbols[:cap]


def quote_asset_for(symbol: str, catalog: Optional[Dict[str, str]] = None, quote_priority: Sequence[str] = ()) -> Optional[str]:
    """Quote asset of *symbol*, from the catalog when known, else by suffix match."""
    if catalog and catalog.get(symbol):
        return catalog[symbol]
    for quote in sorted(quote_priority, key=len, reverse=True):
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return quote
    return None
